"""
Data dictionary access for partkit.

Defines the catalog collaborator the orchestrator depends on and an Oracle
implementation backed by the ``ALL_*`` dictionary views.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import CatalogError
from ..schema.model import PartitionType
from .connection import ConnectionPool


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexRef:
    """A secondary index of a table."""

    name: str
    index_type: str = "NORMAL"
    unique: bool = False
    partitioned: bool = False
    columns: List[str] = field(default_factory=list)
    locality: Optional[str] = None

    @property
    def is_lob(self) -> bool:
        """LOB indexes are maintained with their segment and cannot be listed."""
        return self.index_type.upper() == "LOB"

    @property
    def is_local(self) -> bool:
        """Partitioned and equipartitioned with the table."""
        return self.partitioned and (self.locality or "LOCAL").upper() == "LOCAL"


@dataclass(frozen=True)
class ConstraintRef:
    """A foreign key of a table."""

    name: str
    referenced_table: str
    referenced_constraint: Optional[str] = None
    columns: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PartitionInfo:
    """One existing partition as reported by the dictionary."""

    name: str
    position: int
    high_value: Optional[str] = None
    tablespace: Optional[str] = None


@dataclass
class PartitioningInfo:
    """Current partitioning scheme of a table."""

    partition_type: PartitionType
    key_columns: List[str]
    interval: Optional[str] = None
    subpartition_type: Optional[str] = None
    reference_constraint: Optional[str] = None
    partitions: List[PartitionInfo] = field(default_factory=list)

    @property
    def is_composite(self) -> bool:
        return bool(self.subpartition_type) and self.subpartition_type != "NONE"


class CatalogQuery(ABC):
    """Read-only view of the database dictionary."""

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        ...

    @abstractmethod
    async def is_partitioned(self, table_name: str) -> bool:
        ...

    @abstractmethod
    async def partition_type(self, table_name: str) -> Optional[PartitionType]:
        ...

    @abstractmethod
    async def list_indexes(self, table_name: str) -> List[IndexRef]:
        ...

    @abstractmethod
    async def list_foreign_keys(self, table_name: str) -> List[ConstraintRef]:
        ...

    async def row_count(self, table_name: str) -> Optional[int]:
        """Best known row count, or None when unknown."""
        return None

    async def partition_exists(self, table_name: str, partition_name: str) -> bool:
        info = await self.describe_partitioning(table_name)
        if info is None:
            return False
        return any(p.name.upper() == partition_name.upper() for p in info.partitions)

    async def describe_partitioning(self, table_name: str) -> Optional[PartitioningInfo]:
        """Current scheme and partitions, or None for a heap table."""
        return None

    async def stale_partitions(self, table_name: str, days: int) -> List[str]:
        """Partitions never analyzed, analyzed over ``days`` ago, or flagged stale."""
        return []


def split_table_name(table_name: str) -> Tuple[Optional[str], str]:
    """Split ``OWNER.TABLE`` into dictionary-case parts."""
    if "." in table_name:
        owner, name = table_name.split(".", 1)
        return owner.upper(), name.upper()
    return None, table_name.upper()


class OracleCatalog(CatalogQuery):
    """Catalog queries against the Oracle data dictionary."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    @staticmethod
    def _binds(table_name: str) -> Dict[str, Any]:
        owner, name = split_table_name(table_name)
        return {"owner": owner, "table_name": name}

    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        query = """
            SELECT COUNT(*) FROM all_tables
            WHERE owner = NVL(:owner, USER) AND table_name = :table_name
        """

        try:
            result = await self.pool.fetchval(query, self._binds(table_name))
            return bool(result)
        except Exception as e:
            logger.error(f"Error checking table existence for {table_name}: {e}")
            raise CatalogError(
                f"Failed to check table existence: {e}", table_name, e
            ) from e

    async def _part_table_row(self, table_name: str) -> Optional[Dict[str, Any]]:
        query = """
            SELECT partitioning_type, subpartitioning_type, interval, autolist,
                   ref_ptn_constraint_name
            FROM all_part_tables
            WHERE owner = NVL(:owner, USER) AND table_name = :table_name
        """

        try:
            return await self.pool.fetchrow(query, self._binds(table_name))
        except Exception as e:
            logger.error(f"Error reading partitioning of {table_name}: {e}")
            raise CatalogError(f"Failed to read partitioning: {e}", table_name, e) from e

    @staticmethod
    def _classify(row: Dict[str, Any]) -> PartitionType:
        partitioning_type = row["partitioning_type"]
        if partitioning_type == "RANGE" and row.get("interval"):
            return PartitionType.INTERVAL
        if partitioning_type == "LIST" and row.get("autolist") == "YES":
            return PartitionType.AUTO_LIST
        return PartitionType(partitioning_type)

    async def is_partitioned(self, table_name: str) -> bool:
        return await self._part_table_row(table_name) is not None

    async def partition_type(self, table_name: str) -> Optional[PartitionType]:
        row = await self._part_table_row(table_name)
        return self._classify(row) if row else None

    async def list_indexes(self, table_name: str) -> List[IndexRef]:
        """List indexes of a table, ordered by name."""
        query = """
            SELECT i.index_name, i.index_type, i.uniqueness, i.partitioned,
                   pi.locality,
                   (SELECT LISTAGG(c.column_name, ',')
                           WITHIN GROUP (ORDER BY c.column_position)
                    FROM all_ind_columns c
                    WHERE c.index_owner = i.owner AND c.index_name = i.index_name
                   ) AS column_names
            FROM all_indexes i
            LEFT JOIN all_part_indexes pi
              ON pi.owner = i.owner AND pi.index_name = i.index_name
            WHERE i.table_owner = NVL(:owner, USER) AND i.table_name = :table_name
            ORDER BY i.index_name
        """

        try:
            rows = await self.pool.fetch(query, self._binds(table_name))
        except Exception as e:
            logger.error(f"Error getting indexes for {table_name}: {e}")
            raise CatalogError(f"Failed to get indexes: {e}", table_name, e) from e

        return [
            IndexRef(
                name=row["index_name"],
                index_type=row["index_type"],
                unique=row["uniqueness"] == "UNIQUE",
                partitioned=row["partitioned"] == "YES",
                columns=row["column_names"].split(",") if row["column_names"] else [],
                locality=row.get("locality"),
            )
            for row in rows
        ]

    async def list_foreign_keys(self, table_name: str) -> List[ConstraintRef]:
        """List foreign keys of a table with the table each one references."""
        query = """
            SELECT c.constraint_name, p.table_name AS referenced_table,
                   c.r_constraint_name,
                   (SELECT LISTAGG(cc.column_name, ',')
                           WITHIN GROUP (ORDER BY cc.position)
                    FROM all_cons_columns cc
                    WHERE cc.owner = c.owner AND cc.constraint_name = c.constraint_name
                   ) AS column_names
            FROM all_constraints c
            JOIN all_constraints p
              ON p.owner = c.r_owner AND p.constraint_name = c.r_constraint_name
            WHERE c.owner = NVL(:owner, USER)
              AND c.table_name = :table_name
              AND c.constraint_type = 'R'
        """

        try:
            rows = await self.pool.fetch(query, self._binds(table_name))
        except Exception as e:
            logger.error(f"Error getting foreign keys for {table_name}: {e}")
            raise CatalogError(f"Failed to get foreign keys: {e}", table_name, e) from e

        return [
            ConstraintRef(
                name=row["constraint_name"],
                referenced_table=row["referenced_table"],
                referenced_constraint=row["r_constraint_name"],
                columns=row["column_names"].split(",") if row["column_names"] else [],
            )
            for row in rows
        ]

    async def row_count(self, table_name: str) -> Optional[int]:
        """Row count from the last statistics gathering."""
        query = """
            SELECT num_rows FROM all_tables
            WHERE owner = NVL(:owner, USER) AND table_name = :table_name
        """

        try:
            result = await self.pool.fetchval(query, self._binds(table_name))
        except Exception as e:
            logger.warning(f"Could not read row count for {table_name}: {e}")
            return None
        return int(result) if result is not None else None

    async def describe_partitioning(self, table_name: str) -> Optional[PartitioningInfo]:
        """Read the partitioning scheme and current partitions."""
        row = await self._part_table_row(table_name)
        if row is None:
            return None

        keys_query = """
            SELECT column_name FROM all_part_key_columns
            WHERE owner = NVL(:owner, USER) AND name = :table_name
              AND object_type = 'TABLE'
            ORDER BY column_position
        """
        partitions_query = """
            SELECT partition_name, partition_position, high_value, tablespace_name
            FROM all_tab_partitions
            WHERE table_owner = NVL(:owner, USER) AND table_name = :table_name
            ORDER BY partition_position
        """

        binds = self._binds(table_name)
        try:
            key_rows = await self.pool.fetch(keys_query, binds)
            partition_rows = await self.pool.fetch(partitions_query, binds)
        except Exception as e:
            logger.error(f"Error describing partitions of {table_name}: {e}")
            raise CatalogError(f"Failed to describe partitions: {e}", table_name, e) from e

        return PartitioningInfo(
            partition_type=self._classify(row),
            key_columns=[r["column_name"] for r in key_rows],
            interval=row.get("interval"),
            subpartition_type=row.get("subpartitioning_type"),
            reference_constraint=row.get("ref_ptn_constraint_name"),
            partitions=[
                PartitionInfo(
                    name=r["partition_name"],
                    position=int(r["partition_position"]),
                    high_value=r["high_value"],
                    tablespace=r["tablespace_name"],
                )
                for r in partition_rows
            ],
        )

    async def partition_exists(self, table_name: str, partition_name: str) -> bool:
        query = """
            SELECT COUNT(*) FROM all_tab_partitions
            WHERE table_owner = NVL(:owner, USER) AND table_name = :table_name
              AND partition_name = :partition_name
        """

        binds = self._binds(table_name)
        binds["partition_name"] = partition_name.upper()
        try:
            return bool(await self.pool.fetchval(query, binds))
        except Exception as e:
            logger.error(f"Error checking partition {partition_name} of {table_name}: {e}")
            raise CatalogError(
                f"Failed to check partition existence: {e}", table_name, e
            ) from e

    async def stale_partitions(self, table_name: str, days: int) -> List[str]:
        """Partitions whose statistics are missing, old or flagged stale."""
        query = """
            SELECT partition_name FROM all_tab_statistics
            WHERE owner = NVL(:owner, USER) AND table_name = :table_name
              AND object_type = 'PARTITION'
              AND (last_analyzed IS NULL
                   OR last_analyzed < SYSDATE - :days
                   OR stale_stats = 'YES')
            ORDER BY partition_position
        """

        binds = self._binds(table_name)
        binds["days"] = days
        try:
            rows = await self.pool.fetch(query, binds)
        except Exception as e:
            logger.error(f"Error checking statistics freshness of {table_name}: {e}")
            raise CatalogError(
                f"Failed to check statistics freshness: {e}", table_name, e
            ) from e
        return [row["partition_name"] for row in rows]
