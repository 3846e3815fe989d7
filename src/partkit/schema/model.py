"""
Table and partitioning model for partkit.

Value objects describing columns, constraints, partitions and subpartitions.
They carry no behavior beyond light validation; rendering them as DDL is the
job of :mod:`partkit.schema.ddl_builder`.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import BuildError


_IDENTIFIER_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]{0,127}$")


class PartitionType(str, Enum):
    """Partitioning strategies."""

    RANGE = "RANGE"
    LIST = "LIST"
    HASH = "HASH"
    INTERVAL = "INTERVAL"
    REFERENCE = "REFERENCE"
    SYSTEM = "SYSTEM"
    AUTO_LIST = "AUTO_LIST"

    @classmethod
    def parse(cls, value: Any) -> "PartitionType":
        """Accept an enum member or a case-insensitive name."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


class SubpartitionType(str, Enum):
    """Second-level partitioning strategies."""

    RANGE = "RANGE"
    LIST = "LIST"
    HASH = "HASH"

    @classmethod
    def parse(cls, value: Any) -> "SubpartitionType":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


class ConstraintKind(str, Enum):
    """Table constraint kinds."""

    PRIMARY = "PRIMARY"
    UNIQUE = "UNIQUE"
    FOREIGN = "FOREIGN"
    CHECK = "CHECK"


@dataclass(frozen=True)
class ColumnDef:
    """A table column."""

    name: str
    data_type: str
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    nullable: bool = True
    default: Optional[str] = None
    identity: bool = False
    invisible: bool = False
    comment: Optional[str] = None


@dataclass(frozen=True)
class ConstraintDef:
    """A table constraint."""

    name: str
    kind: ConstraintKind
    columns: List[str] = field(default_factory=list)
    referenced_table: Optional[str] = None
    referenced_columns: List[str] = field(default_factory=list)
    check_condition: Optional[str] = None
    deferrable: bool = False
    initially_deferred: bool = False


@dataclass(frozen=True)
class SubpartitionDef:
    """An explicit subpartition, used in templates and per-partition overrides."""

    name: str
    values: Optional[str] = None
    tablespace: Optional[str] = None


@dataclass(frozen=True)
class SubpartitionSpec:
    """Second-level partitioning applied to every partition of a table.

    For HASH either ``count`` or ``tablespaces`` (or both) drive the template;
    with tablespaces and no count, one subpartition is generated per
    tablespace. ``template`` lists explicit entries and wins over both.
    """

    subpartition_type: SubpartitionType
    key_columns: List[str]
    count: Optional[int] = None
    tablespaces: List[str] = field(default_factory=list)
    template: List[SubpartitionDef] = field(default_factory=list)

    @property
    def effective_count(self) -> Optional[int]:
        if self.template:
            return len(self.template)
        if self.count is not None:
            return self.count
        if self.tablespaces:
            return len(self.tablespaces)
        return None


@dataclass(frozen=True)
class PartitionDef:
    """One partition of a partitioned table.

    Table-level attributes (key columns, interval expression, reference
    constraint, subpartition spec, hash partition count) are read from the
    first partition of a list.
    """

    name: str
    partition_type: PartitionType
    key_columns: List[str] = field(default_factory=list)
    values: Optional[str] = None
    tablespace: Optional[str] = None
    interval_expr: Optional[str] = None
    reference_constraint: Optional[str] = None
    hash_partition_count: Optional[int] = None
    subpartition_spec: Optional[SubpartitionSpec] = None
    subpartitions: List[SubpartitionDef] = field(default_factory=list)


@dataclass(frozen=True)
class TableProperties:
    """Physical table attributes."""

    tablespace: Optional[str] = None
    compression: Optional[str] = None
    parallel_degree: Optional[int] = None
    logging: bool = True
    row_movement: bool = False


@dataclass(frozen=True)
class TableDefinition:
    """Everything needed to render a CREATE TABLE statement."""

    table_name: str
    columns: List[ColumnDef]
    constraints: List[ConstraintDef] = field(default_factory=list)
    partitions: List[PartitionDef] = field(default_factory=list)
    properties: TableProperties = field(default_factory=TableProperties)


def is_valid_identifier(name: Optional[str]) -> bool:
    """Check an unquoted identifier, optionally schema-qualified."""
    if not name:
        return False
    parts = name.split(".")
    if len(parts) > 2:
        return False
    return all(_IDENTIFIER_RE.match(part) for part in parts)


def assign_tablespaces(count: int, tablespaces: List[str]) -> List[Tuple[int, str]]:
    """Bind subpartition indexes 1..count to tablespaces round-robin."""
    if not tablespaces:
        return []
    return [(i, tablespaces[(i - 1) % len(tablespaces)]) for i in range(1, count + 1)]


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(item) for item in value]


def subpartition_spec_from_dict(data: Dict[str, Any]) -> SubpartitionSpec:
    """Build a SubpartitionSpec from plain data (YAML or CLI)."""
    return SubpartitionSpec(
        subpartition_type=SubpartitionType.parse(data.get("type", "HASH")),
        key_columns=_as_list(data.get("columns") or data.get("column")),
        count=data.get("count"),
        tablespaces=_as_list(data.get("tablespaces")),
        template=[SubpartitionDef(**entry) for entry in data.get("template", [])],
    )


def table_definition_from_dict(data: Dict[str, Any]) -> TableDefinition:
    """Build a TableDefinition from plain data.

    Raises BuildError when the data does not describe a valid table.

    Expected layout::

        table: ORDERS
        columns:
          - {name: ORDER_ID, data_type: NUMBER, precision: 19, nullable: false}
        constraints:
          - {name: PK_ORDERS, kind: PRIMARY, columns: [ORDER_ID]}
        partitioning:
          type: RANGE
          columns: [ORDER_DATE]
          partitions:
            - {name: P2025, values: "DATE '2026-01-01'"}
        properties: {tablespace: USERS}
    """
    try:
        return _build_table_definition(data)
    except (KeyError, TypeError, ValueError) as e:
        raise BuildError(f"Invalid table definition: {e}") from e


def _build_table_definition(data: Dict[str, Any]) -> TableDefinition:
    columns = [ColumnDef(**column) for column in data.get("columns", [])]

    constraints = []
    for entry in data.get("constraints", []):
        entry = dict(entry)
        entry["kind"] = ConstraintKind(str(entry["kind"]).upper())
        constraints.append(ConstraintDef(**entry))

    partitions: List[PartitionDef] = []
    partitioning = data.get("partitioning")
    if partitioning:
        partition_type = PartitionType.parse(partitioning["type"])
        key_columns = _as_list(partitioning.get("columns"))
        spec = None
        if partitioning.get("subpartitioning"):
            spec = subpartition_spec_from_dict(partitioning["subpartitioning"])

        entries = partitioning.get("partitions") or []
        if not entries:
            # REFERENCE, SYSTEM and simple HASH need no explicit partitions
            entries = [{"name": "P1"}]
        for index, entry in enumerate(entries):
            first = index == 0
            partitions.append(
                PartitionDef(
                    name=entry["name"],
                    partition_type=partition_type,
                    key_columns=key_columns,
                    values=entry.get("values"),
                    tablespace=entry.get("tablespace"),
                    interval_expr=partitioning.get("interval") if first else None,
                    reference_constraint=(
                        partitioning.get("reference_constraint") if first else None
                    ),
                    hash_partition_count=partitioning.get("count") if first else None,
                    subpartition_spec=spec,
                    subpartitions=[
                        SubpartitionDef(**sub) for sub in entry.get("subpartitions", [])
                    ],
                )
            )

    properties = TableProperties(**data.get("properties", {}))

    return TableDefinition(
        table_name=data["table"],
        columns=columns,
        constraints=constraints,
        partitions=partitions,
        properties=properties,
    )
