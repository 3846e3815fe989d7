"""
Operation log schema management for partkit.

Creates the operation log table and its indexes, and purges old rows. The
log table is itself interval partitioned by month and rendered with the
DDL builder.
"""

import logging
from typing import Any, Dict, List, Optional

from ..config import OperationLogConfig
from ..database.connection import ConnectionPool
from ..exceptions import DatabaseError
from .ddl_builder import generate_create_table_ddl
from .model import (
    ColumnDef,
    ConstraintDef,
    ConstraintKind,
    PartitionDef,
    PartitionType,
    TableDefinition,
    TableProperties,
)


logger = logging.getLogger(__name__)


class OperationLogSchema:
    """Manages the operation log table."""

    def __init__(self, pool: ConnectionPool, config: OperationLogConfig):
        self.pool = pool
        self.config = config
        self.table_name = config.table_name.upper()

    def table_definition(self) -> TableDefinition:
        """The log table as a partitioned table definition."""
        status_values = "'STARTED', 'SUCCESS', 'FAILED', 'WARNING'"
        return TableDefinition(
            table_name=self.table_name,
            columns=[
                ColumnDef("LOG_ID", "NUMBER", identity=True, nullable=False),
                ColumnDef("OPERATION_ID", "NUMBER", nullable=False),
                ColumnDef("OPERATION_TYPE", "VARCHAR2", length=50, nullable=False),
                ColumnDef("PHASE", "VARCHAR2", length=30, nullable=False),
                ColumnDef("TABLE_NAME", "VARCHAR2", length=261, nullable=False),
                ColumnDef("PARTITION_NAME", "VARCHAR2", length=128),
                ColumnDef("SUBPARTITION_NAME", "VARCHAR2", length=128),
                ColumnDef("STATUS", "VARCHAR2", length=20, nullable=False),
                ColumnDef("MESSAGE", "VARCHAR2", length=4000),
                ColumnDef("ERROR_CODE", "NUMBER"),
                ColumnDef("ERROR_MESSAGE", "VARCHAR2", length=4000),
                ColumnDef("DURATION_MS", "NUMBER"),
                ColumnDef("ROWS_PROCESSED", "NUMBER"),
                ColumnDef("OBJECT_COUNT", "NUMBER"),
                ColumnDef("SQL_TEXT", "CLOB"),
                ColumnDef("ATTRIBUTES", "CLOB"),
                ColumnDef(
                    "OPERATION_TIME", "TIMESTAMP", default="SYSTIMESTAMP", nullable=False
                ),
                ColumnDef("USER_NAME", "VARCHAR2", length=128, default="USER"),
            ],
            constraints=[
                ConstraintDef(
                    f"PK_{self.table_name}"[:128], ConstraintKind.PRIMARY, ["LOG_ID"]
                ),
                ConstraintDef(
                    f"CK_{self.table_name}_STATUS"[:128],
                    ConstraintKind.CHECK,
                    check_condition=f"STATUS IN ({status_values})",
                ),
            ],
            partitions=[
                PartitionDef(
                    "P_LOG_INITIAL",
                    PartitionType.INTERVAL,
                    ["OPERATION_TIME"],
                    values="TIMESTAMP '2024-01-01 00:00:00'",
                    interval_expr="NUMTOYMINTERVAL(1, 'MONTH')",
                )
            ],
            properties=TableProperties(),
        )

    def index_ddl(self) -> List[str]:
        return [
            f"CREATE INDEX IX_{self.table_name}_OP ON {self.table_name} (OPERATION_ID) LOCAL",
            f"CREATE INDEX IX_{self.table_name}_TAB ON {self.table_name} (TABLE_NAME, OPERATION_TIME) LOCAL",
            f"CREATE INDEX IX_{self.table_name}_ST ON {self.table_name} (STATUS) LOCAL",
        ]

    async def _table_exists(self) -> bool:
        query = "SELECT COUNT(*) FROM user_tables WHERE table_name = :table_name"
        return bool(await self.pool.fetchval(query, {"table_name": self.table_name}))

    async def setup(self) -> Dict[str, Any]:
        """Create the log table and indexes if missing."""
        results: Dict[str, Any] = {"tables_created": [], "indexes_created": [], "errors": []}

        try:
            if await self._table_exists():
                logger.debug(f"Table {self.table_name} already exists")
                return results

            await self.pool.execute(generate_create_table_ddl(self.table_definition()))
            results["tables_created"].append(self.table_name)
            logger.info(f"Created table {self.table_name}")
        except Exception as e:
            logger.error(f"Operation log setup failed: {e}")
            raise DatabaseError(f"Failed to create {self.table_name}: {e}") from e

        for ddl in self.index_ddl():
            index_name = ddl.split()[2]
            try:
                await self.pool.execute(ddl)
                results["indexes_created"].append(index_name)
            except Exception as e:
                error_msg = f"Failed to create index {index_name}: {e}"
                logger.error(error_msg)
                results["errors"].append(error_msg)

        logger.info(f"Operation log setup completed: {len(results['errors'])} errors")
        return results

    async def purge(self, retention_days: Optional[int] = None) -> int:
        """Delete rows older than the retention window; return rows deleted."""
        days = retention_days or self.config.retention_days
        delete_sql = f"""
            DELETE FROM {self.table_name}
            WHERE operation_time < SYSTIMESTAMP - NUMTODSINTERVAL(:days, 'DAY')
        """

        try:
            async with self.pool.acquire() as conn:
                with conn.cursor() as cursor:
                    await cursor.execute(delete_sql, {"days": days})
                    deleted = cursor.rowcount
                await conn.commit()
        except Exception as e:
            logger.error(f"Operation log purge failed: {e}")
            raise DatabaseError(f"Failed to purge {self.table_name}: {e}") from e

        logger.info(f"Purged {deleted} operation log rows older than {days} days")
        return deleted
