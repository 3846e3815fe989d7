"""
DDL and statistics executors for partkit.

The orchestrator only talks to the abstract executors; the Oracle versions
run statements on a pooled session.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import oracledb

from ..exceptions import DatabaseError, ExecutionError
from ..statistics import StatsPlan, render_gather_stats, render_table_prefs
from .connection import ConnectionPool


logger = logging.getLogger(__name__)


class DDLExecutor(ABC):
    """Runs a single DDL statement."""

    @abstractmethod
    async def execute(self, statement: str) -> None:
        """Execute ``statement``; raise on rejection."""


class StatisticsExecutor(ABC):
    """Collects optimizer statistics."""

    @abstractmethod
    async def collect(
        self, table_name: str, partition_name: Optional[str], plan: StatsPlan
    ) -> None:
        """Gather statistics for a table or one of its (sub)partitions."""

    async def configure(self, table_name: str, plan: StatsPlan) -> None:
        """Persist table-level preferences such as incremental mode."""


class OracleDDLExecutor(DDLExecutor):
    """Executes DDL through the connection pool."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def execute(self, statement: str) -> None:
        logger.info(f"Executing DDL: {statement}")
        try:
            await self.pool.execute(statement)
        except oracledb.Error as e:
            # ORA- text is what the operator needs to see
            raise ExecutionError(str(e), statement=statement, cause=e) from e


class OracleStatisticsExecutor(StatisticsExecutor):
    """Runs DBMS_STATS blocks through the connection pool."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def collect(
        self, table_name: str, partition_name: Optional[str], plan: StatsPlan
    ) -> None:
        block, params = render_gather_stats(table_name, plan, partition_name)
        target = f"{table_name}.{partition_name}" if partition_name else table_name
        logger.info(
            f"Gathering statistics on {target} "
            f"(granularity={plan.granularity.value}, degree={plan.degree})"
        )
        try:
            await self.pool.execute(block, params)
        except oracledb.Error as e:
            raise DatabaseError(f"Statistics collection failed on {target}: {e}") from e

    async def configure(self, table_name: str, plan: StatsPlan) -> None:
        block, params = render_table_prefs(table_name, plan)
        logger.info(
            f"Setting statistics preferences on {table_name} "
            f"(incremental={plan.incremental})"
        )
        try:
            await self.pool.execute(block, params)
        except oracledb.Error as e:
            raise DatabaseError(
                f"Setting statistics preferences failed on {table_name}: {e}"
            ) from e
