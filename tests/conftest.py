"""
Pytest configuration and shared fixtures for partkit tests.

The orchestrator is exercised against in-memory stand-ins for the catalog,
the executors and the operation log sink.
"""

import os
import tempfile
from typing import Dict, List, Optional

import pytest
import yaml

from partkit.config import ConversionConfig, PartkitConfig, StatisticsConfig
from partkit.database.catalog import (
    CatalogQuery,
    ConstraintRef,
    IndexRef,
    PartitionInfo,
    PartitioningInfo,
)
from partkit.database.executor import DDLExecutor, StatisticsExecutor
from partkit.exceptions import ExecutionError
from partkit.operation_log import (
    AutonomousOperationLog,
    InMemoryOperationLogSink,
    OperationLogSink,
    OperationRecord,
)
from partkit.orchestrator import OnlineConversionOrchestrator
from partkit.schema.model import PartitionType
from partkit.statistics import StatsPlan


# ============================================================================
# Collaborator fakes
# ============================================================================

class FakeCatalog(CatalogQuery):
    """In-memory dictionary keyed by upper-case table name."""

    def __init__(self):
        self.tables = set()
        self.partitioning: Dict[str, PartitioningInfo] = {}
        self.indexes: Dict[str, List[IndexRef]] = {}
        self.foreign_keys: Dict[str, List[ConstraintRef]] = {}
        self.row_counts: Dict[str, int] = {}
        self.stale: Dict[str, List[str]] = {}
        self.stale_queries: List[int] = []

    def add_table(
        self,
        name: str,
        rows: Optional[int] = None,
        indexes: Optional[List[IndexRef]] = None,
        foreign_keys: Optional[List[ConstraintRef]] = None,
    ) -> None:
        key = name.upper()
        self.tables.add(key)
        self.indexes[key] = list(indexes or [])
        self.foreign_keys[key] = list(foreign_keys or [])
        if rows is not None:
            self.row_counts[key] = rows

    def partition(
        self,
        name: str,
        partition_type: PartitionType,
        key_columns: Optional[List[str]] = None,
        partitions: Optional[List[PartitionInfo]] = None,
        subpartition_type: Optional[str] = None,
        interval: Optional[str] = None,
    ) -> None:
        self.partitioning[name.upper()] = PartitioningInfo(
            partition_type=partition_type,
            key_columns=list(key_columns or []),
            interval=interval,
            subpartition_type=subpartition_type,
            partitions=list(partitions or [PartitionInfo("P1", 1)]),
        )

    async def table_exists(self, table_name: str) -> bool:
        return table_name.upper() in self.tables

    async def is_partitioned(self, table_name: str) -> bool:
        return table_name.upper() in self.partitioning

    async def partition_type(self, table_name: str) -> Optional[PartitionType]:
        info = self.partitioning.get(table_name.upper())
        return info.partition_type if info else None

    async def list_indexes(self, table_name: str) -> List[IndexRef]:
        return list(self.indexes.get(table_name.upper(), []))

    async def list_foreign_keys(self, table_name: str) -> List[ConstraintRef]:
        return list(self.foreign_keys.get(table_name.upper(), []))

    async def row_count(self, table_name: str) -> Optional[int]:
        return self.row_counts.get(table_name.upper())

    async def describe_partitioning(self, table_name: str) -> Optional[PartitioningInfo]:
        return self.partitioning.get(table_name.upper())

    async def stale_partitions(self, table_name: str, days: int) -> List[str]:
        self.stale_queries.append(days)
        return list(self.stale.get(table_name.upper(), []))


class RecordingExecutor(DDLExecutor):
    """Records statements; optionally rejects them with a fixed message."""

    def __init__(self, catalog: Optional[FakeCatalog] = None):
        self.catalog = catalog
        self.statements: List[str] = []
        self.error_message: Optional[str] = None

    async def execute(self, statement: str) -> None:
        self.statements.append(statement)
        if self.error_message:
            raise ExecutionError(self.error_message, statement=statement)
        if self.catalog is not None and " MODIFY PARTITION BY " in statement:
            table = statement.split()[2].upper()
            kind = statement.split(" MODIFY PARTITION BY ")[1].split()[0]
            self.catalog.partition(table, PartitionType.parse(kind))


class RecordingStatsExecutor(StatisticsExecutor):
    """Records statistics calls; optionally fails them."""

    def __init__(self):
        self.collected = []
        self.configured = []
        self.fail_with: Optional[Exception] = None
        self.fail_global_refresh = False

    async def collect(
        self, table_name: str, partition_name: Optional[str], plan: StatsPlan
    ) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        if self.fail_global_refresh and partition_name is None and plan.granularity.value == "GLOBAL":
            raise RuntimeError("ORA-20000: unable to refresh global statistics")
        self.collected.append((table_name, partition_name, plan))

    async def configure(self, table_name: str, plan: StatsPlan) -> None:
        self.configured.append((table_name, plan))


class FailingSink(OperationLogSink):
    """A sink that rejects every record."""

    def __init__(self):
        self.attempts: List[OperationRecord] = []

    async def append(self, record: OperationRecord) -> None:
        self.attempts.append(record)
        raise RuntimeError("ORA-01653: unable to extend table PARTITION_OPERATIONS_LOG")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def catalog() -> FakeCatalog:
    catalog = FakeCatalog()
    catalog.add_table(
        "ORDERS",
        rows=50_000_000,
        indexes=[
            IndexRef("PK_ORDERS", "NORMAL", unique=True, columns=["ORDER_ID"]),
            IndexRef("IX_ORDERS_DATE", "NORMAL", columns=["ORDER_DATE"]),
            IndexRef("SYS_IL0000012345C00005$$", "LOB"),
        ],
    )
    return catalog


@pytest.fixture
def executor(catalog) -> RecordingExecutor:
    return RecordingExecutor(catalog)


@pytest.fixture
def stats_executor() -> RecordingStatsExecutor:
    return RecordingStatsExecutor()


@pytest.fixture
def sink() -> InMemoryOperationLogSink:
    return InMemoryOperationLogSink()


@pytest.fixture
def operation_log(sink) -> AutonomousOperationLog:
    return AutonomousOperationLog(sink, start_id=1000)


@pytest.fixture
def orchestrator(catalog, executor, stats_executor, operation_log) -> OnlineConversionOrchestrator:
    return OnlineConversionOrchestrator(
        catalog,
        executor,
        stats_executor,
        operation_log,
        conversion_config=ConversionConfig(),
        statistics_config=StatisticsConfig(),
    )


@pytest.fixture
def config_data() -> dict:
    """Configuration data as it would appear in YAML."""
    return {
        "service_name": "partkit-test",
        "database": {
            "host": "db.example.com",
            "port": 1521,
            "service_name": "ORCLPDB1",
            "user": "app",
            "password": "secret",
        },
        "conversion": {"parallel_degree": 8},
        "operation_log": {"sink": "memory"},
    }


@pytest.fixture
def config_file(config_data):
    """Write configuration data to a temporary YAML file."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config_data, f)
        path = f.name
    yield path
    os.unlink(path)


@pytest.fixture
def partkit_config(config_data) -> PartkitConfig:
    return PartkitConfig(**config_data)
