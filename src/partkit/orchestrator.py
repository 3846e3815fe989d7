"""
Online partitioning operations for partkit.

Drives a live table through VALIDATE, SCAN_DEPENDENTS, BUILD_CLAUSE, EXECUTE
and CONFIGURE_STATISTICS. Any phase can end the operation in FAILED; once
EXECUTE has succeeded nothing later can undo or fail the schema change.
Every phase is recorded in the operation log.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .config import ConversionConfig, StatisticsConfig
from .database.catalog import CatalogQuery, PartitioningInfo
from .database.executor import DDLExecutor, StatisticsExecutor
from .exceptions import ExecutionError, PartkitError, StatisticsWarning, ValidationError
from .operation_log import AutonomousOperationLog, OperationStatus, format_duration
from .schema import ddl_builder
from .schema.dependents import DependentObjects, DependentObjectScanner
from .schema.model import PartitionDef, PartitionType, SubpartitionSpec, is_valid_identifier
from .statistics import StatisticsStrategyEngine, StatsPlan, StatsScope


logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Phases of an operation."""

    VALIDATE = "VALIDATE"
    SCAN_DEPENDENTS = "SCAN_DEPENDENTS"
    BUILD_CLAUSE = "BUILD_CLAUSE"
    EXECUTE = "EXECUTE"
    CONFIGURE_STATISTICS = "CONFIGURE_STATISTICS"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class OperationType(str, Enum):
    """Operations recorded in the operation log."""

    CONVERT = "CONVERT_TO_PARTITIONED"
    ADD_SUBPARTITIONING = "ADD_SUBPARTITIONING"
    SPLIT = "SPLIT_PARTITION"
    MERGE = "MERGE_PARTITIONS"
    MOVE = "MOVE_PARTITION"
    DROP = "DROP_PARTITION"
    ANALYZE = "GATHER_STATISTICS"


CONVERTIBLE_TYPES = (
    PartitionType.RANGE,
    PartitionType.LIST,
    PartitionType.HASH,
    PartitionType.INTERVAL,
    PartitionType.REFERENCE,
)


@dataclass
class ConversionRequest:
    """Convert a heap table to a partitioned one."""

    table_name: str
    partition_type: PartitionType
    partition_column: Optional[str] = None
    interval_expr: Optional[str] = None
    parent_table: Optional[str] = None
    partition_count: Optional[int] = None
    seed_boundary: Optional[str] = None
    parallel_degree: Optional[int] = None
    cardinality_hint: Optional[int] = None

    @property
    def key_columns(self) -> List[str]:
        if not self.partition_column:
            return []
        return [c.strip() for c in self.partition_column.split(",") if c.strip()]


@dataclass
class SubpartitioningRequest:
    """Add a subpartition level to an already partitioned table."""

    table_name: str
    spec: SubpartitionSpec
    parallel_degree: Optional[int] = None
    cardinality_hint: Optional[int] = None


@dataclass
class OperationResult:
    """Outcome of one operation."""

    operation_type: OperationType
    table_name: str
    operation_id: int
    dry_run: bool = False
    status: Phase = Phase.VALIDATE
    phases: List[Phase] = field(default_factory=list)
    ddl: Optional[str] = None
    stats_plan: Optional[StatsPlan] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[PartkitError] = None
    failed_phase: Optional[Phase] = None
    duration_ms: Optional[float] = None
    analyzed_partitions: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is Phase.COMPLETE

    @property
    def error_name(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error


class _OperationRun:
    """Phase bookkeeping and logging for one operation."""

    def __init__(
        self,
        log: AutonomousOperationLog,
        result: OperationResult,
        partition_name: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        self.log = log
        self.result = result
        self.partition_name = partition_name
        self.attributes = attributes or {}
        self._started = time.monotonic()

    async def enter(self, phase: Phase) -> float:
        self.result.phases.append(phase)
        self.result.status = phase
        await self.log.started(
            self.result.operation_id,
            self.result.operation_type.value,
            phase.value,
            self.result.table_name,
            partition_name=self.partition_name,
            attributes=self.attributes,
        )
        return time.monotonic()

    async def leave(
        self,
        phase: Phase,
        status: OperationStatus,
        started: float,
        message: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        await self.log.finished(
            self.result.operation_id,
            self.result.operation_type.value,
            phase.value,
            self.result.table_name,
            status,
            duration_ms=(time.monotonic() - started) * 1000,
            message=message,
            error=error,
            partition_name=self.partition_name,
            sql_text=self.result.ddl if phase is Phase.EXECUTE else None,
        )

    async def phase(self, phase: Phase, func: Callable[..., Any], *args: Any) -> Any:
        """Run ``func`` as ``phase``; log and re-raise on failure."""
        started = await self.enter(phase)
        try:
            value = func(*args)
            if inspect.isawaitable(value):
                value = await value
        except (Exception, asyncio.CancelledError) as e:
            self.result.failed_phase = phase
            await self.leave(phase, OperationStatus.FAILED, started, error=e)
            raise
        await self.leave(phase, OperationStatus.SUCCESS, started)
        return value

    async def warn(self, phase: Phase, warning: StatisticsWarning) -> None:
        logger.warning(f"{self.result.table_name}: {warning}")
        self.result.warnings.append(str(warning))
        await self.log.finished(
            self.result.operation_id,
            self.result.operation_type.value,
            phase.value,
            self.result.table_name,
            OperationStatus.WARNING,
            message=warning.message,
            error=warning.cause,
            partition_name=self.partition_name,
        )

    def _elapsed_ms(self) -> float:
        return (time.monotonic() - self._started) * 1000

    async def complete(self, message: Optional[str] = None) -> OperationResult:
        result = self.result
        result.status = Phase.COMPLETE
        result.duration_ms = self._elapsed_ms()
        status = OperationStatus.WARNING if result.warnings else OperationStatus.SUCCESS
        await self.log.finished(
            result.operation_id,
            result.operation_type.value,
            Phase.COMPLETE.value,
            result.table_name,
            status,
            duration_ms=result.duration_ms,
            message=message or "; ".join(result.warnings) or None,
            partition_name=self.partition_name,
            sql_text=result.ddl,
        )
        logger.info(
            f"{result.operation_type.value} on {result.table_name} completed in "
            f"{format_duration(result.duration_ms)}"
            + (f" with {len(result.warnings)} warnings" if result.warnings else "")
        )
        return result

    async def fail(self, error: PartkitError) -> OperationResult:
        result = self.result
        result.status = Phase.FAILED
        result.error = error
        result.duration_ms = self._elapsed_ms()
        await self.log.finished(
            result.operation_id,
            result.operation_type.value,
            Phase.FAILED.value,
            result.table_name,
            OperationStatus.FAILED,
            duration_ms=result.duration_ms,
            message=f"Failed in {result.failed_phase.value}" if result.failed_phase else None,
            error=error,
            partition_name=self.partition_name,
            sql_text=result.ddl,
        )
        logger.error(
            f"{result.operation_type.value} on {result.table_name} failed: "
            f"{type(error).__name__}: {error}"
        )
        return result


class OnlineConversionOrchestrator:
    """Runs partitioning changes against a live table."""

    def __init__(
        self,
        catalog: CatalogQuery,
        executor: DDLExecutor,
        stats_executor: StatisticsExecutor,
        operation_log: AutonomousOperationLog,
        conversion_config: Optional[ConversionConfig] = None,
        statistics_config: Optional[StatisticsConfig] = None,
        strategy: Optional[StatisticsStrategyEngine] = None,
    ):
        self.catalog = catalog
        self.executor = executor
        self.stats_executor = stats_executor
        self.operation_log = operation_log
        self.conversion_config = conversion_config or ConversionConfig()
        self.statistics_config = statistics_config or StatisticsConfig()
        self.strategy = strategy or StatisticsStrategyEngine(self.statistics_config)
        self.scanner = DependentObjectScanner(catalog)

    def _begin(
        self,
        operation_type: OperationType,
        table_name: str,
        dry_run: bool = False,
        partition_name: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> _OperationRun:
        result = OperationResult(
            operation_type=operation_type,
            table_name=table_name,
            operation_id=self.operation_log.next_operation_id(),
            dry_run=dry_run,
        )
        logger.info(
            f"Starting {operation_type.value} on {table_name} "
            f"(operation {result.operation_id}{', dry run' if dry_run else ''})"
        )
        return _OperationRun(self.operation_log, result, partition_name, attributes)

    async def _drive(
        self,
        run: _OperationRun,
        prepare: Callable[[], Awaitable[str]],
        scope: Optional[StatsScope],
        cardinality_hint: Optional[int] = None,
        configure_prefs: bool = False,
    ) -> OperationResult:
        """Prepare the DDL, execute it, then refresh statistics."""
        try:
            run.result.ddl = await prepare()

            if run.result.dry_run:
                logger.info(f"[DRY RUN] {run.result.ddl}")
                return await run.complete("Dry run: DDL not executed")

            await run.phase(Phase.EXECUTE, self._execute, run.result.ddl)

        except asyncio.CancelledError:
            await run.fail(ExecutionError("Operation cancelled", statement=run.result.ddl))
            raise
        except PartkitError as e:
            return await run.fail(e)
        except Exception as e:
            logger.exception(f"Unexpected error during {run.result.operation_type.value}")
            return await run.fail(PartkitError(f"Unexpected error: {e}", cause=e))

        if scope is not None and self.statistics_config.enabled:
            await self._refresh_statistics(run, scope, cardinality_hint, configure_prefs)

        return await run.complete()

    async def _execute(self, ddl: str) -> None:
        """Run one statement. Never retried."""
        timeout = self.conversion_config.execute_timeout
        try:
            if timeout:
                await asyncio.wait_for(self.executor.execute(ddl), timeout)
            else:
                await self.executor.execute(ddl)
        except ExecutionError:
            raise
        except asyncio.TimeoutError as e:
            raise ExecutionError(
                f"DDL did not complete within {timeout} seconds", statement=ddl, cause=e
            ) from e
        except Exception as e:
            raise ExecutionError(str(e), statement=ddl, cause=e) from e

    # -- statistics ----------------------------------------------------------

    async def _collect_statistics(
        self,
        run: _OperationRun,
        scope: StatsScope,
        cardinality_hint: Optional[int] = None,
        incremental: Optional[bool] = None,
        sample_percent: Optional[float] = None,
        configure_prefs: bool = False,
        partition_names: Optional[Sequence[str]] = None,
    ) -> StatsPlan:
        """Gather statistics for ``scope``, or for each of ``partition_names``."""
        table = run.result.table_name
        if cardinality_hint is None:
            cardinality_hint = await self.catalog.row_count(table)
        partitioned = await self.catalog.is_partitioned(table)

        plan = self.strategy.recommend(
            table, cardinality_hint, scope, incremental, sample_percent, partitioned
        )
        run.result.stats_plan = plan

        if configure_prefs:
            await self.stats_executor.configure(table, plan)
        targets = [scope.object_name] if partition_names is None else partition_names
        for target in targets:
            await self.stats_executor.collect(table, target, plan)

        if plan.global_refresh:
            try:
                await self.stats_executor.collect(table, None, plan.for_global_refresh())
            except Exception as e:
                await run.warn(
                    Phase.CONFIGURE_STATISTICS,
                    StatisticsWarning(
                        f"Global statistics refresh failed for {table}: {e}", cause=e
                    ),
                )
        return plan

    async def _refresh_statistics(
        self,
        run: _OperationRun,
        scope: StatsScope,
        cardinality_hint: Optional[int],
        configure_prefs: bool,
    ) -> None:
        """Best effort: failures become warnings, never a failed operation.

        Cancellation closes the phase and the operation as completed with a
        warning, since the schema change has already been made, and then
        propagates.
        """
        started = await run.enter(Phase.CONFIGURE_STATISTICS)
        try:
            await self._collect_statistics(
                run, scope, cardinality_hint, configure_prefs=configure_prefs
            )
        except asyncio.CancelledError as e:
            message = f"Statistics refresh cancelled for {run.result.table_name}"
            logger.warning(message)
            run.result.warnings.append(message)
            await run.leave(
                Phase.CONFIGURE_STATISTICS,
                OperationStatus.WARNING,
                started,
                message=message,
                error=e,
            )
            await run.complete()
            raise
        except Exception as e:
            warning = StatisticsWarning(
                f"Statistics refresh failed for {run.result.table_name}: {e}", cause=e
            )
            logger.warning(str(warning))
            run.result.warnings.append(str(warning))
            await run.leave(
                Phase.CONFIGURE_STATISTICS,
                OperationStatus.WARNING,
                started,
                message=warning.message,
                error=e,
            )
            return
        await run.leave(Phase.CONFIGURE_STATISTICS, OperationStatus.SUCCESS, started)

    # -- validation helpers --------------------------------------------------

    @staticmethod
    def _check_identifier(name: Optional[str], what: str) -> None:
        if not is_valid_identifier(name):
            raise ValidationError(f"Invalid {what}: {name!r}")

    async def _require_table(self, table_name: str) -> None:
        self._check_identifier(table_name, "table name")
        if not await self.catalog.table_exists(table_name):
            raise ValidationError(f"Table {table_name} does not exist")

    async def _require_partitioned(
        self,
        table_name: str,
        partitions: Sequence[str] = (),
        absent: Sequence[str] = (),
    ) -> PartitioningInfo:
        """Check the table is partitioned and the named partitions exist."""
        await self._require_table(table_name)
        info = await self.catalog.describe_partitioning(table_name)
        if info is None:
            raise ValidationError(f"Table {table_name} is not partitioned")

        existing = {p.name.upper() for p in info.partitions}
        for name in partitions:
            self._check_identifier(name, "partition name")
            if name.upper() not in existing:
                raise ValidationError(f"Partition {name} does not exist in {table_name}")
        for name in absent:
            self._check_identifier(name, "partition name")
            if name.upper() in existing:
                raise ValidationError(f"Partition {name} already exists in {table_name}")
        return info

    # -- convert -------------------------------------------------------------

    async def _validate_conversion(self, request: ConversionRequest) -> Optional[str]:
        """Check preconditions; return the reference constraint for REFERENCE."""
        table = request.table_name

        # 1. Table exists and is a heap table
        await self._require_table(table)
        if await self.catalog.is_partitioned(table):
            current = await self.catalog.partition_type(table)
            suffix = f" ({current.value})" if current else ""
            raise ValidationError(f"Table {table} is already partitioned{suffix}")

        # 2. Strategy is one we can convert to
        try:
            partition_type = PartitionType.parse(request.partition_type)
        except ValueError:
            raise ValidationError(
                f"Unsupported partition type: {request.partition_type!r}"
            ) from None
        if partition_type not in CONVERTIBLE_TYPES:
            supported = ", ".join(t.value for t in CONVERTIBLE_TYPES)
            raise ValidationError(
                f"{partition_type.value} is not supported for online conversion "
                f"(supported: {supported})"
            )

        # 3. Strategy-specific inputs
        if partition_type is not PartitionType.REFERENCE:
            if not request.key_columns:
                raise ValidationError(
                    f"A partition column is required for {partition_type.value} partitioning"
                )
            for column in request.key_columns:
                self._check_identifier(column, "partition column")

        if partition_type is PartitionType.INTERVAL and not request.interval_expr:
            raise ValidationError("INTERVAL partitioning requires an interval expression")
        if partition_type is PartitionType.INTERVAL and not request.seed_boundary:
            # ORA-14761: no MAXVALUE partition on an interval partitioned table
            raise ValidationError(
                "INTERVAL partitioning requires a seed boundary for the first partition"
            )

        if partition_type is PartitionType.HASH and request.partition_count is not None:
            if request.partition_count < 1:
                raise ValidationError(
                    f"Partition count must be positive: {request.partition_count}"
                )

        if partition_type is not PartitionType.REFERENCE:
            return None

        # 4. REFERENCE needs a foreign key to a partitioned parent
        parent = request.parent_table
        if not parent:
            raise ValidationError("REFERENCE partitioning requires a parent table")
        self._check_identifier(parent, "parent table")
        if not await self.catalog.is_partitioned(parent):
            raise ValidationError(f"Parent table {parent} is not partitioned")
        constraint = await self.scanner.find_reference_constraint(table, parent)
        if constraint is None:
            raise ValidationError(f"No foreign key on {table} references {parent}")
        return constraint.name

    def _build_conversion(
        self,
        request: ConversionRequest,
        reference_constraint: Optional[str],
        dependents: DependentObjects,
    ) -> str:
        cfg = self.conversion_config
        partitions = ddl_builder.seed_partitions(
            PartitionType.parse(request.partition_type),
            request.key_columns,
            interval_expr=request.interval_expr,
            reference_constraint=reference_constraint,
            hash_partition_count=request.partition_count or cfg.hash_partition_count,
            default_partition_name=cfg.default_partition_name,
            interval_seed_name=cfg.interval_seed_partition_name,
            seed_boundary=request.seed_boundary,
        )
        clause = ddl_builder.build_partition_clause(partitions)
        index_clause = ""
        if cfg.update_indexes:
            index_clause = ddl_builder.build_index_conversion_clause(dependents.index_names)
        return ddl_builder.build_convert_statement(
            request.table_name,
            clause,
            index_clause,
            request.parallel_degree or cfg.parallel_degree,
        )

    async def convert_to_partitioned(
        self, request: ConversionRequest, dry_run: bool = False
    ) -> OperationResult:
        """Convert a heap table to a partitioned table online."""
        run = self._begin(
            OperationType.CONVERT,
            request.table_name,
            dry_run,
            attributes={
                "partition_type": str(request.partition_type),
                "partition_column": request.partition_column,
                "parent_table": request.parent_table,
            },
        )

        async def prepare() -> str:
            reference = await run.phase(
                Phase.VALIDATE, self._validate_conversion, request
            )
            dependents = await run.phase(
                Phase.SCAN_DEPENDENTS, self.scanner.scan, request.table_name
            )
            return await run.phase(
                Phase.BUILD_CLAUSE, self._build_conversion, request, reference, dependents
            )

        return await self._drive(
            run,
            prepare,
            StatsScope.whole_table(),
            request.cardinality_hint,
            configure_prefs=True,
        )

    # -- add subpartitioning -------------------------------------------------

    async def _validate_subpartitioning(
        self, request: SubpartitioningRequest
    ) -> PartitioningInfo:
        info = await self._require_partitioned(request.table_name)
        if info.partition_type in (PartitionType.REFERENCE, PartitionType.SYSTEM):
            raise ValidationError(
                f"{info.partition_type.value} partitioned tables cannot be subpartitioned"
            )
        if info.is_composite:
            raise ValidationError(
                f"Table {request.table_name} is already subpartitioned "
                f"({info.subpartition_type})"
            )
        if not info.partitions:
            raise ValidationError(f"Table {request.table_name} has no partitions")
        if not request.spec.key_columns:
            raise ValidationError("A subpartition column is required")
        for column in request.spec.key_columns:
            self._check_identifier(column, "subpartition column")
        return info

    def _build_subpartitioning(
        self,
        request: SubpartitioningRequest,
        info: PartitioningInfo,
        dependents: DependentObjects,
    ) -> str:
        partitions = [
            PartitionDef(
                name=partition.name,
                partition_type=info.partition_type,
                key_columns=info.key_columns,
                values=(
                    partition.high_value
                    if info.partition_type is not PartitionType.HASH
                    else None
                ),
                tablespace=partition.tablespace,
                interval_expr=info.interval if index == 0 else None,
                subpartition_spec=request.spec,
            )
            for index, partition in enumerate(info.partitions)
        ]
        clause = ddl_builder.build_partition_clause(partitions)
        logger.debug(
            "Subpartitioning clause: "
            + ddl_builder.build_subpartitioning_clause(request.table_name, request.spec)
        )

        index_clause = ""
        if self.conversion_config.update_indexes:
            index_clause = ddl_builder.build_index_conversion_clause(
                [i.name for i in dependents.convertible_indexes if not i.is_local],
                local_index_names=[
                    i.name for i in dependents.convertible_indexes if i.is_local
                ],
            )
        return ddl_builder.build_convert_statement(
            request.table_name,
            clause,
            index_clause,
            request.parallel_degree or self.conversion_config.parallel_degree,
        )

    async def add_subpartitioning(
        self, request: SubpartitioningRequest, dry_run: bool = False
    ) -> OperationResult:
        """Add a subpartition level to every partition of a table."""
        run = self._begin(
            OperationType.ADD_SUBPARTITIONING,
            request.table_name,
            dry_run,
            attributes={
                "subpartition_type": str(request.spec.subpartition_type),
                "subpartition_count": request.spec.effective_count,
                "tablespaces": ",".join(request.spec.tablespaces),
            },
        )

        async def prepare() -> str:
            info = await run.phase(
                Phase.VALIDATE, self._validate_subpartitioning, request
            )
            dependents = await run.phase(
                Phase.SCAN_DEPENDENTS, self.scanner.scan, request.table_name
            )
            return await run.phase(
                Phase.BUILD_CLAUSE, self._build_subpartitioning, request, info, dependents
            )

        return await self._drive(
            run,
            prepare,
            StatsScope.whole_table(),
            request.cardinality_hint,
            configure_prefs=True,
        )

    # -- partition maintenance -----------------------------------------------

    async def split_partition(
        self,
        table_name: str,
        partition_name: str,
        split_value: str,
        new_partition_name: str,
        tablespace: Optional[str] = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """Split one partition in two at ``split_value``."""
        run = self._begin(
            OperationType.SPLIT,
            table_name,
            dry_run,
            partition_name=partition_name,
            attributes={"split_value": split_value, "new_partition": new_partition_name},
        )

        async def validate() -> PartitioningInfo:
            info = await self._require_partitioned(
                table_name, [partition_name], absent=[new_partition_name]
            )
            if info.partition_type in (
                PartitionType.HASH,
                PartitionType.REFERENCE,
                PartitionType.SYSTEM,
            ):
                raise ValidationError(
                    f"Partitions of a {info.partition_type.value} table cannot be split"
                )
            return info

        async def prepare() -> str:
            info = await run.phase(Phase.VALIDATE, validate)
            return await run.phase(
                Phase.BUILD_CLAUSE,
                lambda: ddl_builder.build_split_partition_ddl(
                    table_name,
                    partition_name,
                    split_value,
                    new_partition_name,
                    partition_type=info.partition_type,
                    tablespace=tablespace,
                    update_indexes=self.conversion_config.update_indexes,
                    online=self.conversion_config.online,
                ),
            )

        return await self._drive(run, prepare, StatsScope.whole_table())

    async def merge_partitions(
        self,
        table_name: str,
        first_partition: str,
        second_partition: str,
        new_partition_name: Optional[str] = None,
        tablespace: Optional[str] = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """Merge two adjacent partitions into one."""
        target = new_partition_name or first_partition
        run = self._begin(
            OperationType.MERGE,
            table_name,
            dry_run,
            partition_name=target,
            attributes={"merged": f"{first_partition},{second_partition}"},
        )

        async def validate() -> None:
            merged = {first_partition.upper(), second_partition.upper()}
            absent = [] if target.upper() in merged else [target]
            await self._require_partitioned(
                table_name, [first_partition, second_partition], absent=absent
            )

        async def prepare() -> str:
            await run.phase(Phase.VALIDATE, validate)
            return await run.phase(
                Phase.BUILD_CLAUSE,
                lambda: ddl_builder.build_merge_partitions_ddl(
                    table_name,
                    first_partition,
                    second_partition,
                    target,
                    tablespace=tablespace,
                    update_indexes=self.conversion_config.update_indexes,
                    online=self.conversion_config.online,
                ),
            )

        return await self._drive(run, prepare, StatsScope.partition(target))

    async def move_partition(
        self,
        table_name: str,
        partition_name: str,
        tablespace: str,
        parallel_degree: Optional[int] = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """Move one partition to another tablespace."""
        run = self._begin(
            OperationType.MOVE,
            table_name,
            dry_run,
            partition_name=partition_name,
            attributes={"tablespace": tablespace},
        )

        async def validate() -> None:
            self._check_identifier(tablespace, "tablespace")
            await self._require_partitioned(table_name, [partition_name])

        async def prepare() -> str:
            await run.phase(Phase.VALIDATE, validate)
            return await run.phase(
                Phase.BUILD_CLAUSE,
                lambda: ddl_builder.build_move_partition_ddl(
                    table_name,
                    partition_name,
                    tablespace,
                    parallel_degree=parallel_degree or self.conversion_config.parallel_degree,
                    update_indexes=self.conversion_config.update_indexes,
                    online=self.conversion_config.online,
                ),
            )

        return await self._drive(run, prepare, StatsScope.partition(partition_name))

    async def drop_partition(
        self, table_name: str, partition_name: str, dry_run: bool = False
    ) -> OperationResult:
        """Drop one partition and its rows."""
        run = self._begin(
            OperationType.DROP, table_name, dry_run, partition_name=partition_name
        )

        async def validate() -> None:
            info = await self._require_partitioned(table_name, [partition_name])
            if len(info.partitions) < 2:
                raise ValidationError(
                    f"Cannot drop {partition_name}: it is the only partition of {table_name}"
                )

        async def prepare() -> str:
            await run.phase(Phase.VALIDATE, validate)
            return await run.phase(
                Phase.BUILD_CLAUSE,
                lambda: ddl_builder.build_drop_partition_ddl(
                    table_name,
                    partition_name,
                    update_indexes=self.conversion_config.update_indexes,
                ),
            )

        return await self._drive(run, prepare, StatsScope.whole_table())

    # -- statistics only -----------------------------------------------------

    async def analyze(
        self,
        table_name: str,
        partition_name: Optional[str] = None,
        subpartition_name: Optional[str] = None,
        cardinality_hint: Optional[int] = None,
        incremental: Optional[bool] = None,
        sample_percent: Optional[float] = None,
        stale_only: bool = False,
        stale_days: Optional[int] = None,
    ) -> OperationResult:
        """Gather statistics for a table, partition or subpartition.

        With ``stale_only`` every partition whose statistics are missing,
        older than ``stale_days`` or flagged stale is gathered at partition
        granularity, followed by one global refresh.
        """
        days = self.statistics_config.stale_days if stale_days is None else stale_days
        run = self._begin(
            OperationType.ANALYZE,
            table_name,
            partition_name=partition_name or subpartition_name,
            attributes={"stale_days": days} if stale_only else None,
        )

        if subpartition_name:
            scope = StatsScope.subpartition(subpartition_name)
        elif partition_name:
            scope = StatsScope.partition(partition_name)
        else:
            scope = StatsScope.whole_table()

        async def validate() -> Optional[List[str]]:
            await self._require_table(table_name)
            if stale_only:
                if partition_name or subpartition_name:
                    raise ValidationError(
                        "A partition or subpartition cannot be combined with stale_only"
                    )
                if days < 0:
                    raise ValidationError(f"stale_days must not be negative: {days}")
                if not await self.catalog.is_partitioned(table_name):
                    raise ValidationError(f"Table {table_name} is not partitioned")
                return await self.catalog.stale_partitions(table_name, days)
            if partition_name:
                self._check_identifier(partition_name, "partition name")
                if not await self.catalog.partition_exists(table_name, partition_name):
                    raise ValidationError(
                        f"Partition {partition_name} does not exist in {table_name}"
                    )
            if subpartition_name:
                self._check_identifier(subpartition_name, "subpartition name")
            return None

        async def collect(
            collect_scope: StatsScope, partition_names: Optional[List[str]]
        ) -> StatsPlan:
            try:
                return await self._collect_statistics(
                    run,
                    collect_scope,
                    cardinality_hint,
                    incremental,
                    sample_percent,
                    partition_names=partition_names,
                )
            except PartkitError:
                raise
            except Exception as e:
                raise ExecutionError(str(e), cause=e) from e

        try:
            stale = await run.phase(Phase.VALIDATE, validate)
            if stale is not None:
                run.result.analyzed_partitions = list(stale)
                if not stale:
                    logger.info(f"No stale partitions in {table_name}")
                    return await run.complete(
                        f"No partitions older than {days} days or flagged stale"
                    )
                logger.info(f"{len(stale)} stale partitions in {table_name}")
                scope = StatsScope.partition(stale[0])
            elif scope.object_name:
                run.result.analyzed_partitions = [scope.object_name]
            await run.phase(Phase.CONFIGURE_STATISTICS, collect, scope, stale)
        except asyncio.CancelledError:
            await run.fail(ExecutionError("Operation cancelled"))
            raise
        except PartkitError as e:
            return await run.fail(e)
        except Exception as e:
            logger.exception(f"Unexpected error while analyzing {table_name}")
            return await run.fail(PartkitError(f"Unexpected error: {e}", cause=e))

        return await run.complete()
