"""
Command-line interface for partkit.
"""

import asyncio
import logging
import logging.handlers
import sys
from contextlib import asynccontextmanager
from functools import wraps
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

import click
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import DatabaseConnection, LoggingConfig, PartkitConfig
from .exceptions import ConfigurationError, PartkitError
from .operation_log import (
    AutonomousOperationLog,
    DatabaseOperationLogSink,
    InMemoryOperationLogSink,
    LoggingOperationLogSink,
    OperationLogSink,
    format_duration,
)
from .orchestrator import (
    ConversionRequest,
    OnlineConversionOrchestrator,
    OperationResult,
    SubpartitioningRequest,
)
from .schema.ddl_builder import generate_create_table_ddl
from .schema.model import (
    PartitionType,
    SubpartitionSpec,
    SubpartitionType,
    table_definition_from_dict,
)


console = Console()

Operation = Callable[[OnlineConversionOrchestrator, bool], Awaitable[OperationResult]]


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PartkitError as e:
            console.print(f"[red]{type(e).__name__}:[/red] {escape(str(e))}", soft_wrap=True)
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(1)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}", soft_wrap=True)
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


def configure_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Install root handlers from the logging configuration."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else config.level)
    formatter = logging.Formatter(config.format)

    for handler in list(root.handlers):
        if getattr(handler, "_partkit", False):
            root.removeHandler(handler)

    handlers = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.file,
                maxBytes=config.max_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._partkit = True
        root.addHandler(handler)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """partkit: online partitioning toolkit for Oracle tables."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


def _load_config(path: str) -> PartkitConfig:
    config = PartkitConfig.from_yaml(path)
    config.validate_config()
    debug = bool(click.get_current_context().find_root().obj.get("debug"))
    configure_logging(config.logging, debug or config.debug)
    return config


def _build_sink(config: PartkitConfig, pool) -> OperationLogSink:
    kind = config.operation_log.sink
    if kind == "database":
        return DatabaseOperationLogSink(pool, config.operation_log.table_name)
    if kind == "memory":
        return InMemoryOperationLogSink()
    return LoggingOperationLogSink()


@asynccontextmanager
async def _orchestrator_session(
    config: PartkitConfig,
) -> AsyncIterator[OnlineConversionOrchestrator]:
    """Open a pool and wire the Oracle collaborators into an orchestrator."""
    from .database.catalog import OracleCatalog
    from .database.connection import ConnectionPool
    from .database.executor import OracleDDLExecutor, OracleStatisticsExecutor

    pool = ConnectionPool(config.require_database())
    await pool.initialize()
    try:
        operation_log = AutonomousOperationLog(
            _build_sink(config, pool), enabled=config.operation_log.enabled
        )
        yield OnlineConversionOrchestrator(
            OracleCatalog(pool),
            OracleDDLExecutor(pool),
            OracleStatisticsExecutor(pool),
            operation_log,
            conversion_config=config.conversion,
            statistics_config=config.statistics,
        )
    finally:
        await pool.close()


def _run_operation(config_path: str, dry_run: bool, operation: Operation) -> None:
    """Run one orchestrator operation, show the result, exit 1 on failure."""
    partkit_config = _load_config(config_path)
    dry_run = dry_run or partkit_config.dry_run

    async def run() -> OperationResult:
        async with _orchestrator_session(partkit_config) as orchestrator:
            return await operation(orchestrator, dry_run)

    result = asyncio.run(run())
    _display_result(result)
    if not result.succeeded:
        sys.exit(1)


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
dry_run_option = click.option(
    "--dry-run", is_flag=True, help="Print the DDL without executing it"
)


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="partkit-config.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new partkit configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    _create_default_config().to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the database section of the configuration file")
    console.print("2. Run: partkit validate-config -c your-config.yaml")
    console.print("3. Run: partkit setup-log -c your-config.yaml")


@main.command()
@config_option
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        partkit_config = PartkitConfig.from_yaml(config)
        partkit_config.validate_config()
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {escape(str(e))}", soft_wrap=True)
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(partkit_config)


@main.command()
@config_option
@handle_errors
def test_connection(config: str):
    """Test the database connection."""
    from .database.connection import ConnectionPool

    partkit_config = _load_config(config)

    async def run_connection_test():
        async with ConnectionPool(partkit_config.require_database()) as pool:
            return await pool.test_connection()

    info = asyncio.run(run_connection_test())
    console.print(
        f"✅ [green]Connected[/green] to {escape(str(info['database']))} "
        f"as {escape(str(info['user']))} (Oracle {escape(str(info['version']))})"
    )


@main.command()
@config_option
@click.option(
    "--purge",
    is_flag=True,
    help="Also delete rows older than operation_log.retention_days",
)
@handle_errors
def setup_log(config: str, purge: bool):
    """Create the operation log table."""
    from .database.connection import ConnectionPool
    from .schema.metadata import OperationLogSchema

    partkit_config = _load_config(config)

    async def run_setup():
        async with ConnectionPool(partkit_config.require_database()) as pool:
            schema = OperationLogSchema(pool, partkit_config.operation_log)
            results = await schema.setup()
            deleted = await schema.purge() if purge else None
            return results, deleted

    results, deleted = asyncio.run(run_setup())
    for table in results["tables_created"]:
        console.print(f"[green]✓[/green] Created table {table}")
    for index in results["indexes_created"]:
        console.print(f"[green]✓[/green] Created index {index}")
    if not results["tables_created"]:
        console.print("Operation log table already exists")
    for error in results["errors"]:
        console.print(f"[red]✗[/red] {escape(error)}", soft_wrap=True)
    if deleted is not None:
        console.print(f"Purged {deleted} old log rows")
    if results["errors"]:
        sys.exit(1)


@main.command()
@click.option(
    "--definition",
    "-d",
    type=click.Path(exists=True),
    required=True,
    help="YAML table definition",
)
@handle_errors
def render_table(definition: str):
    """Print the CREATE TABLE statement for a YAML table definition."""
    try:
        with open(definition, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in table definition: {e}")

    ddl = generate_create_table_ddl(table_definition_from_dict(data))
    console.print(ddl, soft_wrap=True, markup=False, highlight=False)


@main.command()
@config_option
@click.argument("table")
@click.option(
    "--type",
    "partition_type",
    type=click.Choice([t.value for t in PartitionType], case_sensitive=False),
    required=True,
    help="Partitioning strategy",
)
@click.option("--column", help="Partition key column(s), comma separated")
@click.option("--interval", "interval_expr", help="Interval expression for INTERVAL")
@click.option("--parent", "parent_table", help="Parent table for REFERENCE")
@click.option("--count", "partition_count", type=int, help="Partition count for HASH")
@click.option(
    "--boundary",
    "seed_boundary",
    help="Upper bound of the seed partition (required for INTERVAL)",
)
@click.option("--parallel", "parallel_degree", type=int, help="PARALLEL degree")
@click.option("--rows", "cardinality_hint", type=int, help="Row count hint for statistics")
@dry_run_option
@handle_errors
def convert(
    config: str,
    table: str,
    partition_type: str,
    column: Optional[str],
    interval_expr: Optional[str],
    parent_table: Optional[str],
    partition_count: Optional[int],
    seed_boundary: Optional[str],
    parallel_degree: Optional[int],
    cardinality_hint: Optional[int],
    dry_run: bool,
):
    """Convert TABLE to a partitioned table online."""
    request = ConversionRequest(
        table_name=table,
        partition_type=PartitionType.parse(partition_type),
        partition_column=column,
        interval_expr=interval_expr,
        parent_table=parent_table,
        partition_count=partition_count,
        seed_boundary=seed_boundary,
        parallel_degree=parallel_degree,
        cardinality_hint=cardinality_hint,
    )
    _run_operation(
        config, dry_run, lambda o, dry: o.convert_to_partitioned(request, dry_run=dry)
    )


@main.command()
@config_option
@click.argument("table")
@click.option("--column", required=True, help="Subpartition key column(s)")
@click.option(
    "--type",
    "subpartition_type",
    type=click.Choice([t.value for t in SubpartitionType], case_sensitive=False),
    default="HASH",
    show_default=True,
    help="Subpartitioning strategy",
)
@click.option("--tablespaces", help="Comma separated tablespaces, assigned round-robin")
@click.option("--count", type=int, help="Subpartitions per partition")
@click.option("--parallel", "parallel_degree", type=int, help="PARALLEL degree")
@dry_run_option
@handle_errors
def add_subpartitioning(
    config: str,
    table: str,
    column: str,
    subpartition_type: str,
    tablespaces: Optional[str],
    count: Optional[int],
    parallel_degree: Optional[int],
    dry_run: bool,
):
    """Add a subpartition level to every partition of TABLE."""
    spec = SubpartitionSpec(
        subpartition_type=SubpartitionType.parse(subpartition_type),
        key_columns=[c.strip() for c in column.split(",") if c.strip()],
        count=count,
        tablespaces=[t.strip() for t in (tablespaces or "").split(",") if t.strip()],
    )
    request = SubpartitioningRequest(table, spec, parallel_degree=parallel_degree)
    _run_operation(
        config, dry_run, lambda o, dry: o.add_subpartitioning(request, dry_run=dry)
    )


@main.command()
@config_option
@click.argument("table")
@click.argument("partition")
@click.option("--at", "split_value", required=True, help="Split boundary or list values")
@click.option("--into", "new_partition", required=True, help="Name of the new partition")
@click.option("--tablespace", help="Tablespace of the new partition")
@dry_run_option
@handle_errors
def split(
    config: str,
    table: str,
    partition: str,
    split_value: str,
    new_partition: str,
    tablespace: Optional[str],
    dry_run: bool,
):
    """Split PARTITION of TABLE in two."""
    _run_operation(
        config,
        dry_run,
        lambda o, dry: o.split_partition(
            table, partition, split_value, new_partition, tablespace, dry_run=dry
        ),
    )


@main.command()
@config_option
@click.argument("table")
@click.argument("first")
@click.argument("second")
@click.option("--into", "new_partition", help="Resulting partition (default: FIRST)")
@click.option("--tablespace", help="Tablespace of the resulting partition")
@dry_run_option
@handle_errors
def merge(
    config: str,
    table: str,
    first: str,
    second: str,
    new_partition: Optional[str],
    tablespace: Optional[str],
    dry_run: bool,
):
    """Merge partitions FIRST and SECOND of TABLE."""
    _run_operation(
        config,
        dry_run,
        lambda o, dry: o.merge_partitions(
            table, first, second, new_partition, tablespace, dry_run=dry
        ),
    )


@main.command()
@config_option
@click.argument("table")
@click.argument("partition")
@click.option("--tablespace", required=True, help="Target tablespace")
@click.option("--parallel", "parallel_degree", type=int, help="PARALLEL degree")
@dry_run_option
@handle_errors
def move(
    config: str,
    table: str,
    partition: str,
    tablespace: str,
    parallel_degree: Optional[int],
    dry_run: bool,
):
    """Move PARTITION of TABLE to another tablespace."""
    _run_operation(
        config,
        dry_run,
        lambda o, dry: o.move_partition(
            table, partition, tablespace, parallel_degree, dry_run=dry
        ),
    )


@main.command()
@config_option
@click.argument("table")
@click.argument("partition")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@dry_run_option
@handle_errors
def drop(config: str, table: str, partition: str, yes: bool, dry_run: bool):
    """Drop PARTITION of TABLE and its rows."""
    if not (yes or dry_run):
        if not click.confirm(f"Drop partition {partition} of {table} and its rows?"):
            console.print("[yellow]Aborted[/yellow]")
            sys.exit(1)
    _run_operation(
        config, dry_run, lambda o, dry: o.drop_partition(table, partition, dry_run=dry)
    )


@main.command()
@config_option
@click.argument("table")
@click.option("--partition", help="Limit collection to one partition")
@click.option("--subpartition", help="Limit collection to one subpartition")
@click.option("--rows", "cardinality_hint", type=int, help="Row count hint")
@click.option(
    "--incremental/--no-incremental",
    default=None,
    help="Override incremental statistics",
)
@click.option("--sample-percent", type=float, help="Fixed estimate percent")
@click.option(
    "--stale-only",
    is_flag=True,
    help="Only partitions with missing, old or stale statistics",
)
@click.option("--stale-days", type=int, help="Age in days after which statistics are stale")
@handle_errors
def analyze(
    config: str,
    table: str,
    partition: Optional[str],
    subpartition: Optional[str],
    cardinality_hint: Optional[int],
    incremental: Optional[bool],
    sample_percent: Optional[float],
    stale_only: bool,
    stale_days: Optional[int],
):
    """Gather optimizer statistics for TABLE."""
    _run_operation(
        config,
        False,
        lambda o, dry: o.analyze(
            table,
            partition_name=partition,
            subpartition_name=subpartition,
            cardinality_hint=cardinality_hint,
            incremental=incremental,
            sample_percent=sample_percent,
            stale_only=stale_only,
            stale_days=stale_days,
        ),
    )


def _create_default_config() -> PartkitConfig:
    """Create a default configuration."""
    return PartkitConfig(
        database=DatabaseConnection(
            host="localhost",
            port=1521,
            service_name="FREEPDB1",
            user="${ORACLE_USER}",
            password="${ORACLE_PASSWORD}",
        ),
    )


def _display_result(result: OperationResult) -> None:
    """Display the outcome of an operation."""
    table = Table(title=f"{result.operation_type.value} {result.table_name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")

    status_style = "green" if result.succeeded else "red"
    table.add_row("Operation ID", str(result.operation_id))
    table.add_row("Status", f"[{status_style}]{result.status.value}[/{status_style}]")
    table.add_row("Phases", " > ".join(p.value for p in result.phases))
    table.add_row("Duration", format_duration(result.duration_ms))
    if result.dry_run:
        table.add_row("Mode", "dry run")
    if result.analyzed_partitions:
        table.add_row("Partitions", ", ".join(result.analyzed_partitions))
    if result.stats_plan is not None:
        plan = result.stats_plan
        table.add_row(
            "Statistics",
            f"{plan.strategy.value}, degree {plan.degree}, "
            f"granularity {plan.granularity.value}",
        )
    console.print(table)

    if result.ddl:
        console.print("\n[bold]DDL[/bold]")
        console.print(result.ddl, soft_wrap=True, markup=False, highlight=False)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}", soft_wrap=True)

    if result.error is not None:
        console.print(
            f"[red]{result.error_name}:[/red] {escape(str(result.error))}",
            soft_wrap=True,
        )


def _display_config_summary(config: PartkitConfig) -> None:
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    summary = Table(title="partkit")
    summary.add_column("Section", style="cyan")
    summary.add_column("Settings", style="green")

    if config.database:
        summary.add_row(
            "database", f"{config.database.user}@{config.database.to_dsn()}"
        )
    else:
        summary.add_row("database", "[yellow]not configured[/yellow]")
    summary.add_row(
        "conversion",
        f"parallel {config.conversion.parallel_degree}, "
        f"hash partitions {config.conversion.hash_partition_count}",
    )
    summary.add_row(
        "statistics",
        f"enabled={config.statistics.enabled}, "
        f"incremental={config.statistics.incremental}, "
        f"default degree {config.statistics.default_degree}",
    )
    summary.add_row(
        "operation_log",
        f"{config.operation_log.sink} ({config.operation_log.table_name})"
        if config.operation_log.enabled
        else "disabled",
    )
    console.print(summary)


if __name__ == "__main__":
    main()
