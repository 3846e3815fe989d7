"""
Configuration system for partkit using Pydantic.
"""

import os
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError


class DatabaseConnection(BaseModel):
    """Oracle database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(1521, description="Listener port")
    service_name: str = Field(..., description="Database service name")
    user: str = Field(..., description="Database user")
    password: str = Field(..., description="Database password")
    min_connections: int = Field(1, description="Minimum pool size")
    max_connections: int = Field(4, description="Maximum pool size")
    connect_timeout: int = Field(30, description="Connection timeout in seconds")

    @field_validator("max_connections")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        if v < 2:
            # The operation log needs its own session next to the DDL session.
            raise ValueError("max_connections must be at least 2")
        return v

    def to_dsn(self) -> str:
        """Convert to an Easy Connect string."""
        return f"{self.host}:{self.port}/{self.service_name}"


class ConversionConfig(BaseModel):
    """Defaults applied to online conversion and maintenance DDL."""

    parallel_degree: int = Field(4, ge=1, description="Default PARALLEL degree")
    hash_partition_count: int = Field(
        4, ge=1, description="Partition count for HASH conversions"
    )
    default_partition_name: str = Field(
        "p_default", description="Seed partition name for RANGE/LIST conversions"
    )
    interval_seed_partition_name: str = Field(
        "p1", description="Seed partition name for INTERVAL conversions"
    )
    online: bool = Field(True, description="Run maintenance DDL with ONLINE")
    update_indexes: bool = Field(
        True, description="Carry dependent indexes through with UPDATE INDEXES"
    )
    execute_timeout: Optional[float] = Field(
        None, description="Seconds to wait for a single DDL statement"
    )


class StatisticsConfig(BaseModel):
    """Statistics strategy configuration."""

    enabled: bool = Field(True, description="Refresh statistics after DDL")
    small_table_rows: int = Field(1_000_000, description="Upper bound of small band")
    medium_table_rows: int = Field(
        10_000_000, description="Upper bound of medium band"
    )
    large_table_rows: int = Field(100_000_000, description="Upper bound of large band")
    small_table_degree: int = Field(2, ge=1)
    medium_table_degree: int = Field(4, ge=1)
    large_table_degree: int = Field(8, ge=1)
    huge_table_degree: int = Field(16, ge=1)
    default_degree: int = Field(
        4, ge=1, description="Degree used when the row count is unknown"
    )
    incremental: bool = Field(
        True, description="Incremental statistics for partitioned tables"
    )
    sample_percent: Optional[float] = Field(
        None, description="Fixed estimate percent; unset means automatic sampling"
    )
    global_refresh: bool = Field(
        True, description="Refresh global statistics after partition-level collection"
    )
    cascade: bool = Field(True, description="Gather index statistics too")
    stale_days: int = Field(
        7, ge=0, description="Partitions analyzed longer ago than this are stale"
    )

    @field_validator("sample_percent")
    @classmethod
    def validate_sample_percent(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not 0 < v <= 100:
            raise ValueError("sample_percent must be in (0, 100]")
        return v


class OperationLogConfig(BaseModel):
    """Operation log configuration."""

    enabled: bool = Field(True, description="Record operations and phases")
    sink: Literal["database", "logging", "memory"] = Field(
        "database", description="Where operation records are written"
    )
    table_name: str = Field(
        "PARTITION_OPERATIONS_LOG", description="Operation log table"
    )
    retention_days: int = Field(
        90, ge=1, description="Age after which log rows may be purged"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class PartkitConfig(BaseSettings):
    """Main partkit configuration."""

    service_name: str = Field("partkit", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")
    dry_run: bool = Field(False, description="Render DDL without executing it")

    database: Optional[DatabaseConnection] = Field(
        None, description="Target database connection"
    )
    conversion: ConversionConfig = Field(
        default_factory=ConversionConfig, description="Conversion defaults"
    )
    statistics: StatisticsConfig = Field(
        default_factory=StatisticsConfig, description="Statistics strategy"
    )
    operation_log: OperationLogConfig = Field(
        default_factory=OperationLogConfig, description="Operation log"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="PARTKIT_",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PartkitConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def require_database(self) -> DatabaseConnection:
        """Return the database section or fail if it is missing."""
        if self.database is None:
            raise ConfigurationError("No database connection configured")
        return self.database

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        stats = self.statistics
        if not (
            stats.small_table_rows < stats.medium_table_rows < stats.large_table_rows
        ):
            raise ConfigurationError(
                "Statistics row bands must be strictly increasing: "
                f"{stats.small_table_rows}, {stats.medium_table_rows}, "
                f"{stats.large_table_rows}"
            )

        degrees = [
            stats.small_table_degree,
            stats.medium_table_degree,
            stats.large_table_degree,
            stats.huge_table_degree,
        ]
        if degrees != sorted(degrees):
            raise ConfigurationError(
                f"Statistics degrees must not decrease with table size: {degrees}"
            )

        if self.operation_log.sink == "database" and self.operation_log.enabled:
            if self.database is None:
                raise ConfigurationError(
                    "operation_log.sink 'database' requires a database section"
                )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )
