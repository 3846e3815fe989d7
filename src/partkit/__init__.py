"""
partkit: online partitioning toolkit for Oracle tables.

partkit renders partitioning DDL, converts live heap tables to partitioned
ones, reshapes existing schemes, and keeps optimizer statistics current
afterwards, recording every step in an autonomous operation log.
"""

__version__ = "0.1.0"
__author__ = "partkit Contributors"

from .config import PartkitConfig
from .exceptions import (
    BuildError,
    ConfigurationError,
    DatabaseError,
    ExecutionError,
    LogSinkError,
    PartkitError,
    StatisticsWarning,
    ValidationError,
)

__all__ = [
    "__version__",
    "PartkitConfig",
    "PartkitError",
    "ConfigurationError",
    "ValidationError",
    "BuildError",
    "ExecutionError",
    "StatisticsWarning",
    "LogSinkError",
    "DatabaseError",
]
