"""
Exception classes for partkit.
"""

from typing import Any, Dict, Optional


class PartkitError(Exception):
    """Base exception for all partkit errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(PartkitError):
    """Raised when there's an error in configuration."""

    pass


class ValidationError(PartkitError):
    """Raised when an operation's preconditions do not hold."""

    pass


class BuildError(PartkitError):
    """Raised when a partition description cannot be rendered as DDL."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class ExecutionError(PartkitError):
    """Raised when the DDL executor rejects a statement.

    The executor's own message is kept verbatim in ``message``.
    """

    def __init__(
        self,
        message: str,
        statement: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.statement = statement

    def __str__(self) -> str:
        # The executor text is the whole story; no decoration.
        return self.message


class StatisticsWarning(PartkitError):
    """Raised internally when post-change statistics collection fails.

    Never escapes the orchestrator; it is recorded as a warning instead.
    """

    pass


class LogSinkError(PartkitError):
    """Raised when an operation log sink cannot persist a record."""

    pass


class DatabaseError(PartkitError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class CatalogError(DatabaseError):
    """Raised when the data dictionary cannot be queried."""

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {"table": table_name} if table_name else None
        super().__init__(message, details, cause)
        self.table_name = table_name
