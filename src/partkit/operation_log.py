"""
Autonomous operation log for partkit.

Every operation and phase is recorded through :class:`AutonomousOperationLog`.
Writes happen on their own session and commit on their own, so they survive
a failed DDL statement, and a failing sink never breaks the operation being
logged: sink errors are caught at :meth:`AutonomousOperationLog.write` and
returned, not raised.
"""

import itertools
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .database.connection import ConnectionPool
from .exceptions import LogSinkError


logger = logging.getLogger(__name__)

_ORA_CODE_RE = re.compile(r"ORA-(\d{5})")


class OperationStatus(str, Enum):
    """Status of a logged operation or phase."""

    STARTED = "STARTED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    WARNING = "WARNING"


@dataclass
class OperationRecord:
    """One row of the operation log."""

    operation_id: int
    operation_type: str
    phase: str
    table_name: str
    status: OperationStatus
    partition_name: Optional[str] = None
    subpartition_name: Optional[str] = None
    message: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    duration_ms: Optional[float] = None
    rows_processed: Optional[int] = None
    object_count: Optional[int] = None
    sql_text: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


def error_code_of(error: BaseException) -> Optional[int]:
    """Extract an ORA- error number from an exception message, if any."""
    match = _ORA_CODE_RE.search(str(error))
    return int(match.group(1)) if match else None


def format_duration(duration_ms: Optional[float]) -> str:
    """Human readable duration (ms, sec or min)."""
    if duration_ms is None:
        return "n/a"
    if duration_ms < 1000:
        return f"{duration_ms:.0f} ms"
    if duration_ms < 60_000:
        return f"{duration_ms / 1000:.2f} sec"
    return f"{duration_ms / 60_000:.2f} min"


class OperationLogSink(ABC):
    """Destination for operation records."""

    @abstractmethod
    async def append(self, record: OperationRecord) -> None:
        """Persist one record; raise on failure."""


class InMemoryOperationLogSink(OperationLogSink):
    """Keeps records in a list. Used for dry runs and tests."""

    def __init__(self):
        self.records: List[OperationRecord] = []

    async def append(self, record: OperationRecord) -> None:
        self.records.append(record)

    def for_operation(self, operation_id: int) -> List[OperationRecord]:
        return [r for r in self.records if r.operation_id == operation_id]


class LoggingOperationLogSink(OperationLogSink):
    """Writes records to the Python logging system."""

    _LEVELS = {
        OperationStatus.STARTED: logging.INFO,
        OperationStatus.SUCCESS: logging.INFO,
        OperationStatus.WARNING: logging.WARNING,
        OperationStatus.FAILED: logging.ERROR,
    }

    def __init__(self, logger_name: str = "partkit.operations"):
        self._logger = logging.getLogger(logger_name)

    async def append(self, record: OperationRecord) -> None:
        target = record.table_name
        if record.partition_name:
            target += f".{record.partition_name}"
        text = (
            f"[{record.operation_id}] {record.operation_type} {record.phase} "
            f"{record.status.value} on {target}"
        )
        if record.duration_ms is not None:
            text += f" in {format_duration(record.duration_ms)}"
        if record.message:
            text += f": {record.message}"
        if record.error_message:
            text += f" ({record.error_message})"
        self._logger.log(self._LEVELS[record.status], text)


class DatabaseOperationLogSink(OperationLogSink):
    """Inserts records into the operation log table.

    Each insert acquires its own pooled session and commits it, so log rows
    are independent of the session running the DDL.
    """

    def __init__(self, pool: ConnectionPool, table_name: str = "PARTITION_OPERATIONS_LOG"):
        self.pool = pool
        self.table_name = table_name

    def _insert_sql(self) -> str:
        return f"""
            INSERT INTO {self.table_name} (
                operation_id, operation_type, phase, table_name, partition_name,
                subpartition_name, status, message, error_code, error_message,
                duration_ms, rows_processed, object_count, sql_text, attributes,
                operation_time
            ) VALUES (
                :operation_id, :operation_type, :phase, :table_name, :partition_name,
                :subpartition_name, :status, :message, :error_code, :error_message,
                :duration_ms, :rows_processed, :object_count, :sql_text, :attributes,
                :operation_time
            )
        """

    async def append(self, record: OperationRecord) -> None:
        params = {
            "operation_id": record.operation_id,
            "operation_type": record.operation_type,
            "phase": record.phase,
            "table_name": record.table_name,
            "partition_name": record.partition_name,
            "subpartition_name": record.subpartition_name,
            "status": record.status.value,
            "message": (record.message or "")[:4000] or None,
            "error_code": record.error_code,
            "error_message": (record.error_message or "")[:4000] or None,
            "duration_ms": record.duration_ms,
            "rows_processed": record.rows_processed,
            "object_count": record.object_count,
            "sql_text": record.sql_text,
            "attributes": json.dumps(record.attributes, default=str) if record.attributes else None,
            "operation_time": record.timestamp,
        }

        try:
            async with self.pool.acquire() as conn:
                with conn.cursor() as cursor:
                    await cursor.execute(self._insert_sql(), params)
                await conn.commit()
        except Exception as e:
            raise LogSinkError(
                f"Failed to insert into {self.table_name}: {e}",
                {"operation_id": record.operation_id},
                e,
            ) from e


class AutonomousOperationLog:
    """Isolated, non-raising writer over an :class:`OperationLogSink`."""

    def __init__(
        self,
        sink: OperationLogSink,
        enabled: bool = True,
        start_id: Optional[int] = None,
    ):
        self.sink = sink
        self.enabled = enabled
        # Millisecond clock seed keeps ids increasing across runs.
        first = start_id if start_id is not None else int(time.time() * 1000)
        self._ids = itertools.count(first)
        self.failed_writes = 0
        self.last_error: Optional[LogSinkError] = None

    def next_operation_id(self) -> int:
        return next(self._ids)

    async def write(self, record: OperationRecord) -> Optional[LogSinkError]:
        """Append ``record``; return the sink error instead of raising it."""
        if not self.enabled:
            return None

        try:
            await self.sink.append(record)
        except Exception as e:
            error = e if isinstance(e, LogSinkError) else LogSinkError(
                f"Operation log write failed: {e}", cause=e
            )
            self.failed_writes += 1
            self.last_error = error
            logger.warning(
                f"Could not record {record.phase} {record.status.value} for "
                f"operation {record.operation_id}: {e}"
            )
            return error
        return None

    async def started(
        self,
        operation_id: int,
        operation_type: str,
        phase: str,
        table_name: str,
        partition_name: Optional[str] = None,
        subpartition_name: Optional[str] = None,
        message: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[LogSinkError]:
        return await self.write(
            OperationRecord(
                operation_id=operation_id,
                operation_type=operation_type,
                phase=phase,
                table_name=table_name,
                status=OperationStatus.STARTED,
                partition_name=partition_name,
                subpartition_name=subpartition_name,
                message=message,
                attributes=dict(attributes or {}),
            )
        )

    async def finished(
        self,
        operation_id: int,
        operation_type: str,
        phase: str,
        table_name: str,
        status: OperationStatus,
        duration_ms: Optional[float] = None,
        message: Optional[str] = None,
        error: Optional[BaseException] = None,
        partition_name: Optional[str] = None,
        subpartition_name: Optional[str] = None,
        sql_text: Optional[str] = None,
        object_count: Optional[int] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[LogSinkError]:
        return await self.write(
            OperationRecord(
                operation_id=operation_id,
                operation_type=operation_type,
                phase=phase,
                table_name=table_name,
                status=status,
                partition_name=partition_name,
                subpartition_name=subpartition_name,
                message=message,
                error_code=error_code_of(error) if error is not None else None,
                error_message=str(error) if error is not None else None,
                duration_ms=duration_ms,
                object_count=object_count,
                sql_text=sql_text,
                attributes=dict(attributes or {}),
            )
        )
