"""
Unit tests for the autonomous operation log and its sinks.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from partkit.exceptions import ExecutionError, LogSinkError
from partkit.operation_log import (
    AutonomousOperationLog,
    DatabaseOperationLogSink,
    InMemoryOperationLogSink,
    LoggingOperationLogSink,
    OperationRecord,
    OperationStatus,
    error_code_of,
    format_duration,
)


def _record(**overrides) -> OperationRecord:
    values = dict(
        operation_id=1,
        operation_type="CONVERT_TO_PARTITIONED",
        phase="EXECUTE",
        table_name="ORDERS",
        status=OperationStatus.SUCCESS,
    )
    values.update(overrides)
    return OperationRecord(**values)


def _mock_pool():
    """Pool whose acquire() yields a connection with a sync cursor context."""
    cursor = MagicMock()
    cursor.execute = AsyncMock()

    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.cursor.return_value.__exit__.return_value = False
    conn.commit = AsyncMock()

    pool = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
    return pool, conn, cursor


class TestHelpers:
    """Test record helpers."""

    def test_error_code_of(self):
        assert error_code_of(ExecutionError("ORA-14427: table does not support modification")) == 14427
        assert error_code_of(RuntimeError("connection reset")) is None

    @pytest.mark.parametrize(
        "duration,text",
        [(None, "n/a"), (250, "250 ms"), (1500, "1.50 sec"), (90_000, "1.50 min")],
    )
    def test_format_duration(self, duration, text):
        assert format_duration(duration) == text

    def test_record_to_dict(self):
        data = _record(status=OperationStatus.FAILED).to_dict()

        assert data["status"] == "FAILED"
        assert isinstance(data["timestamp"], str)


class TestAutonomousOperationLog:
    """Test the non-raising log writer."""

    def test_ids_increase(self):
        log = AutonomousOperationLog(InMemoryOperationLogSink(), start_id=10)

        assert [log.next_operation_id() for _ in range(3)] == [10, 11, 12]

    def test_clock_seeded_ids(self):
        first = AutonomousOperationLog(InMemoryOperationLogSink())
        second = AutonomousOperationLog(InMemoryOperationLogSink())

        assert second.next_operation_id() >= first.next_operation_id()

    @pytest.mark.asyncio
    async def test_started_and_finished(self):
        sink = InMemoryOperationLogSink()
        log = AutonomousOperationLog(sink, start_id=1)

        await log.started(1, "SPLIT_PARTITION", "VALIDATE", "ORDERS", partition_name="PMAX")
        await log.finished(
            1,
            "SPLIT_PARTITION",
            "EXECUTE",
            "ORDERS",
            OperationStatus.FAILED,
            duration_ms=12.0,
            error=ExecutionError("ORA-14080: partition cannot be split along the specified high bound"),
        )

        assert [r.status for r in sink.for_operation(1)] == [
            OperationStatus.STARTED,
            OperationStatus.FAILED,
        ]
        failed = sink.records[1]
        assert failed.error_code == 14080
        assert failed.error_message.startswith("ORA-14080")

    @pytest.mark.asyncio
    async def test_sink_failure_is_returned_not_raised(self):
        sink = MagicMock()
        sink.append = AsyncMock(side_effect=RuntimeError("tablespace full"))
        log = AutonomousOperationLog(sink, start_id=1)

        error = await log.write(_record())

        assert isinstance(error, LogSinkError)
        assert log.failed_writes == 1
        assert log.last_error is error

    @pytest.mark.asyncio
    async def test_disabled_log_skips_sink(self):
        sink = InMemoryOperationLogSink()
        log = AutonomousOperationLog(sink, enabled=False)

        assert await log.write(_record()) is None
        assert sink.records == []


class TestLoggingSink:
    """Test the logging sink."""

    @pytest.mark.asyncio
    async def test_levels(self, caplog):
        sink = LoggingOperationLogSink("partkit.test.operations")

        with caplog.at_level(logging.INFO, logger="partkit.test.operations"):
            await sink.append(_record(partition_name="P1", duration_ms=5))
            await sink.append(
                _record(status=OperationStatus.FAILED, error_message="ORA-00054: resource busy")
            )

        assert caplog.records[0].levelno == logging.INFO
        assert "ORDERS.P1" in caplog.records[0].getMessage()
        assert caplog.records[1].levelno == logging.ERROR
        assert "ORA-00054" in caplog.records[1].getMessage()


class TestDatabaseSink:
    """Test the database sink with a mocked pool."""

    @pytest.mark.asyncio
    async def test_insert_and_commit(self):
        pool, conn, cursor = _mock_pool()
        sink = DatabaseOperationLogSink(pool, "OPS_LOG")

        await sink.append(_record(attributes={"partition_type": "HASH"}, message="x" * 5000))

        sql, params = cursor.execute.call_args.args
        assert "INSERT INTO OPS_LOG" in sql
        assert params["status"] == "SUCCESS"
        assert params["attributes"] == '{"partition_type": "HASH"}'
        assert len(params["message"]) == 4000
        conn.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_raises_log_sink_error(self):
        pool, conn, cursor = _mock_pool()
        cursor.execute.side_effect = RuntimeError("ORA-00942: table or view does not exist")
        sink = DatabaseOperationLogSink(pool)

        with pytest.raises(LogSinkError, match="PARTITION_OPERATIONS_LOG"):
            await sink.append(_record())

        conn.commit.assert_not_awaited()
