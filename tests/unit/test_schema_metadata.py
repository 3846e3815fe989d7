"""
Unit tests for operation log schema management.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from partkit.config import OperationLogConfig
from partkit.exceptions import DatabaseError
from partkit.schema.ddl_builder import generate_create_table_ddl
from partkit.schema.metadata import OperationLogSchema


@pytest.fixture
def mock_pool():
    pool = MagicMock()
    pool.fetchval = AsyncMock(return_value=0)
    pool.execute = AsyncMock()
    return pool


@pytest.fixture
def schema(mock_pool):
    return OperationLogSchema(mock_pool, OperationLogConfig(table_name="ops_log", retention_days=30))


class TestOperationLogSchema:
    """Test the log table definition and setup."""

    def test_table_ddl(self, schema):
        ddl = generate_create_table_ddl(schema.table_definition())

        assert ddl.startswith("CREATE TABLE OPS_LOG (")
        assert "LOG_ID NUMBER GENERATED ALWAYS AS IDENTITY NOT NULL" in ddl
        assert "OPERATION_TIME TIMESTAMP DEFAULT SYSTIMESTAMP NOT NULL" in ddl
        assert "CONSTRAINT PK_OPS_LOG PRIMARY KEY (LOG_ID)" in ddl
        assert "STATUS IN ('STARTED', 'SUCCESS', 'FAILED', 'WARNING')" in ddl
        assert (
            "PARTITION BY RANGE (OPERATION_TIME) INTERVAL (NUMTOYMINTERVAL(1, 'MONTH'))" in ddl
        )
        assert "PARTITION P_LOG_INITIAL VALUES LESS THAN (TIMESTAMP '2024-01-01 00:00:00')" in ddl

    def test_index_ddl_is_local(self, schema):
        assert all(ddl.endswith(" LOCAL") for ddl in schema.index_ddl())
        assert len(schema.index_ddl()) == 3

    @pytest.mark.asyncio
    async def test_setup_creates_table_and_indexes(self, schema, mock_pool):
        results = await schema.setup()

        assert results["tables_created"] == ["OPS_LOG"]
        assert results["indexes_created"] == ["IX_OPS_LOG_OP", "IX_OPS_LOG_TAB", "IX_OPS_LOG_ST"]
        assert results["errors"] == []
        assert mock_pool.execute.await_count == 4
        assert mock_pool.execute.await_args_list[0].args[0].startswith("CREATE TABLE OPS_LOG")

    @pytest.mark.asyncio
    async def test_setup_skips_existing_table(self, schema, mock_pool):
        mock_pool.fetchval.return_value = 1

        results = await schema.setup()

        assert results["tables_created"] == []
        mock_pool.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_index_failure_is_collected(self, schema, mock_pool):
        mock_pool.execute.side_effect = [
            None,
            RuntimeError("ORA-00955: name is already used by an existing object"),
            None,
            None,
        ]

        results = await schema.setup()

        assert results["tables_created"] == ["OPS_LOG"]
        assert len(results["indexes_created"]) == 2
        assert "ORA-00955" in results["errors"][0]

    @pytest.mark.asyncio
    async def test_table_failure_raises(self, schema, mock_pool):
        mock_pool.execute.side_effect = RuntimeError("ORA-01031: insufficient privileges")

        with pytest.raises(DatabaseError, match="Failed to create OPS_LOG"):
            await schema.setup()

    @pytest.mark.asyncio
    async def test_purge_uses_retention(self, schema, mock_pool):
        cursor = MagicMock()
        cursor.execute = AsyncMock()
        cursor.rowcount = 12
        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor
        conn.cursor.return_value.__exit__.return_value = False
        conn.commit = AsyncMock()
        mock_pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        mock_pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)

        deleted = await schema.purge()

        assert deleted == 12
        assert cursor.execute.await_args.args[1] == {"days": 30}
        conn.commit.assert_awaited_once()
