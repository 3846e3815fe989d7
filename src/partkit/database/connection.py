"""
Database connection management for partkit.

Provides an async Oracle connection pool built on python-oracledb. Every
acquired connection is a separate database session, which is what lets the
operation log commit independently of the DDL session.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import oracledb

from ..config import DatabaseConnection
from ..exceptions import DatabaseConnectionError, DatabaseError


logger = logging.getLogger(__name__)

Params = Optional[Dict[str, Any]]


class ConnectionPool:
    """Async Oracle connection pool wrapper."""

    def __init__(self, config: DatabaseConnection):
        self.config = config
        self._pool: Optional[oracledb.AsyncConnectionPool] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self._pool is not None:
                return

            try:
                logger.info(
                    f"Initializing connection pool to {self.config.to_dsn()} "
                    f"(min={self.config.min_connections}, max={self.config.max_connections})"
                )

                self._pool = oracledb.create_pool_async(
                    user=self.config.user,
                    password=self.config.password,
                    dsn=self.config.to_dsn(),
                    min=self.config.min_connections,
                    max=self.config.max_connections,
                    increment=1,
                    tcp_connect_timeout=self.config.connect_timeout,
                )

                logger.info("Connection pool initialized successfully")

            except oracledb.Error as e:
                logger.error(f"Failed to initialize connection pool: {e}")
                raise DatabaseConnectionError(
                    f"Failed to initialize connection pool: {e}"
                ) from e

    async def close(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is not None:
                logger.info("Closing connection pool")
                await self._pool.close()
                self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[oracledb.AsyncConnection]:
        """Acquire a connection (session) from the pool."""
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def execute(self, statement: str, params: Params = None) -> None:
        """Execute a statement on its own session."""
        async with self.acquire() as conn:
            with conn.cursor() as cursor:
                await cursor.execute(statement, params or {})

    async def fetch(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Fetch all rows as dicts keyed by lower-case column name."""
        async with self.acquire() as conn:
            with conn.cursor() as cursor:
                await cursor.execute(query, params or {})
                columns = [d[0].lower() for d in cursor.description]
                rows = await cursor.fetchall()
        return [dict(zip(columns, row)) for row in rows]

    async def fetchrow(
        self, query: str, params: Params = None
    ) -> Optional[Dict[str, Any]]:
        """Fetch a single row."""
        rows = await self.fetch(query, params)
        return rows[0] if rows else None

    async def fetchval(self, query: str, params: Params = None) -> Any:
        """Fetch the first column of the first row."""
        row = await self.fetchrow(query, params)
        if row is None:
            return None
        return next(iter(row.values()))

    async def test_connection(self) -> Dict[str, Any]:
        """Test the connection and return session info."""
        try:
            async with self.acquire() as conn:
                with conn.cursor() as cursor:
                    await cursor.execute(
                        "SELECT sys_context('USERENV', 'DB_NAME'), USER FROM dual"
                    )
                    database, user = await cursor.fetchone()
                return {
                    "status": "connected",
                    "database": database,
                    "user": user,
                    "version": conn.version,
                }
        except oracledb.Error as e:
            logger.error(f"Connection test failed: {e}")
            raise DatabaseError(f"Connection test failed: {e}") from e

    def get_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics."""
        if self._pool is None:
            return {"opened": 0, "busy": 0, "initialized": False}

        return {
            "opened": self._pool.opened,
            "busy": self._pool.busy,
            "initialized": True,
        }

    @property
    def is_initialized(self) -> bool:
        """Check if pool is initialized."""
        return self._pool is not None

    async def __aenter__(self) -> "ConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
