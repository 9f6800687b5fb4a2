"""
Async storage engine adapters for the kvite key-value store.
"""

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional

import aiosqlite

from .exceptions import EngineError, StoreConnectionError
from .storage import MEMORY_LOCATION, Params, Row, remove_scratch, scratch_path

logger = logging.getLogger(__name__)


class AsyncEngineTransaction(ABC):
    """Abstract handle on one async engine-level transaction."""

    @abstractmethod
    async def execute(self, sql: str, params: Params = ()) -> int:
        """Execute a write statement and return the affected row count."""
        pass

    @abstractmethod
    def query(self, sql: str, params: Params = ()) -> AsyncContextManager[AsyncIterator[Row]]:
        """Run a query; the cursor is released when the context exits."""
        pass

    async def query_row(self, sql: str, params: Params = ()) -> Optional[Row]:
        """Return the first row of a query, or None when there are no rows."""
        async with self.query(sql, params) as rows:
            async for row in rows:
                return row
        return None

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass


class AsyncStorageEngine(ABC):
    """Abstract base class for async storage engines."""

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def begin(self) -> AsyncEngineTransaction:
        pass

    @abstractmethod
    def query(self, sql: str, params: Params = ()) -> AsyncContextManager[AsyncIterator[Row]]:
        """Run a standalone read outside of any caller transaction."""
        pass

    async def query_row(self, sql: str, params: Params = ()) -> Optional[Row]:
        async with self.query(sql, params) as rows:
            async for row in rows:
                return row
        return None


async def _fetch_rows(cursor: aiosqlite.Cursor) -> AsyncIterator[Row]:
    while True:
        try:
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise EngineError(f"Failed to fetch row: {e}") from e
        if row is None:
            return
        yield row


@asynccontextmanager
async def _open_cursor(connection: aiosqlite.Connection, sql: str, params: Params) -> AsyncIterator[AsyncIterator[Row]]:
    try:
        cursor = await connection.execute(sql, params)
    except sqlite3.Error as e:
        raise EngineError(f"Query failed: {e}") from e

    rows = _fetch_rows(cursor)
    try:
        yield rows
    finally:
        await rows.aclose()
        try:
            await cursor.close()
        except sqlite3.Error as e:
            logger.warning("Failed to close cursor: %s", e)


class AsyncSQLiteTransaction(AsyncEngineTransaction):
    """A transaction running on its own aiosqlite connection."""

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self.connection: Optional[aiosqlite.Connection] = connection

    def _require_connection(self) -> aiosqlite.Connection:
        if self.connection is None:
            raise EngineError("Transaction has already been committed or rolled back")
        return self.connection

    async def execute(self, sql: str, params: Params = ()) -> int:
        connection = self._require_connection()
        try:
            cursor = await connection.execute(sql, params)
        except sqlite3.Error as e:
            raise EngineError(f"Statement failed: {e}") from e
        rowcount = cursor.rowcount
        await cursor.close()
        return rowcount

    def query(self, sql: str, params: Params = ()) -> AsyncContextManager[AsyncIterator[Row]]:
        return _open_cursor(self._require_connection(), sql, params)

    async def commit(self) -> None:
        connection = self._require_connection()
        try:
            await connection.execute("COMMIT")
        except sqlite3.Error as e:
            raise EngineError(f"Failed to commit transaction: {e}") from e
        await self._release()

    async def rollback(self) -> None:
        connection = self._require_connection()
        try:
            await connection.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise EngineError(f"Failed to roll back transaction: {e}") from e
        await self._release()

    async def _release(self) -> None:
        connection, self.connection = self.connection, None
        try:
            await connection.close()
        except sqlite3.Error as e:
            logger.warning("Failed to release transaction connection: %s", e)


class AsyncSQLiteStorage(AsyncStorageEngine):
    """Async SQLite-based storage engine."""

    def __init__(self, location: str, timeout: float = 5.0) -> None:
        self.location = location
        self.timeout = timeout
        self.connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._path: Optional[str] = None

    async def _connect(self) -> aiosqlite.Connection:
        return await aiosqlite.connect(
            self._path,
            timeout=self.timeout,
            isolation_level=None,
        )

    async def open(self) -> None:
        """Open the anchor connection in WAL mode."""
        if not self.location:
            raise StoreConnectionError("Database location must not be empty")

        async with self._lock:
            if self.connection is not None:
                return
            self._path = scratch_path() if self.location == MEMORY_LOCATION else self.location
            connection = None
            try:
                connection = await self._connect()
                await connection.execute("PRAGMA journal_mode=WAL")
            except sqlite3.Error as e:
                if connection is not None:
                    await connection.close()
                self._discard_scratch()
                raise StoreConnectionError(f"Failed to open database {self.location!r}: {e}") from e
            self.connection = connection

    async def close(self) -> None:
        async with self._lock:
            if self.connection is None:
                return
            connection, self.connection = self.connection, None
            try:
                await connection.close()
            except sqlite3.Error as e:
                raise EngineError(f"Failed to close database: {e}") from e
            finally:
                self._discard_scratch()

    def _discard_scratch(self) -> None:
        if self.location == MEMORY_LOCATION and self._path is not None:
            remove_scratch(self._path)
        self._path = None

    @property
    def closed(self) -> bool:
        return self.connection is None

    async def begin(self) -> AsyncSQLiteTransaction:
        if self.connection is None:
            raise EngineError("Database is closed")

        try:
            connection = await self._connect()
        except sqlite3.Error as e:
            raise EngineError(f"Failed to begin transaction: {e}") from e

        try:
            await connection.execute("BEGIN")
        except sqlite3.Error as e:
            await connection.close()
            raise EngineError(f"Failed to begin transaction: {e}") from e

        return AsyncSQLiteTransaction(connection)

    @asynccontextmanager
    async def query(self, sql: str, params: Params = ()) -> AsyncIterator[AsyncIterator[Row]]:
        async with self._lock:
            if self.connection is None:
                raise EngineError("Database is closed")
            async with _open_cursor(self.connection, sql, params) as rows:
                yield rows

    async def __aenter__(self):
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
