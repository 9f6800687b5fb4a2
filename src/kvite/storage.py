"""
Storage engine adapters for the kvite key-value store.

The engine is the only component that talks to SQLite. A ``SQLiteStorage``
keeps one long-lived anchor connection for standalone reads
and hands every transaction its own connection, so a single engine can be
shared between threads while each transaction stays isolated.
"""

import logging
import os
import shutil
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, ContextManager, Iterator, Optional, Sequence, Tuple

from .exceptions import EngineError, StoreConnectionError

logger = logging.getLogger(__name__)

MEMORY_LOCATION = ":memory:"

Row = Tuple[Any, ...]
Params = Sequence[Any]


class EngineTransaction(ABC):
    """Abstract handle on one engine-level transaction."""

    @abstractmethod
    def execute(self, sql: str, params: Params = ()) -> int:
        """Execute a write statement and return the affected row count."""
        pass

    @abstractmethod
    def query(self, sql: str, params: Params = ()) -> ContextManager[Iterator[Row]]:
        """Run a query; the cursor is released when the context exits."""
        pass

    def query_row(self, sql: str, params: Params = ()) -> Optional[Row]:
        """Return the first row of a query, or None when there are no rows."""
        with self.query(sql, params) as rows:
            return next(rows, None)

    @abstractmethod
    def commit(self) -> None:
        """Commit the transaction."""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Roll the transaction back."""
        pass


class StorageEngine(ABC):
    """Abstract base class for storage engines."""

    @abstractmethod
    def open(self) -> None:
        """Open the engine connection."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the engine connection. Closing twice is allowed."""
        pass

    @abstractmethod
    def begin(self) -> EngineTransaction:
        """Start a new engine transaction."""
        pass

    @abstractmethod
    def query(self, sql: str, params: Params = ()) -> ContextManager[Iterator[Row]]:
        """Run a standalone read outside of any caller transaction."""
        pass

    def query_row(self, sql: str, params: Params = ()) -> Optional[Row]:
        """Return the first row of a standalone read, or None."""
        with self.query(sql, params) as rows:
            return next(rows, None)


def scratch_path() -> str:
    """A fresh database file standing in for ":memory:", visible to every connection."""
    return os.path.join(tempfile.mkdtemp(prefix="kvite-"), "memory.db")


def remove_scratch(path: str) -> None:
    shutil.rmtree(os.path.dirname(path), ignore_errors=True)


def _fetch_rows(cursor: sqlite3.Cursor) -> Iterator[Row]:
    while True:
        try:
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise EngineError(f"Failed to fetch row: {e}") from e
        if row is None:
            return
        yield row


@contextmanager
def _open_cursor(connection: sqlite3.Connection, sql: str, params: Params) -> Iterator[Iterator[Row]]:
    try:
        cursor = connection.execute(sql, params)
    except sqlite3.Error as e:
        raise EngineError(f"Query failed: {e}") from e

    try:
        yield _fetch_rows(cursor)
    finally:
        try:
            cursor.close()
        except sqlite3.Error as e:
            logger.warning("Failed to close cursor: %s", e)


class SQLiteTransaction(EngineTransaction):
    """A transaction running on its own SQLite connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection: Optional[sqlite3.Connection] = connection

    def _require_connection(self) -> sqlite3.Connection:
        if self.connection is None:
            raise EngineError("Transaction has already been committed or rolled back")
        return self.connection

    def execute(self, sql: str, params: Params = ()) -> int:
        connection = self._require_connection()
        try:
            cursor = connection.execute(sql, params)
        except sqlite3.Error as e:
            raise EngineError(f"Statement failed: {e}") from e
        rowcount = cursor.rowcount
        cursor.close()
        return rowcount

    def query(self, sql: str, params: Params = ()) -> ContextManager[Iterator[Row]]:
        return _open_cursor(self._require_connection(), sql, params)

    def commit(self) -> None:
        connection = self._require_connection()
        try:
            connection.execute("COMMIT")
        except sqlite3.Error as e:
            raise EngineError(f"Failed to commit transaction: {e}") from e
        self._release()

    def rollback(self) -> None:
        connection = self._require_connection()
        try:
            connection.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise EngineError(f"Failed to roll back transaction: {e}") from e
        self._release()

    def _release(self) -> None:
        connection, self.connection = self.connection, None
        try:
            connection.close()
        except sqlite3.Error as e:
            logger.warning("Failed to release transaction connection: %s", e)


class SQLiteStorage(StorageEngine):
    """SQLite-based storage engine."""

    def __init__(self, location: str, timeout: float = 5.0) -> None:
        self.location = location
        self.timeout = timeout
        self.connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._path: Optional[str] = None

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(
            self._path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )

    def open(self) -> None:
        """Open the anchor connection in WAL mode."""
        if not self.location:
            raise StoreConnectionError("Database location must not be empty")

        with self._lock:
            if self.connection is not None:
                return
            self._path = scratch_path() if self.location == MEMORY_LOCATION else self.location
            connection = None
            try:
                connection = self._connect()
                connection.execute("PRAGMA journal_mode=WAL")
            except sqlite3.Error as e:
                if connection is not None:
                    connection.close()
                self._discard_scratch()
                raise StoreConnectionError(f"Failed to open database {self.location!r}: {e}") from e
            self.connection = connection

    def close(self) -> None:
        with self._lock:
            if self.connection is None:
                return
            connection, self.connection = self.connection, None
            try:
                connection.close()
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

    def begin(self) -> SQLiteTransaction:
        if self.connection is None:
            raise EngineError("Database is closed")

        try:
            connection = self._connect()
        except sqlite3.Error as e:
            raise EngineError(f"Failed to begin transaction: {e}") from e

        try:
            connection.execute("BEGIN")
        except sqlite3.Error as e:
            connection.close()
            raise EngineError(f"Failed to begin transaction: {e}") from e

        return SQLiteTransaction(connection)

    @contextmanager
    def query(self, sql: str, params: Params = ()) -> Iterator[Iterator[Row]]:
        with self._lock:
            if self.connection is None:
                raise EngineError("Database is closed")
            with _open_cursor(self.connection, sql, params) as rows:
                yield rows

    def __enter__(self):
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
