"""
Main Database class implementation for the kvite key-value store.
"""

import logging
from typing import Any, Callable, ContextManager, List, Optional, Union

from .exceptions import EngineError, StoreConnectionError
from .runner import ManagedTransactionRunner
from .schema import SHARED, Schema, make_schema
from .storage import SQLiteStorage, StorageEngine
from .transaction import Transaction

logger = logging.getLogger(__name__)


class Database:
    """
    A transactional key-value store backed by SQLite.

    The database is safe to share between threads; each transaction it
    hands out must be driven by a single flow of control.

    Example usage:
        db = kvite.open("kvite.db")

        # Caller-managed transaction
        tx = db.begin()
        tx.bucket("users").put("alice", b"admin")
        tx.commit()

        # Managed transaction, committed unless the function raises
        def rename(tx):
            users = tx.bucket("users")
            users.put("bob", users.get("alice"))
            users.delete("alice")

        db.transaction(rename)
        db.close()
    """

    def __init__(self, location: str, namespace: Optional[str] = None,
                 schema: Union[str, Schema] = SHARED, timeout: float = 5.0,
                 engine: Optional[StorageEngine] = None) -> None:
        """
        Open the database.

        Args:
            location: SQLite database path, or ":memory:"
            namespace: Table name (shared schema) or table prefix (table per
                       bucket). Defaults to "kvite".
            schema: "shared" or "table_per_bucket"
            timeout: Seconds SQLite waits on a locked database
            engine: Storage engine to use instead of SQLite at ``location``

        Raises:
            InvalidIdentifierError: If the namespace is not a valid identifier
            StoreConnectionError: If the database cannot be opened or bootstrapped
        """
        self.location = location
        self.schema = make_schema(schema, namespace)
        self.namespace = self.schema.namespace
        self.engine = engine if engine is not None else SQLiteStorage(location, timeout)
        self._runner = ManagedTransactionRunner(self)

        self.engine.open()
        try:
            self._bootstrap()
        except StoreConnectionError:
            self._close_quietly()
            raise
        logger.debug("Opened %s (namespace=%s, schema=%s)", location, self.namespace, self.schema.kind)

    def _bootstrap(self) -> None:
        statements = self.schema.bootstrap_statements()
        if not statements:
            return

        try:
            handle = self.engine.begin()
        except EngineError as e:
            raise StoreConnectionError(f"Failed to bootstrap schema: {e}") from e

        try:
            for statement in statements:
                handle.execute(statement)
            handle.commit()
        except EngineError as e:
            try:
                handle.rollback()
            except EngineError as rollback_error:
                logger.warning("Failed to roll back schema bootstrap: %s", rollback_error)
            raise StoreConnectionError(f"Failed to bootstrap schema: {e}") from e

    def _close_quietly(self) -> None:
        try:
            self.engine.close()
        except EngineError as e:
            logger.warning("Failed to close database after bootstrap failure: %s", e)

    def close(self) -> None:
        """
        Close the database, releasing the engine connection.

        Closing an already closed database does nothing.
        """
        self.engine.close()
        logger.debug("Closed %s", self.location)

    def begin(self) -> Transaction:
        """
        Begin a transaction.

        Raises:
            EngineError: If the engine cannot start a transaction
        """
        return Transaction(self, self.engine.begin())

    def transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        """
        Run ``fn`` within a managed transaction and return its result.

        The transaction is committed if ``fn`` returns and rolled back if it
        raises, in which case the exception propagates unchanged. ``fn`` may
        not call ``commit()`` or ``rollback()`` itself.
        """
        return self._runner.run(fn)

    def managed(self) -> ContextManager[Transaction]:
        """Context manager form of ``transaction()``."""
        return self._runner.managed()

    def buckets(self) -> List[str]:
        """
        List the buckets holding at least one key, sorted by name.

        Runs as a standalone read, outside of any open transaction.
        """
        with self.engine.query(self.schema.list_buckets_statement()) as rows:
            names = self.schema.bucket_names(rows)
        return [name for name in names if self._has_keys(name)]

    def _has_keys(self, name: str) -> bool:
        probe = self.schema.probe_statement(name)
        return probe is None or self.engine.query_row(probe) is not None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def open(location: str, namespace: Optional[str] = None, **options: Any) -> Database:
    """Open a kvite database. See ``Database`` for the options."""
    return Database(location, namespace, **options)
