"""
Async Database class implementation for the kvite key-value store.
"""

import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional, Union

from .async_storage import AsyncSQLiteStorage, AsyncStorageEngine
from .async_transaction import AsyncTransaction
from .exceptions import EngineError, StoreConnectionError, StoreError
from .schema import SHARED, Schema, make_schema

logger = logging.getLogger(__name__)


class AsyncManagedTransactionRunner:
    """Async counterpart of ``ManagedTransactionRunner``."""

    def __init__(self, database: 'AsyncDatabase') -> None:
        self.database = database

    async def run(self, fn: Callable[[AsyncTransaction], Any]) -> Any:
        """Run ``fn(tx)`` in a managed transaction; coroutine results are awaited."""
        async with self.managed() as tx:
            result = fn(tx)
            if inspect.isawaitable(result):
                result = await result
            return result

    @asynccontextmanager
    async def managed(self) -> AsyncIterator[AsyncTransaction]:
        tx = await self.database.begin()
        try:
            tx.managed = True
            try:
                yield tx
            finally:
                tx.managed = False
        except BaseException:
            if tx.is_open:
                await self._rollback_quietly(tx)
            raise

        try:
            await tx.commit()
        finally:
            if tx.is_open:
                await self._rollback_quietly(tx)

    @staticmethod
    async def _rollback_quietly(tx: AsyncTransaction) -> None:
        try:
            await tx.rollback()
        except StoreError as e:
            logger.warning("Failed to roll back managed transaction: %s", e)


class AsyncDatabase:
    """
    An async transactional key-value store backed by aiosqlite.

    Example usage:
        db = await kvite.async_open("kvite.db")

        async def grant(tx):
            await tx.bucket("users").put("alice", b"admin")

        await db.transaction(grant)

        async with db.managed() as tx:
            role = await tx.bucket("users").get("alice")

        await db.close()
    """

    def __init__(self, location: str, namespace: Optional[str] = None,
                 schema: Union[str, Schema] = SHARED, timeout: float = 5.0,
                 engine: Optional[AsyncStorageEngine] = None) -> None:
        self.location = location
        self.schema = make_schema(schema, namespace)
        self.namespace = self.schema.namespace
        self.engine = engine if engine is not None else AsyncSQLiteStorage(location, timeout)
        self._runner = AsyncManagedTransactionRunner(self)

    async def open(self) -> None:
        """
        Open the engine and bootstrap the schema.

        Raises:
            StoreConnectionError: If the database cannot be opened or bootstrapped
        """
        await self.engine.open()
        try:
            await self._bootstrap()
        except StoreConnectionError:
            try:
                await self.engine.close()
            except EngineError as e:
                logger.warning("Failed to close database after bootstrap failure: %s", e)
            raise
        logger.debug("Opened %s (namespace=%s, schema=%s)", self.location, self.namespace, self.schema.kind)

    async def _bootstrap(self) -> None:
        statements = self.schema.bootstrap_statements()
        if not statements:
            return

        try:
            handle = await self.engine.begin()
        except EngineError as e:
            raise StoreConnectionError(f"Failed to bootstrap schema: {e}") from e

        try:
            for statement in statements:
                await handle.execute(statement)
            await handle.commit()
        except EngineError as e:
            try:
                await handle.rollback()
            except EngineError as rollback_error:
                logger.warning("Failed to roll back schema bootstrap: %s", rollback_error)
            raise StoreConnectionError(f"Failed to bootstrap schema: {e}") from e

    async def close(self) -> None:
        await self.engine.close()
        logger.debug("Closed %s", self.location)

    async def begin(self) -> AsyncTransaction:
        return AsyncTransaction(self, await self.engine.begin())

    async def transaction(self, fn: Callable[[AsyncTransaction], Any]) -> Any:
        """Run ``fn`` within a managed transaction and return its result."""
        return await self._runner.run(fn)

    def managed(self):
        """Async context manager form of ``transaction()``."""
        return self._runner.managed()

    async def buckets(self) -> List[str]:
        """List the buckets holding at least one key, sorted by name."""
        async with self.engine.query(self.schema.list_buckets_statement()) as rows:
            names = self.schema.bucket_names([row async for row in rows])

        result = []
        for name in names:
            probe = self.schema.probe_statement(name)
            if probe is None or await self.engine.query_row(probe) is not None:
                result.append(name)
        return result

    async def __aenter__(self):
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


async def async_open(location: str, namespace: Optional[str] = None, **options: Any) -> AsyncDatabase:
    """Open an async kvite database. See ``AsyncDatabase`` for the options."""
    database = AsyncDatabase(location, namespace, **options)
    await database.open()
    return database
