"""
Async transaction and bucket handles for the key-value store.
"""

import inspect
import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple, TYPE_CHECKING

from .bucket import from_column, to_bytes, validate_key
from .exceptions import EngineError, IllegalStateError
from .transaction import TransactionState

if TYPE_CHECKING:
    from .async_database import AsyncDatabase
    from .async_storage import AsyncEngineTransaction
    from .schema import Schema

logger = logging.getLogger(__name__)


class AsyncTransaction:
    """Async counterpart of ``Transaction``, with the same state rules."""

    def __init__(self, database: 'AsyncDatabase', handle: 'AsyncEngineTransaction', managed: bool = False) -> None:
        self.database = database
        self.handle: Optional['AsyncEngineTransaction'] = handle
        self.managed = managed
        self.state = TransactionState.OPEN

    @property
    def schema(self) -> 'Schema':
        return self.database.schema

    @property
    def is_open(self) -> bool:
        return self.handle is not None

    def require_handle(self) -> 'AsyncEngineTransaction':
        if self.handle is None:
            raise EngineError(f"Transaction is already {self.state.value}")
        return self.handle

    def _check_unmanaged(self, operation: str) -> None:
        if self.managed:
            raise IllegalStateError(
                f"Cannot {operation} a managed transaction; its boundary is owned by the runner"
            )

    async def commit(self) -> None:
        """Commit the transaction. Does nothing if it is already finished."""
        self._check_unmanaged("commit")
        if self.handle is None:
            return

        await self.handle.commit()
        self.handle = None
        self.state = TransactionState.COMMITTED
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        """Roll the transaction back. Raises EngineError if it is already finished."""
        self._check_unmanaged("roll back")
        await self.require_handle().rollback()
        self.handle = None
        self.state = TransactionState.ABORTED
        logger.debug("Transaction rolled back")

    def bucket(self, name: str) -> 'AsyncBucket':
        return AsyncBucket(self, name)

    async def has_bucket(self, name: str) -> bool:
        query = self.schema.bucket_exists_query(name)
        if query is None:
            return True
        sql, params = query
        return await self.require_handle().query_row(sql, params) is not None

    async def create_bucket(self, name: str) -> 'AsyncBucket':
        statement = self.schema.create_bucket_statement(name)
        if statement is None:
            return self.bucket(name)

        handle = self.require_handle()
        if await self.has_bucket(name):
            raise IllegalStateError(f"Bucket '{name}' already exists")
        await handle.execute(statement)
        return self.bucket(name)

    async def create_bucket_if_not_exists(self, name: str) -> 'AsyncBucket':
        statement = self.schema.create_bucket_statement(name, if_not_exists=True)
        if statement is not None:
            await self.require_handle().execute(statement)
        return self.bucket(name)

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on a clean exit, roll back when an exception escapes."""
        if self.managed or self.handle is None:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class AsyncBucket:
    """Async counterpart of ``Bucket``."""

    def __init__(self, transaction: AsyncTransaction, name: str) -> None:
        self.name = name
        self.transaction = transaction
        self._statements = transaction.schema.bucket_statements(name)

    async def put(self, key: str, value: bytes) -> None:
        validate_key(key)
        value = to_bytes(value)
        handle = self.transaction.require_handle()
        await handle.execute(self._statements.put, self._statements.put_params(key, value))

    async def delete(self, key: str) -> None:
        validate_key(key)
        handle = self.transaction.require_handle()
        await handle.execute(self._statements.delete, self._statements.delete_params(key))

    async def get(self, key: str) -> Optional[bytes]:
        validate_key(key)
        handle = self.transaction.require_handle()
        row = await handle.query_row(self._statements.get, self._statements.get_params(key))
        if row is None:
            return None
        return from_column(row[0])

    async def items(self) -> AsyncIterator[Tuple[str, bytes]]:
        handle = self.transaction.require_handle()
        async with handle.query(self._statements.iterate, self._statements.iterate_params()) as rows:
            async for key, value in rows:
                yield key, from_column(value)

    async def get_all(self) -> Dict[str, bytes]:
        return {key: value async for key, value in self.items()}

    async def for_each(self, visitor: Callable[[str, bytes], Any]) -> None:
        """
        Call ``visitor(key, value)`` for every pair; coroutine visitors are awaited.

        An exception raised by the visitor stops the iteration and is
        re-raised as is.
        """
        pairs = self.items()
        try:
            async for key, value in pairs:
                result = visitor(key, value)
                if inspect.isawaitable(result):
                    await result
        finally:
            await pairs.aclose()

    def __repr__(self) -> str:
        return f"AsyncBucket({self.name!r})"
