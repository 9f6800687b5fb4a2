"""
Transaction management for the key-value store.
"""

import logging
from enum import Enum
from typing import Optional, TYPE_CHECKING

from .bucket import Bucket
from .exceptions import EngineError, IllegalStateError

if TYPE_CHECKING:
    from .database import Database
    from .schema import Schema
    from .storage import EngineTransaction

logger = logging.getLogger(__name__)


class TransactionState(Enum):
    """Transaction state enumeration."""
    OPEN = "open"
    COMMITTED = "committed"
    ABORTED = "aborted"


class Transaction:
    """
    Wraps one engine-level transaction and hands out buckets bound to it.

    A transaction started with ``Database.begin()`` is finished by the caller
    with ``commit()`` or ``rollback()``. A transaction running inside
    ``Database.transaction()`` is *managed*: its boundary belongs to the
    runner, and calling ``commit()`` or ``rollback()`` raises
    ``IllegalStateError``.

    ``commit()`` on a finished transaction does nothing, while ``rollback()``
    on a finished transaction raises ``EngineError``.
    """

    def __init__(self, database: 'Database', handle: 'EngineTransaction', managed: bool = False) -> None:
        self.database = database
        self.handle: Optional['EngineTransaction'] = handle
        self.managed = managed
        self.state = TransactionState.OPEN

    @property
    def schema(self) -> 'Schema':
        return self.database.schema

    @property
    def is_open(self) -> bool:
        return self.handle is not None

    def require_handle(self) -> 'EngineTransaction':
        """
        Return the engine handle.

        Raises:
            EngineError: If the transaction has been committed or rolled back
        """
        if self.handle is None:
            raise EngineError(f"Transaction is already {self.state.value}")
        return self.handle

    def _check_unmanaged(self, operation: str) -> None:
        if self.managed:
            raise IllegalStateError(
                f"Cannot {operation} a managed transaction; its boundary is owned by the runner"
            )

    def commit(self) -> None:
        """
        Commit the transaction.

        Raises:
            IllegalStateError: If the transaction is managed
            EngineError: If the engine fails to commit; the transaction stays open
        """
        self._check_unmanaged("commit")
        if self.handle is None:
            return

        self.handle.commit()
        self.handle = None
        self.state = TransactionState.COMMITTED
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        """
        Roll the transaction back, discarding its writes.

        Raises:
            IllegalStateError: If the transaction is managed
            EngineError: If the transaction is already finished or the engine fails
        """
        self._check_unmanaged("roll back")
        self.require_handle().rollback()
        self.handle = None
        self.state = TransactionState.ABORTED
        logger.debug("Transaction rolled back")

    def bucket(self, name: str) -> Bucket:
        """
        Get a bucket by name. Whether it exists is only checked when it is used.

        Under the table-per-bucket schema the name is validated here and an
        invalid one raises InvalidIdentifierError.
        """
        return Bucket(self, name)

    def has_bucket(self, name: str) -> bool:
        """Whether the bucket's table exists. Always true in the shared-table schema."""
        query = self.schema.bucket_exists_query(name)
        if query is None:
            return True
        sql, params = query
        return self.require_handle().query_row(sql, params) is not None

    def create_bucket(self, name: str) -> Bucket:
        """
        Create a bucket and return it.

        Buckets are implicit in the shared-table schema, so this only returns
        the handle there.

        Raises:
            IllegalStateError: If the bucket's table already exists
        """
        statement = self.schema.create_bucket_statement(name)
        if statement is None:
            return self.bucket(name)

        handle = self.require_handle()
        if self.has_bucket(name):
            raise IllegalStateError(f"Bucket '{name}' already exists")
        handle.execute(statement)
        return self.bucket(name)

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        """Create a bucket unless it already exists, and return it."""
        statement = self.schema.create_bucket_statement(name, if_not_exists=True)
        if statement is not None:
            self.require_handle().execute(statement)
        return self.bucket(name)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Commit on a clean exit, roll back when an exception escapes."""
        if self.managed or self.handle is None:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
