"""
Buckets: named key/value namespaces bound to an open transaction.
"""

from contextlib import closing
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, TYPE_CHECKING

from .exceptions import InvalidKeyError

if TYPE_CHECKING:
    from .transaction import Transaction


def validate_key(key: Any) -> str:
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(f"Key must be a non-empty string, got {key!r}")
    return key


def to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"Value must be bytes-like, got {type(value).__name__}")


def from_column(value: Any) -> bytes:
    # Rows written by other tools may hold TEXT instead of BLOB.
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class Bucket:
    """
    A collection of key/value pairs inside the database.

    A bucket owns no engine resource: every operation runs on its
    transaction's handle, so a bucket of a finished transaction raises
    ``EngineError``.
    """

    def __init__(self, transaction: 'Transaction', name: str) -> None:
        self.name = name
        self.transaction = transaction
        self._statements = transaction.schema.bucket_statements(name)

    def put(self, key: str, value: bytes) -> None:
        """
        Set the value for a key. An existing value is replaced.

        Raises:
            InvalidKeyError: If the key is empty or not a string
            TypeError: If the value is not bytes-like
            EngineError: If the statement fails
        """
        validate_key(key)
        value = to_bytes(value)
        handle = self.transaction.require_handle()
        handle.execute(self._statements.put, self._statements.put_params(key, value))

    def delete(self, key: str) -> None:
        """Remove a key. Removing a missing key does nothing."""
        validate_key(key)
        handle = self.transaction.require_handle()
        handle.execute(self._statements.delete, self._statements.delete_params(key))

    def get(self, key: str) -> Optional[bytes]:
        """
        Get the value for a key.

        Returns:
            The stored bytes, or None if the key does not exist
        """
        validate_key(key)
        handle = self.transaction.require_handle()
        row = handle.query_row(self._statements.get, self._statements.get_params(key))
        if row is None:
            return None
        return from_column(row[0])

    def items(self) -> Iterator[Tuple[str, bytes]]:
        """Lazily yield every (key, value) pair in storage order."""
        handle = self.transaction.require_handle()
        with handle.query(self._statements.iterate, self._statements.iterate_params()) as rows:
            for key, value in rows:
                yield key, from_column(value)

    def get_all(self) -> Dict[str, bytes]:
        return dict(self.items())

    def for_each(self, visitor: Callable[[str, bytes], Any]) -> None:
        """
        Call ``visitor(key, value)`` for every pair in the bucket.

        An exception raised by the visitor stops the iteration and is
        re-raised as is.
        """
        with closing(self.items()) as pairs:
            for key, value in pairs:
                visitor(key, value)

    def __repr__(self) -> str:
        return f"Bucket({self.name!r})"
