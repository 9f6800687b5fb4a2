"""
Custom exceptions for the kvite key-value store.
"""


class StoreError(Exception):
    """Base exception for all store-related errors."""
    pass


class StoreConnectionError(StoreError):
    """Exception raised when the database cannot be opened or bootstrapped."""
    pass


class EngineError(StoreError):
    """Exception raised when the storage engine rejects a statement or transaction primitive."""
    pass


class TransactionError(StoreError):
    """Exception raised for transaction-related errors."""
    pass


class IllegalStateError(TransactionError):
    """Exception raised when an operation is not allowed in the transaction's current mode."""
    pass


class InvalidIdentifierError(StoreError, ValueError):
    """Exception raised for a namespace or bucket name that cannot be used."""
    pass


class InvalidKeyError(StoreError, ValueError):
    """Exception raised for a key that is empty or not a string."""
    pass
