"""
kvite

A transactional key-value store layered on SQLite, with named buckets and
caller-managed or callback-managed transactions.
"""

from .database import Database, open
from .transaction import Transaction, TransactionState
from .bucket import Bucket
from .runner import ManagedTransactionRunner
from .schema import SHARED, TABLE_PER_BUCKET, SharedTableSchema, TablePerBucketSchema
from .storage import StorageEngine, EngineTransaction, SQLiteStorage
from .async_database import AsyncDatabase, AsyncManagedTransactionRunner, async_open
from .async_transaction import AsyncTransaction, AsyncBucket
from .async_storage import AsyncStorageEngine, AsyncSQLiteStorage
from .exceptions import (
    StoreError,
    StoreConnectionError,
    EngineError,
    TransactionError,
    IllegalStateError,
    InvalidIdentifierError,
    InvalidKeyError,
)

__version__ = "0.1.0"
__all__ = [
    "open",
    "async_open",
    "Database",
    "Transaction",
    "TransactionState",
    "Bucket",
    "ManagedTransactionRunner",
    "SHARED",
    "TABLE_PER_BUCKET",
    "SharedTableSchema",
    "TablePerBucketSchema",
    "StorageEngine",
    "EngineTransaction",
    "SQLiteStorage",
    "AsyncDatabase",
    "AsyncManagedTransactionRunner",
    "AsyncTransaction",
    "AsyncBucket",
    "AsyncStorageEngine",
    "AsyncSQLiteStorage",
    "StoreError",
    "StoreConnectionError",
    "EngineError",
    "TransactionError",
    "IllegalStateError",
    "InvalidIdentifierError",
    "InvalidKeyError",
]
