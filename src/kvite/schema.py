"""
Bucket-to-table mappings and the SQL statement templates they generate.

Two layouts are supported:

* ``SharedTableSchema`` keeps every bucket in one table named after the
  namespace, partitioned by a ``bucket`` column. Buckets are implicit and
  their names are only ever bound as statement parameters.
* ``TablePerBucketSchema`` creates one table per bucket. SQLite cannot bind
  identifiers, so bucket names are validated against a strict allow-list
  before they are interpolated into statements.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .exceptions import InvalidIdentifierError

DEFAULT_NAMESPACE = "kvite"

SHARED = "shared"
TABLE_PER_BUCKET = "table_per_bucket"

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: Any, kind: str = "identifier") -> str:
    """Return ``name`` if it is safe to interpolate as a table identifier."""
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise InvalidIdentifierError(f"Invalid {kind}: {name!r}")
    return name


def quote_identifier(name: str) -> str:
    return f'"{validate_identifier(name)}"'


@dataclass(frozen=True)
class BucketStatements:
    """Precompiled statements for one bucket.

    ``scope`` holds the trailing parameters that bind a statement to its
    bucket; it is empty when the bucket has a table of its own.
    """

    get: str
    put: str
    delete: str
    iterate: str
    scope: Tuple[Any, ...] = ()

    def get_params(self, key: str) -> Tuple[Any, ...]:
        return (key,) + self.scope

    def put_params(self, key: str, value: bytes) -> Tuple[Any, ...]:
        return (key, value) + self.scope

    def delete_params(self, key: str) -> Tuple[Any, ...]:
        return (key,) + self.scope

    def iterate_params(self) -> Tuple[Any, ...]:
        return self.scope


class Schema(ABC):
    """Abstract bucket-to-table mapping."""

    kind: str = ""

    def __init__(self, namespace: Optional[str] = None) -> None:
        self.namespace = validate_identifier(namespace or DEFAULT_NAMESPACE, "namespace")

    @abstractmethod
    def bootstrap_statements(self) -> List[str]:
        """Statements run once, in their own transaction, when the database opens."""
        pass

    @abstractmethod
    def bucket_statements(self, name: str) -> BucketStatements:
        pass

    @abstractmethod
    def create_bucket_statement(self, name: str, if_not_exists: bool = False) -> Optional[str]:
        """DDL that creates a bucket, or None when buckets are implicit."""
        pass

    def bucket_exists_query(self, name: str) -> Optional[Tuple[str, Tuple[Any, ...]]]:
        """Query returning a row when the bucket's table exists, or None when buckets are implicit."""
        return None

    @abstractmethod
    def list_buckets_statement(self) -> str:
        pass

    @abstractmethod
    def bucket_names(self, rows: Iterable[Tuple[Any, ...]]) -> List[str]:
        """Turn the rows of ``list_buckets_statement`` into candidate bucket names."""
        pass

    def probe_statement(self, name: str) -> Optional[str]:
        """Query returning a row when the bucket holds a key, or None if listing already implies it."""
        return None


class SharedTableSchema(Schema):
    """All buckets share one table keyed by (key, bucket)."""

    kind = SHARED

    def __init__(self, namespace: Optional[str] = None) -> None:
        super().__init__(namespace)
        table = quote_identifier(self.namespace)
        self._index = quote_identifier(f"{self.namespace}_key_bucket")
        self._table = table
        self._statements = BucketStatements(
            get=f"SELECT value FROM {table} WHERE key = ? AND bucket = ?",
            put=f"INSERT OR REPLACE INTO {table} (key, value, bucket) VALUES (?, ?, ?)",
            delete=f"DELETE FROM {table} WHERE key = ? AND bucket = ?",
            iterate=f"SELECT key, value FROM {table} WHERE bucket = ?",
        )

    def bootstrap_statements(self) -> List[str]:
        return [
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            "key TEXT NOT NULL, bucket TEXT NOT NULL, value BLOB NOT NULL)",
            f"CREATE UNIQUE INDEX IF NOT EXISTS {self._index} ON {self._table} (key, bucket)",
        ]

    def bucket_statements(self, name: str) -> BucketStatements:
        if not isinstance(name, str) or not name:
            raise InvalidIdentifierError(f"Invalid bucket name: {name!r}")
        return replace(self._statements, scope=(name,))

    def create_bucket_statement(self, name: str, if_not_exists: bool = False) -> Optional[str]:
        return None

    def list_buckets_statement(self) -> str:
        return f"SELECT DISTINCT bucket FROM {self._table} ORDER BY bucket"

    def bucket_names(self, rows: Iterable[Tuple[Any, ...]]) -> List[str]:
        return [row[0] for row in rows]


class TablePerBucketSchema(Schema):
    """Every bucket gets a table named ``<namespace>_<bucket>``."""

    kind = TABLE_PER_BUCKET

    def __init__(self, namespace: Optional[str] = None) -> None:
        super().__init__(namespace)
        self._prefix = f"{self.namespace}_"
        self._cache: Dict[str, BucketStatements] = {}

    def table_name(self, name: str) -> str:
        validate_identifier(name, "bucket name")
        return self._prefix + name

    def bootstrap_statements(self) -> List[str]:
        return []

    def bucket_statements(self, name: str) -> BucketStatements:
        statements = self._cache.get(name)
        if statements is None:
            table = quote_identifier(self.table_name(name))
            statements = BucketStatements(
                get=f"SELECT value FROM {table} WHERE key = ?",
                put=f"INSERT OR REPLACE INTO {table} (key, value) VALUES (?, ?)",
                delete=f"DELETE FROM {table} WHERE key = ?",
                iterate=f"SELECT key, value FROM {table}",
            )
            self._cache[name] = statements
        return statements

    def create_bucket_statement(self, name: str, if_not_exists: bool = False) -> Optional[str]:
        table = quote_identifier(self.table_name(name))
        clause = "IF NOT EXISTS " if if_not_exists else ""
        return f"CREATE TABLE {clause}{table} (key TEXT NOT NULL PRIMARY KEY, value BLOB NOT NULL)"

    def bucket_exists_query(self, name: str) -> Optional[Tuple[str, Tuple[Any, ...]]]:
        return (
            "SELECT name FROM sqlite_master WHERE type = ? AND name = ?",
            ("table", self.table_name(name)),
        )

    def list_buckets_statement(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"

    def bucket_names(self, rows: Iterable[Tuple[Any, ...]]) -> List[str]:
        names = []
        for (table,) in rows:
            if not table.startswith(self._prefix):
                continue
            name = table[len(self._prefix):]
            if IDENTIFIER_PATTERN.match(name):
                names.append(name)
        return names

    def probe_statement(self, name: str) -> Optional[str]:
        return f"SELECT 1 FROM {quote_identifier(self.table_name(name))} LIMIT 1"


SCHEMAS = {
    SHARED: SharedTableSchema,
    TABLE_PER_BUCKET: TablePerBucketSchema,
}


def make_schema(schema: Union[str, Schema] = SHARED, namespace: Optional[str] = None) -> Schema:
    """Build a schema by name, or pass an existing instance through."""
    if isinstance(schema, Schema):
        return schema
    try:
        schema_class = SCHEMAS[schema]
    except KeyError:
        raise ValueError(f"Unknown schema {schema!r}; expected one of {sorted(SCHEMAS)}")
    return schema_class(namespace)
