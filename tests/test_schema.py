"""
Tests for statement templates and identifier validation.
"""

import pytest
import os
import sys

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from kvite.exceptions import InvalidIdentifierError
from kvite.schema import (
    SHARED,
    TABLE_PER_BUCKET,
    SharedTableSchema,
    TablePerBucketSchema,
    make_schema,
    quote_identifier,
    validate_identifier,
)


class TestIdentifierValidation:
    """Test the identifier allow-list."""

    @pytest.mark.parametrize("name", ["kvite", "_private", "Bucket_2", "a"])
    def test_valid_identifiers(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "1abc", "with space", "quote'd", 'dq"', "semi;colon", "dash-ed", None, 7])
    def test_invalid_identifiers(self, name):
        with pytest.raises(InvalidIdentifierError):
            validate_identifier(name)

    def test_quote_identifier(self):
        assert quote_identifier("kvite") == '"kvite"'


class TestSharedTableSchema:
    """Test statements for the shared-table layout."""

    def setup_method(self):
        self.schema = SharedTableSchema("testing")

    def test_default_namespace(self):
        assert SharedTableSchema().namespace == "kvite"
        assert SharedTableSchema("").namespace == "kvite"

    def test_bootstrap_statements(self):
        create_table, create_index = self.schema.bootstrap_statements()

        assert create_table.startswith('CREATE TABLE IF NOT EXISTS "testing"')
        assert "key TEXT NOT NULL" in create_table
        assert "bucket TEXT NOT NULL" in create_table
        assert "value BLOB NOT NULL" in create_table
        assert create_index == 'CREATE UNIQUE INDEX IF NOT EXISTS "testing_key_bucket" ON "testing" (key, bucket)'

    def test_bucket_statements_bind_bucket_name(self):
        statements = self.schema.bucket_statements("users")

        assert statements.get == 'SELECT value FROM "testing" WHERE key = ? AND bucket = ?'
        assert statements.get_params("alice") == ("alice", "users")
        assert statements.put == 'INSERT OR REPLACE INTO "testing" (key, value, bucket) VALUES (?, ?, ?)'
        assert statements.put_params("alice", b"x") == ("alice", b"x", "users")
        assert statements.delete == 'DELETE FROM "testing" WHERE key = ? AND bucket = ?'
        assert statements.delete_params("alice") == ("alice", "users")
        assert statements.iterate == 'SELECT key, value FROM "testing" WHERE bucket = ?'
        assert statements.iterate_params() == ("users",)

    def test_any_bucket_name_is_accepted(self):
        statements = self.schema.bucket_statements("not an identifier!")
        assert statements.scope == ("not an identifier!",)

    def test_buckets_are_implicit(self):
        assert self.schema.create_bucket_statement("users") is None
        assert self.schema.bucket_exists_query("users") is None
        assert self.schema.probe_statement("users") is None

    def test_list_buckets(self):
        assert self.schema.list_buckets_statement() == 'SELECT DISTINCT bucket FROM "testing" ORDER BY bucket'
        assert self.schema.bucket_names([("a",), ("b",)]) == ["a", "b"]


class TestTablePerBucketSchema:
    """Test statements for the table-per-bucket layout."""

    def setup_method(self):
        self.schema = TablePerBucketSchema("testing")

    def test_no_bootstrap(self):
        assert self.schema.bootstrap_statements() == []

    def test_bucket_statements_use_table(self):
        statements = self.schema.bucket_statements("users")

        assert statements.get == 'SELECT value FROM "testing_users" WHERE key = ?'
        assert statements.get_params("alice") == ("alice",)
        assert statements.put == 'INSERT OR REPLACE INTO "testing_users" (key, value) VALUES (?, ?)'
        assert statements.put_params("alice", b"x") == ("alice", b"x")
        assert statements.iterate_params() == ()

    def test_bucket_statements_are_cached(self):
        assert self.schema.bucket_statements("users") is self.schema.bucket_statements("users")

    @pytest.mark.parametrize("name", ["", "users; DROP TABLE x", "a'b", "1st"])
    def test_invalid_bucket_names(self, name):
        with pytest.raises(InvalidIdentifierError):
            self.schema.bucket_statements(name)
        with pytest.raises(InvalidIdentifierError):
            self.schema.create_bucket_statement(name)

    def test_create_bucket_statement(self):
        assert self.schema.create_bucket_statement("users") == (
            'CREATE TABLE "testing_users" (key TEXT NOT NULL PRIMARY KEY, value BLOB NOT NULL)'
        )
        assert self.schema.create_bucket_statement("users", if_not_exists=True).startswith(
            'CREATE TABLE IF NOT EXISTS "testing_users"'
        )

    def test_bucket_names_filter_other_tables(self):
        rows = [("other_users",), ("testing_users",), ("testing_logs",), ("sqlite_sequence",), ("testing_",)]
        assert self.schema.bucket_names(rows) == ["users", "logs"]


class TestMakeSchema:
    """Test the schema factory."""

    def test_by_name(self):
        assert isinstance(make_schema(SHARED, "ns"), SharedTableSchema)
        assert isinstance(make_schema(TABLE_PER_BUCKET, "ns"), TablePerBucketSchema)

    def test_instance_passes_through(self):
        schema = SharedTableSchema("ns")
        assert make_schema(schema) is schema

    def test_unknown_schema(self):
        with pytest.raises(ValueError):
            make_schema("sharded")
