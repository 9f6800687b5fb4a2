"""
Tests for the transaction lifecycle and managed transactions.
"""

import pytest
import logging
import os
import shutil
import sys
import tempfile

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import kvite
from kvite import TransactionState
from kvite.exceptions import EngineError, IllegalStateError, TransactionError
from kvite.storage import EngineTransaction


class TransactionTestCase:
    """Base class opening a database in a temporary directory."""

    def setup_method(self):
        """Set up test with temporary database."""
        self.temp_dir = tempfile.mkdtemp(prefix="kvite-")
        self.db = kvite.open(os.path.join(self.temp_dir, "kvite.db"), "testing")

    def teardown_method(self):
        """Clean up temporary database."""
        self.db.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def stored_value(self, bucket_name, key):
        tx = self.db.begin()
        try:
            return tx.bucket(bucket_name).get(key)
        finally:
            tx.rollback()


class AppError(Exception):
    """Application error raised from inside managed callbacks."""
    pass


class TestTransactionLifecycle(TransactionTestCase):
    """Test commit and rollback of caller-managed transactions."""

    def test_commit(self):
        """Test that commit finishes the transaction and clears its handle."""
        tx = self.db.begin()
        tx.commit()

        assert tx.state == TransactionState.COMMITTED
        assert tx.handle is None
        assert not tx.is_open

    def test_commit_twice_is_noop(self):
        """Test that committing a finished transaction does nothing."""
        tx = self.db.begin()
        tx.commit()
        tx.commit()

        assert tx.state == TransactionState.COMMITTED

    def test_rollback(self):
        """Test that rollback finishes the transaction and clears its handle."""
        tx = self.db.begin()
        tx.rollback()

        assert tx.state == TransactionState.ABORTED
        assert tx.handle is None

    def test_rollback_twice_fails(self):
        """Test that a finished transaction cannot be rolled back."""
        tx = self.db.begin()
        tx.rollback()

        with pytest.raises(EngineError):
            tx.rollback()

    def test_rollback_after_commit_fails(self):
        """Test that a committed transaction cannot be rolled back."""
        tx = self.db.begin()
        tx.commit()

        with pytest.raises(EngineError):
            tx.rollback()
        assert tx.state == TransactionState.COMMITTED

    def test_commit_after_rollback_is_noop(self):
        """Test that committing a rolled back transaction keeps it aborted."""
        tx = self.db.begin()
        tx.bucket("test").put("foo", b"bar")
        tx.rollback()
        tx.commit()

        assert tx.state == TransactionState.ABORTED
        assert self.stored_value("test", "foo") is None

    def test_commit_makes_writes_durable(self):
        """Test that committed writes are visible to a new transaction."""
        tx = self.db.begin()
        tx.bucket("test").put("foo", b"bar")
        tx.commit()

        assert self.stored_value("test", "foo") == b"bar"

    def test_rollback_discards_writes(self):
        """Test that rolled back writes are not visible to a new transaction."""
        tx = self.db.begin()
        tx.bucket("test").put("foo", b"bar")
        tx.rollback()

        assert self.stored_value("test", "foo") is None

    def test_bucket_of_finished_transaction_fails(self):
        """Test that buckets stop working once their transaction ends."""
        tx = self.db.begin()
        b = tx.bucket("test")
        tx.commit()

        with pytest.raises(EngineError):
            b.put("foo", b"bar")
        with pytest.raises(EngineError):
            b.get("foo")
        with pytest.raises(EngineError):
            b.delete("foo")
        with pytest.raises(EngineError):
            b.get_all()

    def test_bucket_reacquired_by_name(self):
        """Test that the same bucket can be fetched twice in one transaction."""
        tx = self.db.begin()
        tx.bucket("test").put("foo", b"bar")

        assert tx.bucket("test").get("foo") == b"bar"
        assert tx.create_bucket_if_not_exists("test").get("foo") == b"bar"
        tx.rollback()

    def test_shared_buckets_always_exist(self):
        """Test that buckets of the shared table need no creation."""
        tx = self.db.begin()
        assert tx.has_bucket("never-written")
        tx.rollback()

    def test_context_manager_commits(self):
        """Test that a clean with block commits."""
        with self.db.begin() as tx:
            tx.bucket("test").put("foo", b"bar")

        assert tx.state == TransactionState.COMMITTED
        assert self.stored_value("test", "foo") == b"bar"

    def test_context_manager_rolls_back_on_error(self):
        """Test that an exception in the with block rolls back."""
        with pytest.raises(AppError):
            with self.db.begin() as tx:
                tx.bucket("test").put("foo", b"bar")
                raise AppError("boom")

        assert tx.state == TransactionState.ABORTED
        assert self.stored_value("test", "foo") is None

    def test_context_manager_after_explicit_commit(self):
        """Test that leaving the with block after commit does nothing more."""
        with self.db.begin() as tx:
            tx.bucket("test").put("foo", b"bar")
            tx.commit()

        assert tx.state == TransactionState.COMMITTED


class TestManagedTransaction(TransactionTestCase):
    """Test transactions run through Database.transaction()."""

    def test_commit_on_success(self):
        """Test that writes are committed when the callback returns."""
        self.db.transaction(lambda tx: tx.bucket("test").put("foo", b"bar"))

        assert self.stored_value("test", "foo") == b"bar"

    def test_returns_callback_result(self):
        """Test that the callback's return value is passed through."""
        self.db.transaction(lambda tx: tx.bucket("test").put("foo", b"bar"))

        assert self.db.transaction(lambda tx: tx.bucket("test").get("foo")) == b"bar"

    def test_rollback_on_error(self):
        """Test that writes are discarded and the callback's error propagates."""
        self.db.transaction(lambda tx: tx.bucket("test").put("foo", b"bar"))
        error = AppError("an error")

        def fail(tx):
            tx.bucket("test").put("foo", b"asdf")
            raise error

        with pytest.raises(AppError) as excinfo:
            self.db.transaction(fail)

        assert excinfo.value is error
        assert self.stored_value("test", "foo") == b"bar"

    def test_commit_and_rollback_forbidden_inside_callback(self):
        """Test that the callback cannot end its own transaction."""
        seen = []

        def fn(tx):
            assert tx.managed
            with pytest.raises(IllegalStateError):
                tx.commit()
            with pytest.raises(IllegalStateError):
                tx.rollback()
            seen.append(tx)
            tx.bucket("test").put("foo", b"bar")

        self.db.transaction(fn)

        tx = seen[0]
        assert not tx.managed
        assert tx.state == TransactionState.COMMITTED
        assert self.stored_value("test", "foo") == b"bar"

    def test_illegal_state_is_transaction_error(self):
        """Test the place of IllegalStateError in the hierarchy."""
        assert issubclass(IllegalStateError, TransactionError)

    def test_managed_flag_reset_after_error(self):
        """Test that the managed flag is cleared when the callback raises."""
        seen = []

        def fail(tx):
            seen.append(tx)
            raise AppError("boom")

        with pytest.raises(AppError):
            self.db.transaction(fail)

        tx = seen[0]
        assert not tx.managed
        assert tx.state == TransactionState.ABORTED

    def test_rollback_on_base_exception(self):
        """Test that an abnormal unwind still rolls the transaction back."""
        seen = []

        def interrupt(tx):
            seen.append(tx)
            tx.bucket("test").put("foo", b"bar")
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            self.db.transaction(interrupt)

        assert seen[0].state == TransactionState.ABORTED
        assert self.stored_value("test", "foo") is None

    def test_begin_failure_skips_callback(self):
        """Test that the callback never runs when no transaction can start."""
        calls = []
        self.db.close()

        with pytest.raises(EngineError):
            self.db.transaction(calls.append)

        assert calls == []

    def test_managed_context_manager(self):
        """Test the context manager form of the runner."""
        with self.db.managed() as tx:
            assert tx.managed
            tx.bucket("test").put("foo", b"bar")

        assert not tx.managed
        assert tx.state == TransactionState.COMMITTED
        assert self.stored_value("test", "foo") == b"bar"

    def test_managed_context_manager_rolls_back(self):
        """Test that the context manager form rolls back on error."""
        with pytest.raises(AppError):
            with self.db.managed() as tx:
                tx.bucket("test").put("foo", b"bar")
                raise AppError("boom")

        assert tx.state == TransactionState.ABORTED
        assert self.stored_value("test", "foo") is None

    def test_rollback_failure_is_logged(self, caplog):
        """Test that a failed rollback during unwinding does not hide the callback's error."""
        def fail(tx):
            tx.handle.rollback()
            raise AppError("boom")

        with caplog.at_level(logging.WARNING, logger="kvite.runner"):
            with pytest.raises(AppError):
                self.db.transaction(fail)

        assert "Failed to roll back managed transaction" in caplog.text


class FailingCommitHandle(EngineTransaction):
    """Engine handle whose commit always fails."""

    def __init__(self, handle):
        self.handle = handle
        self.rolled_back = False

    def execute(self, sql, params=()):
        return self.handle.execute(sql, params)

    def query(self, sql, params=()):
        return self.handle.query(sql, params)

    def commit(self):
        raise EngineError("disk I/O error")

    def rollback(self):
        self.rolled_back = True
        self.handle.rollback()


class TestManagedCommitFailure(TransactionTestCase):
    """Test a managed transaction whose commit fails."""

    def test_commit_failure_propagates_and_rolls_back(self, monkeypatch):
        """Test that the commit error is the result and the transaction is rolled back."""
        begin = self.db.engine.begin
        handles = []

        def failing_begin():
            handle = FailingCommitHandle(begin())
            handles.append(handle)
            return handle

        monkeypatch.setattr(self.db.engine, "begin", failing_begin)

        seen = []

        def write(tx):
            seen.append(tx)
            tx.bucket("test").put("foo", b"bar")
            return "done"

        with pytest.raises(EngineError, match="disk I/O error"):
            self.db.transaction(write)

        monkeypatch.undo()

        tx = seen[0]
        assert not tx.is_open
        assert not tx.managed
        assert tx.state == TransactionState.ABORTED
        assert handles[0].rolled_back
        assert self.stored_value("test", "foo") is None
