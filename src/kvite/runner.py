"""
Managed transactions: a callback runs inside a transaction whose boundary
belongs to the runner.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TYPE_CHECKING

from .exceptions import StoreError

if TYPE_CHECKING:
    from .database import Database
    from .transaction import Transaction

logger = logging.getLogger(__name__)


class ManagedTransactionRunner:
    """
    Runs units of work as begin + work + commit/rollback.

    The transaction is marked managed while the work runs, so the work cannot
    commit or roll back on its own. When the work raises, the transaction is
    rolled back and the same exception propagates; otherwise it is committed.
    A transaction still open when the unit exits abnormally is always rolled
    back.
    """

    def __init__(self, database: 'Database') -> None:
        self.database = database

    def run(self, fn: Callable[['Transaction'], Any]) -> Any:
        """Run ``fn(tx)`` in a managed transaction and return its result."""
        with self.managed() as tx:
            return fn(tx)

    @contextmanager
    def managed(self) -> Iterator['Transaction']:
        tx = self.database.begin()
        try:
            tx.managed = True
            try:
                yield tx
            finally:
                tx.managed = False
        except BaseException:
            if tx.is_open:
                self._rollback_quietly(tx)
            raise

        try:
            tx.commit()
        finally:
            if tx.is_open:
                self._rollback_quietly(tx)

    @staticmethod
    def _rollback_quietly(tx: 'Transaction') -> None:
        try:
            tx.rollback()
        except StoreError as e:
            logger.warning("Failed to roll back managed transaction: %s", e)
