# File: fluentorm/transaction.py
"""
FluentORM - Transactions
========================
A ``Transaction`` owns one pooled connection from ``begin`` until it is
committed or rolled back.  Statements run through ``executor()`` share that
connection and therefore that transaction.

State transitions::

    ACTIVE ── commit() ──▶ COMMITTED      commit again      → AlreadyCommittedError
       │                                  rollback          → AlreadyCommittedError
       └──── rollback() ─▶ ROLLED_BACK    commit            → AlreadyRolledBackError
                                          rollback again    → no-op

Used as a context manager the transaction rolls back on exit unless it was
committed inside the block.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

import psycopg

from fluentorm.errors import (
    AlreadyCommittedError,
    AlreadyRolledBackError,
    QueryError,
    TransactionError,
)
from fluentorm.executor import ConnectionExecutor, Executor

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.transaction")


class TransactionState(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    """One database transaction on a connection taken from a pool executor."""

    __slots__ = ("_source", "_conn", "_executor", "state")

    def __init__(self, source: Executor) -> None:
        self._source: Executor = source
        self._conn: psycopg.Connection = source.acquire()
        self._executor: ConnectionExecutor = ConnectionExecutor(self._conn, is_transaction=True)
        self.state: TransactionState = TransactionState.ACTIVE
        logger.debug("Transaction started on %r", source)

    @classmethod
    def begin(cls, source: Executor) -> "Transaction":
        return cls(source)

    @property
    def is_active(self) -> bool:
        return self.state == TransactionState.ACTIVE

    def executor(self) -> ConnectionExecutor:
        """Executor whose statements run inside this transaction."""
        if not self.is_active:
            raise TransactionError(f"Transaction is {self.state.value}; no executor available.")
        return self._executor

    def _finish(self, commit: bool) -> None:
        action: str = "COMMIT" if commit else "ROLLBACK"
        try:
            if commit:
                self._conn.commit()
            else:
                self._conn.rollback()
        except psycopg.Error as exc:
            raise QueryError.from_driver_error(exc, action, 0) from exc
        finally:
            self.state = TransactionState.COMMITTED if commit else TransactionState.ROLLED_BACK
            self._source.release(self._conn)
        logger.debug("Transaction %s", action.lower())

    def commit(self) -> None:
        if self.state == TransactionState.COMMITTED:
            raise AlreadyCommittedError("Transaction was already committed.")
        if self.state == TransactionState.ROLLED_BACK:
            raise AlreadyRolledBackError("Transaction was already rolled back.")
        self._finish(commit=True)

    def rollback(self) -> None:
        if self.state == TransactionState.ROLLED_BACK:
            return
        if self.state == TransactionState.COMMITTED:
            raise AlreadyCommittedError("Cannot roll back a committed transaction.")
        self._finish(commit=False)

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        if self.is_active:
            if exc_type is not None:
                logger.warning("Rolling back transaction after %s", exc_type.__name__)
            self.rollback()

    def __repr__(self) -> str:
        return f"<Transaction {self.state.value}>"


__all__: List[str] = [
    "TransactionState",
    "Transaction",
]

logger.debug("fluentorm.transaction loaded — %d public symbols.", len(__all__))
