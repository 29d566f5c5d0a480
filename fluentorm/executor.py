# File: fluentorm/executor.py
"""
FluentORM - Executor
====================
The one capability the query runtime needs from the database driver:
``execute`` (affected-row count) and ``query`` (rows as dictionaries), plus
``acquire``/``release`` for pool-backed variants.

Two backings share one interface:

- ``PoolExecutor`` wraps a ``psycopg_pool.ConnectionPool``.  Every call takes
  a connection for its own duration and commits on success, so it is safe
  to share between threads.
- ``ConnectionExecutor`` wraps one ``psycopg.Connection``, typically the
  connection of an open ``Transaction``.  It never commits and ``release``
  is a no-op; it must not be shared across threads.

Statements are sent through ``psycopg.RawCursor`` so the ``$1, $2, ...``
placeholders emitted by the query builder reach the server unchanged.
"""

from __future__ import annotations

import abc
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from fluentorm.errors import QueryError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.executor")

Row = Dict[str, Any]


class Executor(abc.ABC):
    """Abstract executor; subclasses provide connection scoping."""

    is_transaction: bool = False

    @abc.abstractmethod
    def acquire(self) -> psycopg.Connection:
        """Take a connection for exclusive use until ``release``."""

    @abc.abstractmethod
    def release(self, conn: psycopg.Connection) -> None:
        """Give back a connection obtained from ``acquire``."""

    @abc.abstractmethod
    def connection(self) -> Any:
        """Context manager yielding a connection for a single statement."""

    # -- Statement execution ------------------------------------------------

    def _run(self, sql: str, params: Optional[Sequence[Any]], fetch: bool) -> Tuple[int, List[Row]]:
        values: List[Any] = list(params or [])
        logger.debug("SQL: %s | %d param(s)", sql, len(values))
        try:
            with self.connection() as conn:
                with psycopg.RawCursor(conn, row_factory=dict_row) as cur:
                    cur.execute(sql, values)
                    rows: List[Row] = []
                    if fetch and cur.description is not None:
                        rows = cur.fetchall()
                    return cur.rowcount, rows
        except psycopg.Error as exc:
            error: QueryError = QueryError.from_driver_error(exc, sql, len(values))
            logger.error("Query failed (%s): %s", error.code.value, exc)
            raise error from exc

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run a statement and return the number of affected rows."""
        count, _ = self._run(sql, params, fetch=False)
        return count

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        """Run a statement and return every row."""
        _, rows = self._run(sql, params, fetch=True)
        return rows

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Row]:
        """First row of the result, or ``None``."""
        rows: List[Row] = self.query(sql, params)
        return rows[0] if rows else None


class PoolExecutor(Executor):
    """Executor backed by a shared connection pool."""

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool: ConnectionPool = pool

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection]:
        with self.pool.connection() as conn:
            yield conn

    def acquire(self) -> psycopg.Connection:
        return self.pool.getconn()

    def release(self, conn: psycopg.Connection) -> None:
        self.pool.putconn(conn)

    def __repr__(self) -> str:
        return f"<PoolExecutor {self.pool.name}>"


class ConnectionExecutor(Executor):
    """Executor bound to a single connection (and its open transaction)."""

    def __init__(self, conn: psycopg.Connection, is_transaction: bool = False) -> None:
        self.conn: psycopg.Connection = conn
        self.is_transaction = is_transaction

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection]:
        yield self.conn

    def acquire(self) -> psycopg.Connection:
        return self.conn

    def release(self, conn: psycopg.Connection) -> None:
        pass

    def __repr__(self) -> str:
        return f"<ConnectionExecutor transaction={self.is_transaction}>"


__all__: List[str] = [
    "Row",
    "Executor",
    "PoolExecutor",
    "ConnectionExecutor",
]

logger.debug("fluentorm.executor loaded — %d public symbols.", len(__all__))
