# File: fluentorm/errors.py
"""
FluentORM - Runtime Errors
==========================
Error taxonomy of the query runtime.

Driver failures are wrapped in ``QueryError`` which keeps the driver message
verbatim together with the attempted SQL and the number of bound
parameters.  The original driver exception is always chained.  Nothing here
retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import psycopg

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.errors")


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------


class ErrorCode(str, Enum):
    """Classification of runtime query failures."""

    UNIQUE_VIOLATION = "unique_violation"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    NOT_NULL_VIOLATION = "not_null_violation"
    CHECK_VIOLATION = "check_violation"
    NO_ROWS_RETURNED = "no_rows_returned"
    TOO_MANY_ROWS = "too_many_rows"
    SYNTAX_ERROR = "syntax_error"
    UNDEFINED_TABLE = "undefined_table"
    UNDEFINED_COLUMN = "undefined_column"
    CONNECTION_ERROR = "connection_error"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @classmethod
    def from_sqlstate(cls, sqlstate: Optional[str]) -> Optional["ErrorCode"]:
        if sqlstate is None:
            return None
        return _SQLSTATE_CODES.get(sqlstate)


_DESCRIPTIONS: Dict[ErrorCode, str] = {
    ErrorCode.UNIQUE_VIOLATION: "A record with this value already exists",
    ErrorCode.FOREIGN_KEY_VIOLATION: "Referenced record does not exist",
    ErrorCode.NOT_NULL_VIOLATION: "A required field was not provided",
    ErrorCode.CHECK_VIOLATION: "Value failed validation constraint",
    ErrorCode.NO_ROWS_RETURNED: "Operation did not affect any records",
    ErrorCode.TOO_MANY_ROWS: "Operation returned more records than expected",
    ErrorCode.SYNTAX_ERROR: "Invalid SQL syntax",
    ErrorCode.UNDEFINED_TABLE: "Table does not exist",
    ErrorCode.UNDEFINED_COLUMN: "Column does not exist",
    ErrorCode.CONNECTION_ERROR: "Database connection error",
    ErrorCode.DATABASE_ERROR: "Database error occurred",
    ErrorCode.UNKNOWN: "An unexpected error occurred",
}

_SQLSTATE_CODES: Dict[str, ErrorCode] = {
    "23505": ErrorCode.UNIQUE_VIOLATION,
    "23503": ErrorCode.FOREIGN_KEY_VIOLATION,
    "23502": ErrorCode.NOT_NULL_VIOLATION,
    "23514": ErrorCode.CHECK_VIOLATION,
    "42601": ErrorCode.SYNTAX_ERROR,
    "42P01": ErrorCode.UNDEFINED_TABLE,
    "42703": ErrorCode.UNDEFINED_COLUMN,
}


@dataclass(frozen=True, slots=True)
class PgErrorInfo:
    """Server-side diagnostic fields of a PostgreSQL error."""

    sqlstate: Optional[str] = None
    severity: Optional[str] = None
    message: Optional[str] = None
    detail: Optional[str] = None
    hint: Optional[str] = None
    constraint: Optional[str] = None
    table: Optional[str] = None
    schema: Optional[str] = None
    column: Optional[str] = None

    @classmethod
    def from_driver_error(cls, exc: psycopg.Error) -> "PgErrorInfo":
        diag = exc.diag
        return cls(
            sqlstate=exc.sqlstate,
            severity=diag.severity,
            message=diag.message_primary,
            detail=diag.message_detail,
            hint=diag.message_hint,
            constraint=diag.constraint_name,
            table=diag.table_name,
            schema=diag.schema_name,
            column=diag.column_name,
        )


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class OrmError(Exception):
    """Base class of every runtime error raised by fluentorm."""


class QueryError(OrmError):
    """A statement failed inside the executor."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        sql: str,
        param_count: int,
        pg_error: Optional[PgErrorInfo] = None,
    ) -> None:
        self.code: ErrorCode = code
        self.message: str = message
        self.sql: str = sql
        self.param_count: int = param_count
        self.pg_error: Optional[PgErrorInfo] = pg_error
        super().__init__(f"{message} [sql: {sql}] [params: {param_count}]")

    @classmethod
    def from_driver_error(
        cls, exc: BaseException, sql: str, param_count: int
    ) -> "QueryError":
        """Classify a driver exception; the caller chains it with ``from``."""
        if not isinstance(exc, psycopg.Error):
            return cls(ErrorCode.UNKNOWN, str(exc), sql, param_count)
        pg_error: PgErrorInfo = PgErrorInfo.from_driver_error(exc)
        code: Optional[ErrorCode] = ErrorCode.from_sqlstate(exc.sqlstate)
        if code is None:
            if isinstance(exc, psycopg.OperationalError):
                code = ErrorCode.CONNECTION_ERROR
            else:
                code = ErrorCode.DATABASE_ERROR
        return cls(code, str(exc), sql, param_count, pg_error)

    @property
    def description(self) -> str:
        return self.code.description

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "sql": self.sql,
            "param_count": self.param_count,
            "sqlstate": self.pg_error.sqlstate if self.pg_error else None,
        }


class BuilderStateError(OrmError):
    """A query builder was used in a state that does not allow the call."""


class TransactionError(OrmError):
    """Illegal transaction state transition."""


class AlreadyCommittedError(TransactionError):
    """The transaction was already committed."""


class AlreadyRolledBackError(TransactionError):
    """The transaction was already rolled back."""


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "ErrorCode",
    "PgErrorInfo",
    "OrmError",
    "QueryError",
    "BuilderStateError",
    "TransactionError",
    "AlreadyCommittedError",
    "AlreadyRolledBackError",
]

logger.debug("fluentorm.errors loaded — %d public symbols.", len(__all__))
