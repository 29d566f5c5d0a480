# File: fluentorm/crud.py
"""
FluentORM - CRUD Statement Helpers
==================================
Builders for the statements whose shape depends on runtime input and
therefore cannot be emitted as literals: partial updates and multi-row
inserts.  Placeholders are ``$n``, numbered in column declaration order.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from fluentorm.errors import ErrorCode, QueryError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.crud")


def build_update(
    table: str,
    key_column: str,
    key_value: Any,
    changes: Mapping[str, Any],
    columns: Sequence[str],
) -> Tuple[str, List[Any]]:
    """
    ``UPDATE t SET c1 = $2, ... WHERE key = $1 RETURNING *`` for the supplied
    changes only, ordered as in *columns*.

    Raises:
        ValueError: On an empty change set or a column outside *columns*.
    """
    unknown: List[str] = [c for c in changes if c not in columns]
    if unknown:
        raise ValueError(f"Unknown column(s) for table '{table}': {unknown}")
    ordered: List[str] = [c for c in columns if c in changes]
    if not ordered:
        raise ValueError(f"No columns to update for table '{table}'.")

    assignments: List[str] = [
        f"{column} = ${n}" for n, column in enumerate(ordered, start=2)
    ]
    sql: str = (
        f"UPDATE {table} SET {', '.join(assignments)} "
        f"WHERE {key_column} = $1 RETURNING *"
    )
    return sql, [key_value] + [changes[c] for c in ordered]


def build_insert_many(
    table: str,
    columns: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
    defaults: Optional[Mapping[str, str]] = None,
) -> Tuple[str, List[Any]]:
    """
    One ``INSERT`` with a ``VALUES`` tuple per row, ``RETURNING *``.

    Columns listed in *defaults* are wrapped in ``COALESCE($n, <default>)`` so
    a missing or ``None`` value falls back to the column default.

    Raises:
        ValueError: On an empty row list or a row missing a column without
            default.
    """
    if not rows:
        raise ValueError(f"No rows to insert into '{table}'.")
    defaults = defaults or {}
    params: List[Any] = []
    tuples: List[str] = []
    for index, row in enumerate(rows):
        cells: List[str] = []
        for column in columns:
            if column not in row and column not in defaults:
                raise ValueError(f"Row {index} for '{table}' is missing column '{column}'.")
            params.append(row.get(column))
            marker: str = f"${len(params)}"
            if column in defaults:
                marker = f"COALESCE({marker}, {defaults[column]})"
            cells.append(marker)
        tuples.append(f"({', '.join(cells)})")
    sql: str = (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES {', '.join(tuples)} RETURNING *"
    )
    return sql, params


def require_row(row: Optional[Dict[str, Any]], sql: str, param_count: int) -> Dict[str, Any]:
    """Return *row*, raising ``QueryError(NO_ROWS_RETURNED)`` when it is missing."""
    if row is None:
        raise QueryError(
            ErrorCode.NO_ROWS_RETURNED,
            ErrorCode.NO_ROWS_RETURNED.description,
            sql,
            param_count,
        )
    return row


__all__: List[str] = [
    "build_update",
    "build_insert_many",
    "require_row",
]

logger.debug("fluentorm.crud loaded — %d public symbols.", len(__all__))
