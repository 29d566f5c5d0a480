# File: fluentorm/query.py
"""
FluentORM - Query Builder Runtime
=================================
Fluent, parameterized SQL construction for one table.

Every clause method returns the builder, so queries read as a chain::

    rows = (
        PostQuery()
        .where("active", "eq", True)
        .order_by("created_at", "desc")
        .limit(10)
        .fetch(db)
    )

Assembly order is fixed regardless of call order::

    SELECT … FROM table [JOIN …]* [WHERE …] [GROUP BY …] [HAVING …]
    [ORDER BY …] [LIMIT n] [OFFSET n]

Bound values are never interpolated.  Placeholders ``$1, $2, …`` are handed
out left to right while the statement is rendered, so the parameter list
always lines up with the placeholders.  Raw fragments mark their
parameters with ``?``.  ``LIMIT``/``OFFSET`` are validated integers and are
rendered literally.

Builder lifecycle::

    UNBUILT ─ clause call ─▶ CONFIGURING ─ fetch/count/… ─▶ EXECUTED
       ▲                                                       │
       └──────────────────────── reset() ◀─────────────────────┘
    release() / leaving a ``with`` block ─▶ RELEASED (terminal)

A builder is confined to one logical flow; use one builder per concurrent
query.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from fluentorm.errors import BuilderStateError
from fluentorm.executor import Row

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.query")

_COLUMN_REF_RE: re.Pattern[str] = re.compile(
    r"^[A-Za-z_][A-Za-z0-9_]*(\.([A-Za-z_][A-Za-z0-9_]*|\*))?$"
)
_IDENT_RE: re.Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_OR_RE: re.Pattern[str] = re.compile(r"\bOR\b", re.IGNORECASE)

SOFT_DELETE_COLUMN: str = "deleted_at"

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Operator(str, Enum):
    """Comparison operators accepted by ``where``."""

    EQ = "eq"
    NEQ = "neq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"

    @property
    def sql(self) -> str:
        return _OPERATOR_SQL[self]


_OPERATOR_SQL: Dict[Operator, str] = {
    Operator.EQ: "=",
    Operator.NEQ: "!=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LIKE: "LIKE",
    Operator.ILIKE: "ILIKE",
    Operator.IN: "IN",
    Operator.NOT_IN: "NOT IN",
    Operator.IS_NULL: "IS NULL",
    Operator.IS_NOT_NULL: "IS NOT NULL",
    Operator.BETWEEN: "BETWEEN",
    Operator.NOT_BETWEEN: "NOT BETWEEN",
}

_COMPARISONS: frozenset = frozenset(
    {
        Operator.EQ,
        Operator.NEQ,
        Operator.LT,
        Operator.LTE,
        Operator.GT,
        Operator.GTE,
        Operator.LIKE,
        Operator.ILIKE,
    }
)


class JoinType(str, Enum):
    INNER = "inner"
    LEFT = "left"
    RIGHT = "right"
    FULL = "full"

    @property
    def sql(self) -> str:
        return "FULL OUTER JOIN" if self is JoinType.FULL else f"{self.value.upper()} JOIN"


class Aggregate(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"

    @property
    def sql(self) -> str:
        return self.value.upper()


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class BuilderState(str, Enum):
    UNBUILT = "unbuilt"
    CONFIGURING = "configuring"
    EXECUTED = "executed"
    RELEASED = "released"


EnumT = TypeVar("EnumT", bound=Enum)


def _coerce(enum_cls: Type[EnumT], value: Any, what: str) -> EnumT:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed: str = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"Unknown {what} {value!r}; expected one of: {allowed}") from None


def _non_negative_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{what} must be a non-negative integer, got {value!r}")
    return value


@functools.lru_cache(maxsize=1024)
def qualify(table: str, column: str) -> str:
    """``qualify("posts", "id")`` → ``posts.id``; dotted names pass through."""
    if "." in column:
        return column
    return f"{table}.{column}"


# ---------------------------------------------------------------------------
# Relation metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Relation:
    """
    How to eager-load one relation of the bound table.

    The related rows are those of ``table`` whose ``foreign_column`` equals
    the bound table's ``local_column``.
    """

    name: str
    table: str
    local_column: str
    foreign_column: str
    many: bool = False


@dataclass(frozen=True, slots=True)
class IncludeOptions:
    """Filters applied inside an eager-load subquery."""

    where: Optional[str] = None
    params: Tuple[Any, ...] = ()
    order_by: Optional[str] = None
    limit: Optional[int] = None


# ---------------------------------------------------------------------------
# Parameter binding
# ---------------------------------------------------------------------------


class _ParamCollector:
    """Hands out ``$n`` placeholders in rendering order."""

    __slots__ = ("values",)

    def __init__(self) -> None:
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"

    def bind(self, sql: str, params: Sequence[Any]) -> str:
        """Replace each ``?`` of a raw fragment with the next placeholder."""
        pieces: List[str] = sql.split("?")
        out: List[str] = [pieces[0]]
        for piece, value in zip(pieces[1:], params):
            out.append(self.add(value))
            out.append(piece)
        return "".join(out)


def _check_raw(sql: str, params: Sequence[Any]) -> None:
    expected: int = sql.count("?")
    if expected != len(params):
        raise ValueError(
            f"Raw fragment has {expected} placeholder(s) but {len(params)} parameter(s): {sql!r}"
        )


Renderer = Callable[[_ParamCollector], str]


# ---------------------------------------------------------------------------
# QueryBuilder
# ---------------------------------------------------------------------------


class QueryBuilder:
    """
    Fluent query builder bound to one table.

    Generated code subclasses this and fills in the class attributes;
    ad-hoc builders pass them to the constructor instead.
    """

    table_name: str = ""
    columns: Tuple[str, ...] = ()
    select_all_sql: str = ""
    soft_delete: bool = False
    record_type: Optional[type] = None
    relations: Dict[str, Relation] = {}
    relation_variants: Dict[str, type] = {}
    all_relations_variant: Optional[type] = None

    def __init__(
        self,
        table_name: Optional[str] = None,
        *,
        columns: Optional[Sequence[str]] = None,
        soft_delete: Optional[bool] = None,
        record_type: Optional[type] = None,
        relations: Optional[Sequence[Relation]] = None,
    ) -> None:
        if table_name is not None:
            self.table_name = table_name
            self.select_all_sql = f"SELECT {table_name}.* FROM {table_name}"
        if not self.table_name or not _IDENT_RE.match(self.table_name):
            raise ValueError(f"Invalid table name: {self.table_name!r}")
        if columns is not None:
            self.columns = tuple(columns)
        if soft_delete is not None:
            self.soft_delete = soft_delete
        if record_type is not None:
            self.record_type = record_type
        if relations is not None:
            self.relations = {r.name: r for r in relations}
        if not self.select_all_sql:
            self.select_all_sql = f"SELECT {self.table_name}.* FROM {self.table_name}"

        self._selects: List[Renderer] = []
        self._distinct: bool = False
        self._joins: List[str] = []
        self._includes: Dict[str, IncludeOptions] = {}
        self._wheres: List[Tuple[str, Renderer]] = []
        self._group_by: List[str] = []
        self._havings: List[Renderer] = []
        self._order_by: List[str] = []
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None
        self._deleted: str = "exclude"
        self.state: BuilderState = BuilderState.UNBUILT

    # -- State machine ------------------------------------------------------

    def _configure(self) -> "QueryBuilder":
        if self.state in (BuilderState.EXECUTED, BuilderState.RELEASED):
            raise BuilderStateError(
                f"Cannot modify a builder in state '{self.state.value}'; call reset() first."
                if self.state is BuilderState.EXECUTED
                else "Cannot modify a released builder."
            )
        self.state = BuilderState.CONFIGURING
        return self

    def _begin_execution(self) -> None:
        if self.state in (BuilderState.EXECUTED, BuilderState.RELEASED):
            raise BuilderStateError(
                f"Cannot execute a builder in state '{self.state.value}'."
            )
        self.state = BuilderState.EXECUTED

    def _clear(self) -> None:
        self._selects.clear()
        self._joins.clear()
        self._includes.clear()
        self._wheres.clear()
        self._group_by.clear()
        self._havings.clear()
        self._order_by.clear()
        self._distinct = False
        self._limit = None
        self._offset = None
        self._deleted = "exclude"

    def reset(self) -> "QueryBuilder":
        """Clear every clause, keeping the containers, and return to UNBUILT."""
        if self.state is BuilderState.RELEASED:
            raise BuilderStateError("Cannot reset a released builder.")
        self._clear()
        self.state = BuilderState.UNBUILT
        return self

    def release(self) -> None:
        self._clear()
        self.state = BuilderState.RELEASED

    def __enter__(self) -> "QueryBuilder":
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        self.release()

    # -- Validation helpers -------------------------------------------------

    def _check_column(self, column: str) -> str:
        if not isinstance(column, str) or not _COLUMN_REF_RE.match(column):
            raise ValueError(f"Invalid column reference {column!r}; use a *_raw method for expressions.")
        if "." not in column and self.columns and column not in self.columns:
            raise ValueError(f"Unknown column '{column}' for table '{self.table_name}'.")
        return column

    # -- Projection ---------------------------------------------------------

    def select(self, *fields: str) -> "QueryBuilder":
        """Replace the default projection with table-qualified columns."""
        self._configure()
        for name in fields:
            if name == "*":
                text: str = f"{self.table_name}.*"
            else:
                text = qualify(self.table_name, self._check_column(name))
            self._selects.append(lambda p, text=text: text)
        return self

    def distinct(self) -> "QueryBuilder":
        self._configure()
        self._distinct = True
        return self

    def select_aggregate(
        self, aggregate: Any, column: str = "*", alias: Optional[str] = None
    ) -> "QueryBuilder":
        self._configure()
        agg: Aggregate = _coerce(Aggregate, aggregate, "aggregate")
        target: str = column if column == "*" else self._check_column(column)
        text: str = f"{agg.sql}({target})"
        if alias is not None:
            if not _IDENT_RE.match(alias):
                raise ValueError(f"Invalid alias {alias!r}")
            text = f"{text} AS {alias}"
        self._selects.append(lambda p, text=text: text)
        return self

    def select_raw(self, sql: str, *params: Any) -> "QueryBuilder":
        self._configure()
        _check_raw(sql, params)
        self._selects.append(lambda p: p.bind(sql, params))
        return self

    # -- Conditions ---------------------------------------------------------

    def _condition(self, column: str, operator: Any, value: Any) -> Renderer:
        op: Operator = _coerce(Operator, operator, "operator")
        column = self._check_column(column)

        if op in (Operator.IS_NULL, Operator.IS_NOT_NULL):
            return lambda p: f"{column} {op.sql}"

        if op in (Operator.IN, Operator.NOT_IN):
            if value is None or isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
                raise ValueError(f"'{op.value}' expects a list of values for column '{column}'.")
            values: List[Any] = list(value)
            if not values:
                raise ValueError(f"'{op.value}' needs at least one value for column '{column}'.")
            return lambda p: f"{column} {op.sql} ({', '.join(p.add(v) for v in values)})"

        if op in (Operator.BETWEEN, Operator.NOT_BETWEEN):
            if not isinstance(value, (tuple, list)) or len(value) != 2:
                raise ValueError(f"'{op.value}' expects a (low, high) pair for column '{column}'.")
            low, high = value
            return lambda p: f"{column} {op.sql} {p.add(low)} AND {p.add(high)}"

        if value is None:
            raise ValueError(
                f"Cannot compare column '{column}' with None; use is_null/is_not_null."
            )
        return lambda p: f"{column} {op.sql} {p.add(value)}"

    def where(self, column: str, operator: Any = Operator.EQ, value: Any = None) -> "QueryBuilder":
        """AND a condition; ``where("active", "eq", True)``."""
        self._configure()
        self._wheres.append(("AND", self._condition(column, operator, value)))
        return self

    def or_where(self, column: str, operator: Any = Operator.EQ, value: Any = None) -> "QueryBuilder":
        self._configure()
        self._wheres.append(("OR", self._condition(column, operator, value)))
        return self

    def where_between(self, column: str, low: Any, high: Any) -> "QueryBuilder":
        return self.where(column, Operator.BETWEEN, (low, high))

    def where_not_between(self, column: str, low: Any, high: Any) -> "QueryBuilder":
        return self.where(column, Operator.NOT_BETWEEN, (low, high))

    def where_in(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        return self.where(column, Operator.IN, values)

    def where_not_in(self, column: str, values: Sequence[Any]) -> "QueryBuilder":
        return self.where(column, Operator.NOT_IN, values)

    def where_null(self, column: str) -> "QueryBuilder":
        return self.where(column, Operator.IS_NULL)

    def where_not_null(self, column: str) -> "QueryBuilder":
        return self.where(column, Operator.IS_NOT_NULL)

    def where_raw(self, sql: str, *params: Any) -> "QueryBuilder":
        """AND a raw condition; mark bound values with ``?``."""
        self._configure()
        _check_raw(sql, params)
        self._wheres.append(("AND", lambda p: p.bind(sql, params)))
        return self

    def or_where_raw(self, sql: str, *params: Any) -> "QueryBuilder":
        self._configure()
        _check_raw(sql, params)
        self._wheres.append(("OR", lambda p: p.bind(sql, params)))
        return self

    def where_exists(self, subquery: "QueryBuilder") -> "QueryBuilder":
        self._configure()
        self._wheres.append(("AND", lambda p: f"EXISTS ({subquery._render(p)})"))
        return self

    def where_not_exists(self, subquery: "QueryBuilder") -> "QueryBuilder":
        self._configure()
        self._wheres.append(("AND", lambda p: f"NOT EXISTS ({subquery._render(p)})"))
        return self

    def where_subquery(
        self, column: str, operator: Any, subquery: "QueryBuilder"
    ) -> "QueryBuilder":
        """``where_subquery("id", "in", other)`` → ``id IN (SELECT …)``."""
        self._configure()
        op: Operator = _coerce(Operator, operator, "operator")
        if op not in _COMPARISONS and op not in (Operator.IN, Operator.NOT_IN):
            raise ValueError(f"Operator '{op.value}' cannot compare against a subquery.")
        column = self._check_column(column)
        self._wheres.append(("AND", lambda p: f"{column} {op.sql} ({subquery._render(p)})"))
        return self

    def with_deleted(self) -> "QueryBuilder":
        """Include soft-deleted rows."""
        self._configure()
        self._deleted = "include"
        return self

    def only_deleted(self) -> "QueryBuilder":
        """Return soft-deleted rows only."""
        self._configure()
        self._deleted = "only"
        return self

    # -- Joins & includes ---------------------------------------------------

    def join(
        self, table: str, on_left: str, on_right: str, kind: Any = JoinType.INNER
    ) -> "QueryBuilder":
        self._configure()
        join_type: JoinType = _coerce(JoinType, kind, "join type")
        if not _IDENT_RE.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        for ref in (on_left, on_right):
            if not _COLUMN_REF_RE.match(ref):
                raise ValueError(f"Invalid join column reference: {ref!r}")
        self._joins.append(f"{join_type.sql} {table} ON {on_left} = {on_right}")
        return self

    def include(self, relation: str, options: Optional[IncludeOptions] = None) -> "QueryBuilder":
        """Eager-load a relation as a ``jsonb`` column named after it."""
        self._configure()
        if relation not in self.relations:
            raise ValueError(
                f"Unknown relation '{relation}' for table '{self.table_name}'. "
                f"Available: {sorted(self.relations)}"
            )
        options = options or IncludeOptions()
        if options.where is not None:
            _check_raw(options.where, options.params)
        if options.limit is not None:
            _non_negative_int(options.limit, "include limit")
        self._includes[relation] = options
        return self

    # -- Grouping, ordering, paging -----------------------------------------

    def group_by(self, *columns: str) -> "QueryBuilder":
        self._configure()
        for column in columns:
            if not _COLUMN_REF_RE.match(column):
                raise ValueError(f"Invalid column reference {column!r}; use group_by_raw.")
            self._group_by.append(column)
        return self

    def group_by_raw(self, sql: str) -> "QueryBuilder":
        self._configure()
        self._group_by.append(sql)
        return self

    def having(self, sql: str, *params: Any) -> "QueryBuilder":
        """Raw HAVING condition; several are joined with AND."""
        self._configure()
        _check_raw(sql, params)
        self._havings.append(lambda p: p.bind(sql, params))
        return self

    def having_aggregate(
        self, aggregate: Any, column: str, operator: Any, value: Any
    ) -> "QueryBuilder":
        """``having_aggregate("count", "*", "gt", 5)`` → ``COUNT(*) > $n``."""
        self._configure()
        agg: Aggregate = _coerce(Aggregate, aggregate, "aggregate")
        op: Operator = _coerce(Operator, operator, "operator")
        if op not in _COMPARISONS:
            raise ValueError(f"Operator '{op.value}' is not allowed in having_aggregate.")
        target: str = column if column == "*" else self._check_column(column)
        self._havings.append(lambda p: f"{agg.sql}({target}) {op.sql} {p.add(value)}")
        return self

    def order_by(self, column: str, direction: Any = SortDirection.ASC) -> "QueryBuilder":
        self._configure()
        sort: SortDirection = _coerce(SortDirection, direction, "sort direction")
        if not _COLUMN_REF_RE.match(column):
            raise ValueError(f"Invalid column reference {column!r}; use order_by_raw.")
        self._order_by.append(f"{column} {sort.value.upper()}")
        return self

    def order_by_raw(self, sql: str) -> "QueryBuilder":
        self._configure()
        self._order_by.append(sql)
        return self

    def limit(self, n: int) -> "QueryBuilder":
        self._configure()
        self._limit = _non_negative_int(n, "limit")
        return self

    def offset(self, n: int) -> "QueryBuilder":
        self._configure()
        self._offset = _non_negative_int(n, "offset")
        return self

    def paginate(self, page: int, per_page: int) -> "QueryBuilder":
        """1-based page; page 0 is treated as page 1."""
        page = max(_non_negative_int(page, "page"), 1)
        if _non_negative_int(per_page, "per_page") == 0:
            raise ValueError("per_page must be positive")
        self.limit(per_page)
        return self.offset((page - 1) * per_page)

    # -- Rendering ----------------------------------------------------------

    def _render_include(self, relation: Relation, options: IncludeOptions, p: _ParamCollector) -> str:
        inner: str = f"{relation.name}_rel"
        row: str = f"{relation.name}_row"
        conditions: List[str] = [
            f"{inner}.{relation.foreign_column} = {qualify(self.table_name, relation.local_column)}"
        ]
        if options.where is not None:
            conditions.append(f"({p.bind(options.where, options.params)})")
        sub: str = (
            f"SELECT {inner}.* FROM {relation.table} AS {inner} "
            f"WHERE {' AND '.join(conditions)}"
        )
        if options.order_by:
            sub += f" ORDER BY {options.order_by}"
        limit: Optional[int] = options.limit if relation.many else 1
        if limit is not None:
            sub += f" LIMIT {limit}"
        if relation.many:
            data: str = (
                f"SELECT COALESCE(jsonb_agg(to_jsonb({row})), '[]'::jsonb) AS data "
                f"FROM ({sub}) AS {row}"
            )
        else:
            data = f"SELECT to_jsonb({row}) AS data FROM ({sub}) AS {row}"
        return f"LEFT JOIN LATERAL ({data}) AS {relation.name}_include ON TRUE"

    def _render_where(self, p: _ParamCollector) -> Optional[str]:
        filters: List[str] = []
        if self.soft_delete and self._deleted != "include":
            state: str = "IS NOT NULL" if self._deleted == "only" else "IS NULL"
            filters.append(f"{qualify(self.table_name, SOFT_DELETE_COLUMN)} {state}")
        user: str = ""
        for index, (connector, render) in enumerate(self._wheres):
            text: str = render(p)
            user = text if index == 0 else f"{user} {connector} {text}"
        if user:
            if filters and _OR_RE.search(user):
                user = f"({user})"
            filters.append(user)
        return " AND ".join(filters) if filters else None

    def _render(
        self,
        p: _ParamCollector,
        *,
        projection: Optional[str] = None,
        grouping: bool = True,
        ordering: bool = True,
        paging: bool = True,
        limit: Optional[int] = None,
    ) -> str:
        parts: List[str] = []
        table: str = self.table_name

        if projection is not None:
            parts.append(f"SELECT {projection} FROM {table}")
        elif not (self._selects or self._distinct or self._joins or self._includes):
            parts.append(self.select_all_sql)
        else:
            items: List[str] = [render(p) for render in self._selects] or [f"{table}.*"]
            for name in self._includes:
                items.append(f'{name}_include.data AS "{name}"')
            head: str = "SELECT DISTINCT" if self._distinct else "SELECT"
            parts.append(f"{head} {', '.join(items)} FROM {table}")

        parts.extend(self._joins)
        if projection is None:
            for name, options in self._includes.items():
                parts.append(self._render_include(self.relations[name], options, p))

        where: Optional[str] = self._render_where(p)
        if where:
            parts.append(f"WHERE {where}")
        if grouping:
            if self._group_by:
                parts.append(f"GROUP BY {', '.join(self._group_by)}")
            if self._havings:
                parts.append(f"HAVING {' AND '.join(render(p) for render in self._havings)}")
        if ordering and self._order_by:
            parts.append(f"ORDER BY {', '.join(self._order_by)}")
        if paging:
            effective: Optional[int] = limit if limit is not None else self._limit
            if effective is not None:
                parts.append(f"LIMIT {effective}")
            if self._offset is not None:
                parts.append(f"OFFSET {self._offset}")
        elif limit is not None:
            parts.append(f"LIMIT {limit}")
        return " ".join(parts)

    def to_sql(self) -> Tuple[str, List[Any]]:
        """Assemble ``(sql, params)`` without executing."""
        if self.state is BuilderState.RELEASED:
            raise BuilderStateError("Cannot render a released builder.")
        p: _ParamCollector = _ParamCollector()
        sql: str = self._render(p)
        return sql, p.values

    def _build(self, **kwargs: Any) -> Tuple[str, List[Any]]:
        self._begin_execution()
        p: _ParamCollector = _ParamCollector()
        sql: str = self._render(p, **kwargs)
        logger.debug("Built query for %s: %s", self.table_name, sql)
        return sql, p.values

    # -- Hydration ----------------------------------------------------------

    def _target_model(self, model: Optional[type]) -> Optional[type]:
        if model is not None:
            return model
        if len(self._includes) == 1:
            variant: Optional[type] = self.relation_variants.get(next(iter(self._includes)))
            if variant is not None:
                return variant
        elif len(self._includes) > 1 and self.all_relations_variant is not None:
            return self.all_relations_variant
        return self.record_type

    @staticmethod
    def _hydrate(rows: List[Row], model: Optional[type]) -> List[Any]:
        if model is None:
            return rows
        factory: Callable[[Row], Any] = getattr(model, "from_row", None) or model.model_validate
        return [factory(row) for row in rows]

    # -- Terminal operations ------------------------------------------------

    def fetch(self, db: Any, model: Optional[type] = None) -> List[Any]:
        """Run the query and hydrate every row."""
        target: Optional[type] = self._target_model(model)
        sql, params = self._build()
        return self._hydrate(db.query(sql, params), target)

    def fetch_one(self, db: Any, model: Optional[type] = None) -> Optional[Any]:
        """First row (the query is limited to one row), or ``None``."""
        target: Optional[type] = self._target_model(model)
        sql, params = self._build(limit=1)
        records: List[Any] = self._hydrate(db.query(sql, params), target)
        return records[0] if records else None

    def fetch_raw(self, db: Any) -> List[Row]:
        sql, params = self._build()
        return db.query(sql, params)

    def count(self, db: Any) -> int:
        """Number of matching rows; a distinct query counts distinct rows."""
        if self._distinct:
            sql, params = self._build(ordering=False, paging=False)
            sql = f"SELECT COUNT(*) AS count FROM ({sql}) AS sub"
        else:
            sql, params = self._build(
                projection="COUNT(*) AS count", grouping=False, ordering=False, paging=False
            )
        rows: List[Row] = db.query(sql, params)
        return int(next(iter(rows[0].values()))) if rows else 0

    def exists(self, db: Any) -> bool:
        sql, params = self._build(
            projection="1 AS found", grouping=False, ordering=False, paging=False, limit=1
        )
        return bool(db.query(sql, params))

    def pluck(self, db: Any, column: str) -> List[Any]:
        """Values of one column, honouring conditions, ordering and paging."""
        column = self._check_column(column)
        sql, params = self._build(projection=column, grouping=False)
        key: str = column.rsplit(".", 1)[-1]
        return [row[key] if key in row else next(iter(row.values())) for row in db.query(sql, params)]

    def aggregate(self, db: Any, aggregate: Any, column: str = "*") -> Any:
        agg: Aggregate = _coerce(Aggregate, aggregate, "aggregate")
        target: str = column if column == "*" else self._check_column(column)
        sql, params = self._build(
            projection=f"{agg.sql}({target}) AS value", grouping=False, ordering=False, paging=False
        )
        rows: List[Row] = db.query(sql, params)
        return next(iter(rows[0].values())) if rows else None

    def delete(self, db: Any) -> int:
        """Delete the matching rows; returns the affected-row count."""
        if self._joins or self._includes:
            raise ValueError("delete() cannot be combined with joins or includes.")
        self._begin_execution()
        p: _ParamCollector = _ParamCollector()
        sql: str = f"DELETE FROM {self.table_name}"
        where: Optional[str] = self._render_where(p)
        if where:
            sql += f" WHERE {where}"
        return db.execute(sql, p.values)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.table_name} {self.state.value}>"


__all__: List[str] = [
    "Operator",
    "JoinType",
    "Aggregate",
    "SortDirection",
    "BuilderState",
    "Relation",
    "IncludeOptions",
    "QueryBuilder",
    "qualify",
]

logger.debug("fluentorm.query loaded — %d public symbols.", len(__all__))
