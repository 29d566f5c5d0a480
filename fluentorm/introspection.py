# File: fluentorm/introspection.py
"""
FluentORM - Schema Introspection
================================
Reads an existing PostgreSQL schema from ``information_schema`` and
``pg_catalog`` and writes one schema fragment per table, so a database that
predates its fragments can be brought under generation:

    1. List the base tables of one schema, minus migration bookkeeping
       tables and the include/exclude filters.
    2. Per table: columns, primary key, unique constraints, foreign keys and
       indexes.
    3. Convert each table into a ``SchemaFragment`` (types mapped onto
       ``FieldType``, input modes inferred, secrets redacted, reverse
       one-to-many relationships inferred from other tables' foreign keys).
    4. Write ``<table>.yaml`` files atomically, or only report in dry-run mode.

All catalog queries go through an ``Executor``; nothing here talks to the
driver directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

import yaml

from fluentorm.errors import OrmError
from fluentorm.executor import Executor, Row
from fluentorm.models import OPTIONAL_SUFFIX, InputMode, OnDeleteAction, SchemaFragment
from fluentorm.registry import FragmentError, parse_fragment
from fluentorm.utils import Timer, atomic_write, ensure_directory

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.introspection")

DEFAULT_SCHEMA: str = "public"

# Bookkeeping tables of common migration tools.
EXCLUDED_TABLES: FrozenSet[str] = frozenset({
    "schema_migrations",
    "_prisma_migrations",
    "knex_migrations",
    "knex_migrations_lock",
    "typeorm_metadata",
    "ar_internal_metadata",
    "__diesel_schema_migrations",
    "flyway_schema_history",
    "databasechangelog",
    "databasechangeloglock",
    "alembic_version",
})

REDACTED_PATTERNS: Tuple[str, ...] = (
    "password",
    "secret",
    "token",
    "api_key",
    "private_key",
)

# udt_name → base FieldType; anything else falls back to text.
PG_TYPE_MAP: Dict[str, str] = {
    "uuid": "uuid",
    "text": "text",
    "varchar": "text",
    "bpchar": "text",
    "char": "text",
    "citext": "text",
    "bool": "boolean",
    "int2": "i16",
    "int4": "i32",
    "int8": "i64",
    "float4": "f32",
    "float8": "f64",
    "numeric": "f64",
    "timestamp": "timestamp",
    "timestamptz": "timestamptz",
    "json": "json",
    "jsonb": "json",
}

_AUTO_DEFAULT_MARKERS: Tuple[str, ...] = (
    "nextval(",
    "gen_random_uuid(",
    "uuid_generate_",
    "now()",
    "current_timestamp",
)

# ---------------------------------------------------------------------------
# Catalog queries
# ---------------------------------------------------------------------------

SCHEMA_EXISTS_SQL: str = (
    "SELECT EXISTS(SELECT 1 FROM information_schema.schemata WHERE schema_name = $1) AS exists"
)

TABLES_SQL: str = (
    "SELECT table_name FROM information_schema.tables "
    "WHERE table_schema = $1 AND table_type = 'BASE TABLE' "
    "ORDER BY table_name"
)

COLUMNS_SQL: str = (
    "SELECT column_name, data_type, udt_name, is_nullable, column_default, is_identity "
    "FROM information_schema.columns "
    "WHERE table_schema = $1 AND table_name = $2 "
    "ORDER BY ordinal_position"
)

PRIMARY_KEY_SQL: str = (
    "SELECT kcu.column_name "
    "FROM information_schema.table_constraints tc "
    "JOIN information_schema.key_column_usage kcu "
    "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
    "WHERE tc.table_schema = $1 AND tc.table_name = $2 AND tc.constraint_type = 'PRIMARY KEY' "
    "ORDER BY kcu.ordinal_position"
)

UNIQUE_CONSTRAINTS_SQL: str = (
    "SELECT tc.constraint_name, kcu.column_name "
    "FROM information_schema.table_constraints tc "
    "JOIN information_schema.key_column_usage kcu "
    "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
    "WHERE tc.table_schema = $1 AND tc.table_name = $2 AND tc.constraint_type = 'UNIQUE' "
    "ORDER BY tc.constraint_name, kcu.ordinal_position"
)

FOREIGN_KEYS_SQL: str = (
    "SELECT tc.constraint_name, kcu.column_name, "
    "ccu.table_name AS foreign_table_name, ccu.column_name AS foreign_column_name, "
    "rc.delete_rule, rc.update_rule "
    "FROM information_schema.table_constraints tc "
    "JOIN information_schema.key_column_usage kcu "
    "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
    "JOIN information_schema.constraint_column_usage ccu "
    "ON tc.constraint_name = ccu.constraint_name AND tc.table_schema = ccu.table_schema "
    "JOIN information_schema.referential_constraints rc "
    "ON tc.constraint_name = rc.constraint_name AND tc.table_schema = rc.constraint_schema "
    "WHERE tc.table_schema = $1 AND tc.table_name = $2 AND tc.constraint_type = 'FOREIGN KEY' "
    "ORDER BY tc.constraint_name, kcu.ordinal_position"
)

INDEXES_SQL: str = (
    "SELECT i.relname AS index_name, a.attname AS column_name, "
    "ix.indisunique AS is_unique, ix.indisprimary AS is_primary "
    "FROM pg_catalog.pg_class t "
    "JOIN pg_catalog.pg_index ix ON t.oid = ix.indrelid "
    "JOIN pg_catalog.pg_class i ON ix.indexrelid = i.oid "
    "JOIN pg_catalog.pg_namespace n ON t.relnamespace = n.oid "
    "JOIN pg_catalog.pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey) "
    "WHERE n.nspname = $1 AND t.relname = $2 AND t.relkind = 'r' "
    "ORDER BY i.relname, array_position(ix.indkey, a.attnum)"
)


class IntrospectionError(OrmError):
    """The catalogs could not be read as requested."""


# ---------------------------------------------------------------------------
# Introspected shapes
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class IntrospectedColumn:
    name: str
    data_type: str
    udt_name: str
    nullable: bool = False
    default: Optional[str] = None
    is_identity: bool = False

    @property
    def field_type(self) -> str:
        return map_pg_type(self.udt_name, self.data_type, self.nullable)

    @property
    def is_auto_generated(self) -> bool:
        """Identity column, sequence, or a uuid/clock default."""
        if self.is_identity:
            return True
        lowered: str = (self.default or "").lower()
        return any(marker in lowered for marker in _AUTO_DEFAULT_MARKERS)


@dataclass(slots=True)
class IntrospectedForeignKey:
    constraint_name: str
    columns: List[str]
    foreign_table: str
    foreign_columns: List[str]
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"

    @property
    def is_composite(self) -> bool:
        return len(self.columns) > 1


@dataclass(slots=True)
class IntrospectedIndex:
    name: str
    columns: List[str]
    unique: bool = False
    primary: bool = False


@dataclass(slots=True)
class IntrospectedTable:
    """Everything read from the catalogs for one table."""

    name: str
    columns: List[IntrospectedColumn] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    unique_constraints: Dict[str, List[str]] = field(default_factory=dict)
    foreign_keys: List[IntrospectedForeignKey] = field(default_factory=list)
    indexes: List[IntrospectedIndex] = field(default_factory=list)

    @property
    def unique_columns(self) -> Set[str]:
        """Columns carrying a single-column UNIQUE constraint."""
        return {cols[0] for cols in self.unique_constraints.values() if len(cols) == 1}


@dataclass(frozen=False, slots=True)
class IntrospectionReport:
    """Outcome of ``pull_schema``; ``written`` is empty in dry-run mode."""

    schema_name: str = DEFAULT_SCHEMA
    output_directory: str = ""
    dry_run: bool = False
    tables: List[IntrospectedTable] = field(default_factory=list)
    fragments: List[SchemaFragment] = field(default_factory=list)
    written: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def summary(self) -> str:
        """Return a human-readable summary string."""
        lines: List[str] = []
        lines.append(f"{'='*60}")
        lines.append("  FluentORM: Schema Pull Report")
        lines.append(f"{'='*60}")
        lines.append(f"  Schema:           {self.schema_name}")
        lines.append(f"  Output:           {'(dry run)' if self.dry_run else self.output_directory}")
        lines.append(f"  Tables:           {len(self.tables)}")
        lines.append(f"  Fragments:        {len(self.written)} written")
        lines.append(f"  Total time:       {self.elapsed_seconds:.3f}s")
        lines.append(f"{'─'*60}")
        for table in self.tables:
            lines.append(
                f"    {table.name:<28s} {len(table.columns):>3d} columns  "
                f"{len(table.foreign_keys):>2d} foreign keys  {len(table.indexes):>2d} indexes"
            )
        if self.warnings:
            lines.append(f"{'─'*60}")
            lines.append(f"  Warnings ({len(self.warnings)}):")
            for item in self.warnings:
                lines.append(f"    ⚠ {item}")
        lines.append(f"{'='*60}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Type mapping
# ---------------------------------------------------------------------------


def map_pg_type(udt_name: str, data_type: str = "", nullable: bool = False) -> str:
    """
    Map a PostgreSQL column type onto a ``FieldType`` value.

    Examples:
        >>> map_pg_type("int8", "bigint")
        'i64'
        >>> map_pg_type("varchar", "character varying", nullable=True)
        'text_optional'
    """
    base: Optional[str] = PG_TYPE_MAP.get(udt_name)
    if base is None:
        base = "timestamp" if "timestamp" in data_type else "text"
    return f"{base}{OPTIONAL_SUFFIX}" if nullable else base


def _action(rule: Optional[str]) -> str:
    try:
        return OnDeleteAction((rule or "").upper()).value
    except ValueError:
        return OnDeleteAction.NO_ACTION.value


# ---------------------------------------------------------------------------
# Catalog reader
# ---------------------------------------------------------------------------


class Introspector:
    """Reads table definitions of one schema through an ``Executor``."""

    def __init__(
        self,
        db: Executor,
        schema_name: str = DEFAULT_SCHEMA,
        include: Optional[Iterable[str]] = None,
        exclude: Iterable[str] = (),
    ) -> None:
        self.db: Executor = db
        self.schema_name: str = schema_name
        self.include: Optional[Set[str]] = set(include) if include is not None else None
        self.exclude: Set[str] = set(exclude)

    def _wanted(self, table_name: str) -> bool:
        if table_name in EXCLUDED_TABLES or table_name in self.exclude:
            return False
        return self.include is None or table_name in self.include

    def _rows(self, sql: str, table_name: Optional[str] = None) -> List[Row]:
        params: List[Any] = [self.schema_name] if table_name is None else [self.schema_name, table_name]
        return self.db.query(sql, params)

    def list_tables(self) -> List[str]:
        """Base tables of the schema that pass the filters, by name."""
        row: Optional[Row] = self.db.query_one(SCHEMA_EXISTS_SQL, [self.schema_name])
        if not row or not next(iter(row.values())):
            raise IntrospectionError(f"Schema '{self.schema_name}' does not exist.")
        names: List[str] = [r["table_name"] for r in self._rows(TABLES_SQL)]
        if self.include is not None:
            for missing in sorted(self.include - set(names)):
                logger.warning("Included table '%s' not found in schema '%s'.", missing, self.schema_name)
        return [name for name in names if self._wanted(name)]

    def introspect_table(self, table_name: str) -> IntrospectedTable:
        table: IntrospectedTable = IntrospectedTable(name=table_name)

        for r in self._rows(COLUMNS_SQL, table_name):
            table.columns.append(
                IntrospectedColumn(
                    name=r["column_name"],
                    data_type=r.get("data_type") or "",
                    udt_name=r.get("udt_name") or "",
                    nullable=r.get("is_nullable") == "YES",
                    default=r.get("column_default"),
                    is_identity=r.get("is_identity") == "YES",
                )
            )

        table.primary_key = [r["column_name"] for r in self._rows(PRIMARY_KEY_SQL, table_name)]

        for r in self._rows(UNIQUE_CONSTRAINTS_SQL, table_name):
            table.unique_constraints.setdefault(r["constraint_name"], []).append(r["column_name"])

        by_constraint: Dict[str, IntrospectedForeignKey] = {}
        for r in self._rows(FOREIGN_KEYS_SQL, table_name):
            fk: Optional[IntrospectedForeignKey] = by_constraint.get(r["constraint_name"])
            if fk is None:
                fk = IntrospectedForeignKey(
                    constraint_name=r["constraint_name"],
                    columns=[],
                    foreign_table=r["foreign_table_name"],
                    foreign_columns=[],
                    on_delete=_action(r.get("delete_rule")),
                    on_update=_action(r.get("update_rule")),
                )
                by_constraint[fk.constraint_name] = fk
                table.foreign_keys.append(fk)
            if r["column_name"] not in fk.columns:
                fk.columns.append(r["column_name"])
            if r["foreign_column_name"] not in fk.foreign_columns:
                fk.foreign_columns.append(r["foreign_column_name"])

        by_index: Dict[str, IntrospectedIndex] = {}
        for r in self._rows(INDEXES_SQL, table_name):
            index: Optional[IntrospectedIndex] = by_index.get(r["index_name"])
            if index is None:
                index = IntrospectedIndex(
                    name=r["index_name"],
                    columns=[],
                    unique=bool(r.get("is_unique")),
                    primary=bool(r.get("is_primary")),
                )
                by_index[index.name] = index
                table.indexes.append(index)
            index.columns.append(r["column_name"])

        logger.debug(
            "Introspected %s: %d columns, %d foreign keys, %d indexes",
            table_name,
            len(table.columns),
            len(table.foreign_keys),
            len(table.indexes),
        )
        return table

    def introspect(self) -> List[IntrospectedTable]:
        return [self.introspect_table(name) for name in self.list_tables()]


# ---------------------------------------------------------------------------
# Conversion to fragments
# ---------------------------------------------------------------------------


def _field_data(column: IntrospectedColumn, table: IntrospectedTable) -> Dict[str, Any]:
    is_pk: bool = column.name in table.primary_key
    data: Dict[str, Any] = {"name": column.name, "type": column.field_type}
    if is_pk:
        data["primary_key"] = True
    elif column.name in table.unique_columns:
        data["unique"] = True
    if column.default is not None:
        data["default"] = column.default

    if is_pk or column.is_auto_generated:
        mode: InputMode = InputMode.AUTO_GENERATED
    elif column.nullable or column.default is not None:
        mode = InputMode.OPTIONAL
    else:
        mode = InputMode.REQUIRED
    data["input_mode"] = mode.value

    if any(pattern in column.name for pattern in REDACTED_PATTERNS):
        data["redacted"] = True
    return data


def table_to_fragment(
    table: IntrospectedTable, tables: Sequence[IntrospectedTable], warnings: List[str]
) -> SchemaFragment:
    """
    Build the fragment of *table*.

    Foreign keys become many-to-one relationships when they target a table
    of *tables*; other tables' foreign keys onto this table's ``id`` become
    one-to-many relationships, one per referencing table.  Skipped
    constraints are described in *warnings*.

    Raises:
        FragmentError: When the catalog content does not form a valid fragment.
    """
    known: Set[str] = {t.name for t in tables}
    unique_names: Set[str] = set(table.unique_constraints)
    data: Dict[str, Any] = {
        "table_name": table.name,
        "fields": [_field_data(c, table) for c in table.columns],
    }

    indexes: List[Dict[str, Any]] = [
        {"name": idx.name, "columns": list(idx.columns), "unique": idx.unique}
        for idx in table.indexes
        if not idx.primary and idx.name not in unique_names
    ]
    if indexes:
        data["indexes"] = indexes

    relationships: List[Dict[str, Any]] = []
    for fk in table.foreign_keys:
        if fk.is_composite:
            warnings.append(f"{table.name}: composite foreign key '{fk.constraint_name}' skipped")
            continue
        if fk.foreign_table not in known:
            warnings.append(
                f"{table.name}: foreign key '{fk.constraint_name}' targets "
                f"'{fk.foreign_table}', which was not pulled"
            )
            continue
        relationships.append({
            "name": fk.constraint_name,
            "column": fk.columns[0],
            "references": {"table": fk.foreign_table, "column": fk.foreign_columns[0]},
            "type": "many_to_one",
            "on_delete": fk.on_delete,
            "on_update": fk.on_update,
        })

    column_names: Set[str] = {c.name for c in table.columns}
    for other in tables:
        if other.name == table.name:
            continue
        for fk in other.foreign_keys:
            if fk.foreign_table != table.name or fk.is_composite:
                continue
            if fk.foreign_columns[0] != "id" or "id" not in column_names:
                continue
            if any(r["references"]["table"] == other.name and r["column"] == "id" for r in relationships):
                warnings.append(
                    f"{table.name}: extra reverse relationship through "
                    f"'{other.name}.{fk.columns[0]}' skipped"
                )
                continue
            relationships.append({
                "column": "id",
                "references": {"table": other.name, "column": fk.columns[0]},
                "type": "one_to_many",
            })
    if relationships:
        data["relationships"] = relationships

    return parse_fragment(data, source=f"{table.name}.yaml")


def fragment_to_yaml(fragment: SchemaFragment) -> str:
    """Serialise a fragment the way hand-written fragments are laid out."""
    data: Dict[str, Any] = fragment.model_dump(
        mode="json", by_alias=True, exclude_defaults=True, exclude_none=True
    )
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def pull_schema(
    db: Executor,
    output_dir: Optional[Path] = None,
    *,
    schema_name: str = DEFAULT_SCHEMA,
    include: Optional[Iterable[str]] = None,
    exclude: Iterable[str] = (),
    dry_run: bool = False,
) -> IntrospectionReport:
    """
    Introspect *schema_name* and write one ``<table>.yaml`` fragment per
    table into *output_dir*.  With *dry_run* nothing is written.

    Raises:
        IntrospectionError: The schema does not exist.
        QueryError: A catalog query failed.
    """
    report: IntrospectionReport = IntrospectionReport(
        schema_name=schema_name,
        output_directory=str(output_dir) if output_dir is not None else "",
        dry_run=dry_run,
    )
    if output_dir is None and not dry_run:
        raise ValueError("output_dir is required unless dry_run is set.")

    with Timer("pull") as timer:
        introspector: Introspector = Introspector(db, schema_name, include, exclude)
        report.tables = introspector.introspect()

        for table in report.tables:
            try:
                report.fragments.append(table_to_fragment(table, report.tables, report.warnings))
            except FragmentError as exc:
                report.warnings.append(f"{table.name}: not convertible ({exc.message})")

        if not dry_run and output_dir is not None:
            ensure_directory(output_dir)
            for fragment in report.fragments:
                path: Path = output_dir / f"{fragment.table_name}.yaml"
                atomic_write(path, fragment_to_yaml(fragment))
                report.written.append(path.name)
                logger.info("Wrote %s", path)

    report.elapsed_seconds = timer.elapsed
    for item in report.warnings:
        logger.warning(item)
    logger.info(
        "Pulled %d table(s) from schema '%s' (%d written).",
        len(report.tables),
        schema_name,
        len(report.written),
    )
    return report


__all__: List[str] = [
    "DEFAULT_SCHEMA",
    "EXCLUDED_TABLES",
    "PG_TYPE_MAP",
    "IntrospectionError",
    "IntrospectedColumn",
    "IntrospectedForeignKey",
    "IntrospectedIndex",
    "IntrospectedTable",
    "IntrospectionReport",
    "Introspector",
    "map_pg_type",
    "table_to_fragment",
    "fragment_to_yaml",
    "pull_schema",
]

logger.debug("fluentorm.introspection loaded — %d public symbols.", len(__all__))
