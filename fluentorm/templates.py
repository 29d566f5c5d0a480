# File: fluentorm/templates.py
"""
FluentORM - Code Template Engine
================================
Turns validated ``TableSchema`` objects into the source of an importable
Python package:

    1. ``<table>.py`` per table: constants, the record model, insert/update
       input models, relation variants, the bound query builder and the
       CRUD functions.
    2. ``registry.py``: every generated table in discovery order.
    3. ``__init__.py``: imports the registry and resolves forward references.

All string assembly uses ``List[str]`` + ``"\\n".join()``.  Output depends
only on the schemas and the configuration (no timestamps, sorted imports),
so regenerating from unchanged input is byte-identical.

Generated modules import each other for relation variants.  Those imports
sit at the bottom of each module, after every class is defined, and the
registry rebuilds the variant models once all modules are loaded.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Set

from fluentorm.models import FieldDef, GenerationConfig, RelationshipDef, TableSchema
from fluentorm.utils import (
    build_import_block,
    column_to_association_name,
    merge_import_dicts,
    py_string,
    to_pascal_case,
)

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.templates")

GENERATED_NOTE: str = "Generated by fluentorm. Do not edit."


def _optional(annotation: str) -> str:
    if annotation == "Any" or annotation.startswith("Optional["):
        return annotation
    return f"Optional[{annotation}]"


def _tuple_literal(names: Sequence[str]) -> str:
    if len(names) == 1:
        return f"({py_string(names[0])},)"
    return f"({', '.join(py_string(n) for n in names)})"


def variant_name(table: TableSchema, relationship: RelationshipDef) -> str:
    """``PostWithUser`` for the ``user`` relation of ``posts``."""
    if relationship.is_many and not relationship.is_reverse:
        # Collections keyed by a local column keep the member name.
        association: str = to_pascal_case(relationship.field_name)
    else:
        association = column_to_association_name(
            relationship.column, relationship.references_table, relationship.is_many
        )
    return f"{table.record_name}With{association}"


def all_relations_name(table: TableSchema) -> str:
    return f"{table.record_name}WithAllRelations"


def related_module_alias(table_name: str) -> str:
    """Module alias under which a related table module is imported."""
    return f"_{table_name}"


def related_record_ref(
    table: TableSchema, target_table: str, tables: Mapping[str, TableSchema]
) -> str:
    """
    Expression naming the record of *target_table* inside *table*'s module.

    Records of other tables are reached through their module alias, so a
    related record named like one of this module's classes (``PostUpdate``
    of ``post_updates`` next to ``posts.PostUpdate``) never shadows it.
    """
    record: str = tables[target_table].record_name
    if target_table == table.name:
        return record
    return f"{related_module_alias(target_table)}.{record}"


class TemplateGenerator:
    """
    Stateless code-generation engine.

    Each ``generate_*`` method returns a complete file content string.
    """

    def __init__(self, config: GenerationConfig) -> None:
        self._config: GenerationConfig = config
        self._indent: str = " " * config.indent_size
        self._runtime: str = config.runtime_package
        logger.debug(
            "TemplateGenerator initialised (runtime=%s, relations=%s).",
            config.runtime_package,
            config.generate_relations,
        )

    def _i(self, level: int = 1) -> str:
        return self._indent * level

    def _docstring(self, lines: List[str], text: str, level: int = 1) -> None:
        if self._config.generate_docstrings:
            lines.append(f'{self._i(level)}"""{text}"""')

    @staticmethod
    def _header(lines: List[str], title: str) -> None:
        lines.append('"""')
        lines.append(title)
        lines.append(GENERATED_NOTE)
        lines.append('"""')
        lines.append("")
        lines.append("from __future__ import annotations")
        lines.append("")

    # ===================================================================
    # 1. Table module
    # ===================================================================

    def generate_table_module(
        self, table: TableSchema, tables: Mapping[str, TableSchema]
    ) -> str:
        """
        Generate the complete module for one table.

        *tables* maps every generated table name to its schema and is used
        to name the records of related tables.
        """
        lines: List[str] = []
        record: str = table.record_name
        inputs: List[FieldDef] = table.input_fields
        pk: Optional[FieldDef] = table.get_field(table.primary_key) if table.primary_key else None
        variants: List[RelationshipDef] = (
            list(table.relationships) if self._config.generate_relations else []
        )
        rt: str = self._runtime

        # --- Collect imports ---
        imports: Dict[str, Set[str]] = merge_import_dicts(
            {
                "typing": {"Any", "ClassVar", "Dict", "List", "Optional"},
                "pydantic": {"BaseModel", "ConfigDict"},
                f"{rt}.crud": {"require_row"},
                f"{rt}.hydration": {"base_values"},
                f"{rt}.query": {"QueryBuilder", "Relation"},
            },
            table.python_imports(),
        )
        if any(f.redacted for f in table.fields):
            imports["pydantic"].add("Field")
        if inputs:
            imports["typing"].add("Sequence")
            imports[f"{rt}.crud"].add("build_insert_many")
            if pk is not None:
                imports[f"{rt}.crud"].add("build_update")
        for rel in variants:
            imports[f"{rt}.hydration"].add("decode_many" if rel.is_many else "decode_one")

        stdlib: Dict[str, Set[str]] = {
            k: v for k, v in imports.items() if k in ("datetime", "typing", "uuid")
        }
        third_party: Dict[str, Set[str]] = {"pydantic": imports.pop("pydantic")}
        runtime: Dict[str, Set[str]] = {
            k: v for k, v in imports.items() if k.startswith(f"{rt}.")
        }

        # --- File header ---
        self._header(lines, f"Data access for table: {table.name}")
        lines.append(build_import_block(stdlib))
        lines.append("")
        lines.append(build_import_block(third_party))
        lines.append("")
        lines.append(build_import_block(runtime))
        lines.append("")

        # --- Constants ---
        lines.extend(self._constants(table, inputs, pk))

        # --- Models ---
        lines.extend(self._record_class(table))
        lines.extend(self._create_class(table, inputs))
        lines.extend(self._update_class(table, inputs))
        if variants:
            for rel in variants:
                lines.extend(self._variant_class(table, [rel], variant_name(table, rel), tables))
            lines.extend(
                self._variant_class(table, variants, all_relations_name(table), tables)
            )

        # --- Query builder & CRUD ---
        lines.extend(self._query_class(table, variants))
        lines.extend(self._crud_functions(table, inputs, pk))

        # --- Related records ---
        related: Set[str] = {
            rel.references_table for rel in variants if rel.references_table != table.name
        }
        if related:
            lines.append("")
            lines.append("# Related tables; imported last because table modules import each other.")
            for module in sorted(related):
                lines.append(f"from . import {module} as {related_module_alias(module)}  # noqa: E402")

        content: str = "\n".join(lines).rstrip("\n") + "\n"
        logger.debug(
            "Generated module for '%s': %d lines.", table.name, content.count("\n")
        )
        return content

    # -- Constants ----------------------------------------------------------

    def _constants(
        self, table: TableSchema, inputs: List[FieldDef], pk: Optional[FieldDef]
    ) -> List[str]:
        t: str = table.name
        lines: List[str] = [
            "",
            f"TABLE_NAME: str = {py_string(t)}",
            f"SELECT_ALL_SQL: str = {py_string(table.select_all_sql)}",
            f"COLUMNS: tuple = {_tuple_literal(table.field_names)}",
            f"INPUT_COLUMNS: tuple = {_tuple_literal([f.name for f in inputs]) if inputs else '()'}",
        ]

        defaults: Dict[str, str] = {
            f.name: f.default
            for f in inputs
            if f.input_mode == "optional" and f.default is not None
        }
        lines.append(
            "INSERT_DEFAULTS: Dict[str, str] = {"
            + ", ".join(f"{py_string(k)}: {py_string(v)}" for k, v in defaults.items())
            + "}"
        )
        lines.append(f"INSERT_SQL: str = {py_string(self._insert_sql(table, inputs))}")

        if pk is not None:
            find: str = f"{table.select_all_sql} WHERE {pk.name} = $1"
            if table.has_soft_delete:
                lines.append(
                    f"FIND_BY_ID_SQL: str = {py_string(find + ' AND deleted_at IS NULL')}"
                )
                lines.append(f"FIND_BY_ID_WITH_DELETED_SQL: str = {py_string(find)}")
                lines.append(
                    "SOFT_DELETE_SQL: str = "
                    + py_string(f"UPDATE {t} SET deleted_at = CURRENT_TIMESTAMP WHERE {pk.name} = $1")
                )
            else:
                lines.append(f"FIND_BY_ID_SQL: str = {py_string(find)}")
            lines.append(f"DELETE_SQL: str = {py_string(f'DELETE FROM {t} WHERE {pk.name} = $1')}")

        upsert: Optional[str] = self._upsert_sql(table, inputs)
        if upsert is not None:
            lines.append(f"UPSERT_SQL: str = {py_string(upsert)}")

        lines.append(f"TRUNCATE_SQL: str = {py_string(f'TRUNCATE TABLE {t} RESTART IDENTITY CASCADE')}")
        lines.append(
            "TABLE_EXISTS_SQL: str = "
            + py_string(
                "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
                "WHERE table_name = $1) AS found"
            )
        )
        lines.append("")
        lines.append("")
        return lines

    @staticmethod
    def _values_clause(inputs: List[FieldDef]) -> str:
        cells: List[str] = []
        for n, f in enumerate(inputs, start=1):
            if f.input_mode == "optional" and f.default is not None:
                cells.append(f"COALESCE(${n}, {f.default})")
            else:
                cells.append(f"${n}")
        return ", ".join(cells)

    def _insert_sql(self, table: TableSchema, inputs: List[FieldDef]) -> str:
        if not inputs:
            return f"INSERT INTO {table.name} DEFAULT VALUES RETURNING *"
        columns: str = ", ".join(f.name for f in inputs)
        return (
            f"INSERT INTO {table.name} ({columns}) "
            f"VALUES ({self._values_clause(inputs)}) RETURNING *"
        )

    def conflict_column(self, table: TableSchema) -> Optional[str]:
        """First unique input column (field flag or single-column unique index)."""
        input_names: List[str] = [f.name for f in table.input_fields]
        for f in table.unique_input_fields:
            return f.name
        for idx in table.indexes:
            if idx.unique and len(idx.columns) == 1 and idx.columns[0] in input_names:
                return idx.columns[0]
        return None

    def _upsert_sql(self, table: TableSchema, inputs: List[FieldDef]) -> Optional[str]:
        conflict: Optional[str] = self.conflict_column(table)
        if conflict is None:
            return None
        updated: List[str] = [f.name for f in inputs if f.name != conflict] or [conflict]
        assignments: str = ", ".join(f"{c} = EXCLUDED.{c}" for c in updated)
        return (
            f"{self._insert_sql(table, inputs)[: -len(' RETURNING *')]} "
            f"ON CONFLICT ({conflict}) DO UPDATE SET {assignments} RETURNING *"
        )

    # -- Models -------------------------------------------------------------

    @staticmethod
    def _record_field(f: FieldDef) -> str:
        annotation: str = f.python_annotation
        if f.redacted:
            default: str = "Field(default=None, repr=False)" if f.nullable else "Field(repr=False)"
        elif f.nullable:
            default = "None"
        else:
            return f"{f.name}: {annotation}"
        return f"{f.name}: {annotation} = {default}"

    def _record_class(self, table: TableSchema) -> List[str]:
        i1, i2 = self._i(1), self._i(2)
        record: str = table.record_name
        lines: List[str] = [f"class {record}(BaseModel):"]
        self._docstring(lines, f"Record of table '{table.name}'.")
        lines.append("")
        lines.append(f"{i1}model_config = ConfigDict(from_attributes=True)")
        lines.append("")
        lines.append(f"{i1}table_name: ClassVar[str] = TABLE_NAME")
        lines.append(f"{i1}select_all_sql: ClassVar[str] = SELECT_ALL_SQL")
        lines.append("")
        for f in table.fields:
            lines.append(f"{i1}{self._record_field(f)}")
        lines.append("")
        lines.append(f"{i1}@classmethod")
        lines.append(f"{i1}def from_row(cls, row: Dict[str, Any]) -> {record}:")
        self._docstring(lines, "Build a record from a result row, ignoring extra columns.", 2)
        lines.append(f"{i2}return cls.model_validate(base_values(cls, row))")
        lines.append("")
        lines.append("")
        return lines

    def _input_annotation(self, f: FieldDef) -> str:
        if f.input_mode == "optional" or f.nullable:
            return f"{f.name}: {_optional(f.python_annotation)} = None"
        return f"{f.name}: {f.python_annotation}"

    def _create_class(self, table: TableSchema, inputs: List[FieldDef]) -> List[str]:
        i1: str = self._i(1)
        lines: List[str] = [f"class {table.record_name}Create(BaseModel):"]
        self._docstring(lines, f"Insert input for table '{table.name}'.")
        lines.append("")
        lines.append(f'{i1}model_config = ConfigDict(extra="forbid")')
        if inputs:
            lines.append("")
            for f in inputs:
                lines.append(f"{i1}{self._input_annotation(f)}")
        lines.append("")
        lines.append("")
        return lines

    def _update_class(self, table: TableSchema, inputs: List[FieldDef]) -> List[str]:
        i1: str = self._i(1)
        lines: List[str] = [f"class {table.record_name}Update(BaseModel):"]
        self._docstring(lines, f"Partial update input for table '{table.name}'; only set fields are written.")
        lines.append("")
        lines.append(f'{i1}model_config = ConfigDict(extra="forbid")')
        if inputs:
            lines.append("")
            for f in inputs:
                lines.append(f"{i1}{f.name}: {_optional(f.python_type)} = None")
        lines.append("")
        lines.append("")
        return lines

    def _variant_class(
        self,
        table: TableSchema,
        relationships: List[RelationshipDef],
        name: str,
        tables: Mapping[str, TableSchema],
    ) -> List[str]:
        i1, i2 = self._i(1), self._i(2)
        record: str = table.record_name
        single: bool = len(relationships) == 1
        lines: List[str] = [f"class {name}({record}):"]
        if single:
            self._docstring(
                lines, f"'{table.name}' record with the '{relationships[0].field_name}' relation loaded."
            )
        else:
            self._docstring(lines, f"'{table.name}' record with every relation loaded.")
        lines.append("")

        annotations: Dict[str, str] = {}
        for rel in relationships:
            target: str = related_record_ref(table, rel.references_table, tables)
            annotation: str = f"Optional[List[{target}]]" if rel.is_many else f"Optional[{target}]"
            annotations[rel.field_name] = annotation
            lines.append(f"{i1}{rel.field_name}: {annotation} = None")
        lines.append("")

        # from_base
        lines.append(f"{i1}@classmethod")
        if single:
            member: str = relationships[0].field_name
            lines.append(
                f"{i1}def from_base(cls, base: {record}, {member}: {annotations[member]} = None) -> {name}:"
            )
            lines.append(f"{i2}return cls(**base.model_dump(), {member}={member})")
        else:
            lines.append(f"{i1}def from_base(cls, base: {record}, **relations: Any) -> {name}:")
            lines.append(f"{i2}return cls(**base.model_dump(), **relations)")
        lines.append("")

        # to_base
        lines.append(f"{i1}def to_base(self) -> {record}:")
        lines.append(
            f"{i2}return {record}.model_validate(self.model_dump(include=set({record}.model_fields)))"
        )
        lines.append("")

        # from_row
        lines.append(f"{i1}@classmethod")
        lines.append(f"{i1}def from_row(cls, row: Dict[str, Any]) -> {name}:")
        self._docstring(
            lines, "Decode base columns and the jsonb relation columns; bad relation data becomes None.", 2
        )
        lines.append(f"{i2}values: Dict[str, Any] = base_values({record}, row)")
        for rel in relationships:
            target = related_record_ref(table, rel.references_table, tables)
            decoder: str = "decode_many" if rel.is_many else "decode_one"
            lines.append(
                f"{i2}values[{py_string(rel.field_name)}] = "
                f"{decoder}({target}, row.get({py_string(rel.field_name)}))"
            )
        lines.append(f"{i2}return cls.model_validate(values)")
        lines.append("")
        lines.append("")
        return lines

    def _query_class(self, table: TableSchema, variants: List[RelationshipDef]) -> List[str]:
        i1, i2 = self._i(1), self._i(2)
        record: str = table.record_name
        lines: List[str] = [f"class {record}Query(QueryBuilder):"]
        self._docstring(lines, f"Query builder bound to table '{table.name}'.")
        lines.append("")
        lines.append(f"{i1}table_name = TABLE_NAME")
        lines.append(f"{i1}columns = COLUMNS")
        lines.append(f"{i1}select_all_sql = SELECT_ALL_SQL")
        lines.append(f"{i1}soft_delete = {table.has_soft_delete}")
        lines.append(f"{i1}record_type = {record}")

        if table.relationships:
            lines.append(f"{i1}relations = {{")
            for rel in table.relationships:
                lines.append(
                    f"{i2}{py_string(rel.field_name)}: Relation("
                    f"{py_string(rel.field_name)}, {py_string(rel.references_table)}, "
                    f"{py_string(rel.column)}, {py_string(rel.foreign_column(table.name))}, "
                    f"many={rel.is_many}),"
                )
            lines.append(f"{i1}}}")
        else:
            lines.append(f"{i1}relations = {{}}")

        if variants:
            lines.append(f"{i1}relation_variants = {{")
            for rel in variants:
                lines.append(f"{i2}{py_string(rel.field_name)}: {variant_name(table, rel)},")
            lines.append(f"{i1}}}")
            lines.append(f"{i1}all_relations_variant = {all_relations_name(table)}")
        lines.append("")
        lines.append("")
        return lines

    # -- CRUD ---------------------------------------------------------------

    def _signature(self, name: str, inputs: List[FieldDef], returns: str) -> List[str]:
        i1: str = self._i(1)
        if not inputs:
            return [f"def {name}(db: Any) -> {returns}:"]
        lines: List[str] = [f"def {name}(", f"{i1}db: Any,", f"{i1}*,"]
        for f in inputs:
            lines.append(f"{i1}{self._input_annotation(f)},")
        lines.append(f") -> {returns}:")
        return lines

    def _crud_functions(
        self, table: TableSchema, inputs: List[FieldDef], pk: Optional[FieldDef]
    ) -> List[str]:
        i1: str = self._i(1)
        record: str = table.record_name
        params: str = ", ".join(f.name for f in inputs)
        lines: List[str] = []

        lines.append(f"def query() -> {record}Query:")
        self._docstring(lines, f"Start a query on table '{table.name}'.")
        lines.append(f"{i1}return {record}Query()")
        lines.append("")
        lines.append("")

        # insert
        lines.extend(self._signature("insert", inputs, record))
        self._docstring(lines, "Insert one row and return it, generated columns included.")
        lines.append(f"{i1}params: List[Any] = [{params}]")
        lines.append(
            f"{i1}row: Dict[str, Any] = require_row(db.query_one(INSERT_SQL, params), INSERT_SQL, len(params))"
        )
        lines.append(f"{i1}return {record}.from_row(row)")
        lines.append("")
        lines.append("")

        if inputs:
            lines.append(f"def insert_many(db: Any, rows: Sequence[Any]) -> List[{record}]:")
            self._docstring(lines, f"Insert several rows in one statement; rows are {record}Create or mappings.")
            lines.append(
                f"{i1}payload: List[Dict[str, Any]] = "
                f"[{record}Create.model_validate(r).model_dump() for r in rows]"
            )
            lines.append(
                f"{i1}sql, params = build_insert_many(TABLE_NAME, INPUT_COLUMNS, payload, INSERT_DEFAULTS)"
            )
            lines.append(f"{i1}return [{record}.from_row(row) for row in db.query(sql, params)]")
            lines.append("")
            lines.append("")

        if pk is not None:
            key: str = pk.name
            key_type: str = pk.python_type
            if table.has_soft_delete:
                lines.append(
                    f"def find_by_id(db: Any, {key}: {key_type}, include_deleted: bool = False) -> Optional[{record}]:"
                )
                self._docstring(lines, "Fetch one row by primary key; soft-deleted rows only on request.")
                lines.append(f"{i1}sql: str = FIND_BY_ID_WITH_DELETED_SQL if include_deleted else FIND_BY_ID_SQL")
                lines.append(f"{i1}row: Optional[Dict[str, Any]] = db.query_one(sql, [{key}])")
            else:
                lines.append(f"def find_by_id(db: Any, {key}: {key_type}) -> Optional[{record}]:")
                self._docstring(lines, "Fetch one row by primary key.")
                lines.append(f"{i1}row: Optional[Dict[str, Any]] = db.query_one(FIND_BY_ID_SQL, [{key}])")
            lines.append(f"{i1}return {record}.from_row(row) if row is not None else None")
            lines.append("")
            lines.append("")

        if table.has_soft_delete:
            lines.append(f"def find_all(db: Any, include_deleted: bool = False) -> List[{record}]:")
            lines.append(f"{i1}return (query().with_deleted() if include_deleted else query()).fetch(db)")
        else:
            lines.append(f"def find_all(db: Any) -> List[{record}]:")
            lines.append(f"{i1}return query().fetch(db)")
        lines.append("")
        lines.append("")

        if pk is not None and inputs:
            key = pk.name
            lines.append(
                f"def update(db: Any, {key}: {pk.python_type}, **changes: Any) -> Optional[{record}]:"
            )
            self._docstring(lines, "Write only the supplied columns; None when no row matched.")
            lines.append(
                f"{i1}values: Dict[str, Any] = "
                f"{record}Update.model_validate(changes).model_dump(exclude_unset=True)"
            )
            lines.append(
                f"{i1}sql, params = build_update(TABLE_NAME, {py_string(key)}, {key}, values, INPUT_COLUMNS)"
            )
            lines.append(f"{i1}row: Optional[Dict[str, Any]] = db.query_one(sql, params)")
            lines.append(f"{i1}return {record}.from_row(row) if row is not None else None")
            lines.append("")
            lines.append("")

        if pk is not None:
            key = pk.name
            lines.append(f"def delete(db: Any, {key}: {pk.python_type}) -> int:")
            lines.append(f"{i1}return db.execute(DELETE_SQL, [{key}])")
            lines.append("")
            lines.append("")
            if table.has_soft_delete:
                lines.append(f"def soft_delete(db: Any, {key}: {pk.python_type}) -> int:")
                self._docstring(lines, "Mark a row deleted by stamping deleted_at.")
                lines.append(f"{i1}return db.execute(SOFT_DELETE_SQL, [{key}])")
                lines.append("")
                lines.append("")

        if self.conflict_column(table) is not None:
            lines.extend(self._signature("upsert", inputs, record))
            self._docstring(
                lines, f"Insert, or update the row with the same '{self.conflict_column(table)}'."
            )
            lines.append(f"{i1}params: List[Any] = [{params}]")
            lines.append(
                f"{i1}row: Dict[str, Any] = require_row(db.query_one(UPSERT_SQL, params), UPSERT_SQL, len(params))"
            )
            lines.append(f"{i1}return {record}.from_row(row)")
            lines.append("")
            lines.append("")

        if table.has_soft_delete:
            lines.append("def count(db: Any, include_deleted: bool = False) -> int:")
            lines.append(f"{i1}return (query().with_deleted() if include_deleted else query()).count(db)")
        else:
            lines.append("def count(db: Any) -> int:")
            lines.append(f"{i1}return query().count(db)")
        lines.append("")
        lines.append("")
        lines.append("def truncate(db: Any) -> None:")
        lines.append(f"{i1}db.execute(TRUNCATE_SQL)")
        lines.append("")
        lines.append("")
        lines.append("def table_exists(db: Any) -> bool:")
        lines.append(f"{i1}row: Optional[Dict[str, Any]] = db.query_one(TABLE_EXISTS_SQL, [TABLE_NAME])")
        lines.append(f"{i1}return bool(row[\"found\"]) if row is not None else False")
        return lines

    # ===================================================================
    # 2. Registry & package init
    # ===================================================================

    def generate_registry(self, tables: Sequence[TableSchema]) -> str:
        """Cross-table registry listing every generated table in discovery order."""
        i1, i2, i3 = self._i(1), self._i(2), self._i(3)
        lines: List[str] = []
        self._header(lines, "Registry of generated tables.")
        lines.append("from typing import Dict, List, Type")
        lines.append("")
        lines.append("from pydantic import BaseModel")
        lines.append("")
        lines.append(f"from {self._runtime}.query import QueryBuilder")
        if tables:
            lines.append("")
            lines.append(f"from . import {', '.join(sorted(t.name for t in tables))}")
        lines.append("")

        lines.append("TABLES: List[str] = [")
        for t in tables:
            lines.append(f"{i1}{py_string(t.name)},")
        lines.append("]")
        lines.append("")
        lines.append("MODELS: Dict[str, Type[BaseModel]] = {")
        for t in tables:
            lines.append(f"{i1}{py_string(t.name)}: {t.name}.{t.record_name},")
        lines.append("}")
        lines.append("")
        lines.append("QUERIES: Dict[str, Type[QueryBuilder]] = {")
        for t in tables:
            lines.append(f"{i1}{py_string(t.name)}: {t.name}.{t.record_name}Query,")
        lines.append("}")
        lines.append("")
        lines.append("VARIANTS: Dict[str, List[Type[BaseModel]]] = {")
        if self._config.generate_relations:
            for t in tables:
                if not t.relationships:
                    continue
                names: List[str] = [variant_name(t, rel) for rel in t.relationships]
                names.append(all_relations_name(t))
                lines.append(
                    f"{i1}{py_string(t.name)}: [{', '.join(f'{t.name}.{n}' for n in names)}],"
                )
        lines.append("}")
        lines.append("")
        lines.append("")
        lines.append("def get_model(table_name: str) -> Type[BaseModel]:")
        self._docstring(lines, "Record class of a generated table.")
        lines.append(f"{i1}try:")
        lines.append(f"{i2}return MODELS[table_name]")
        lines.append(f"{i1}except KeyError:")
        lines.append(f'{i2}raise KeyError(f"Unknown table: {{table_name!r}}") from None')
        lines.append("")
        lines.append("")
        lines.append("def rebuild_models() -> None:")
        self._docstring(lines, "Resolve the cross-module references of every relation variant.")
        lines.append(f"{i1}for variants in VARIANTS.values():")
        lines.append(f"{i2}for variant in variants:")
        lines.append(f"{i3}variant.model_rebuild()")
        return "\n".join(lines) + "\n"

    def generate_init(self, tables: Sequence[TableSchema]) -> str:
        lines: List[str] = ['"""', "Generated data-access package.", GENERATED_NOTE, '"""', ""]
        if self._config.generate_registry:
            lines.append("from .registry import MODELS, QUERIES, TABLES, get_model, rebuild_models")
            lines.append("")
            lines.append("rebuild_models()")
            lines.append("")
            lines.append('__all__ = ["MODELS", "QUERIES", "TABLES", "get_model", "rebuild_models"]')
        elif tables:
            lines.append(f"from . import {', '.join(sorted(t.name for t in tables))}  # noqa: F401")
        return "\n".join(lines).rstrip("\n") + "\n"

    # ===================================================================
    # 3. Aggregate generation
    # ===================================================================

    def generate_all(
        self,
        schemas: Sequence[TableSchema],
        tables: Optional[Mapping[str, TableSchema]] = None,
    ) -> Dict[str, str]:
        """
        Generate every file of the package.

        Returns an ordered dict of relative_path → file_content: table
        modules in discovery order, then the registry and ``__init__.py``.
        """
        known: Mapping[str, TableSchema] = tables if tables is not None else {s.name: s for s in schemas}
        result: Dict[str, str] = {}
        for schema in schemas:
            result[f"{schema.name}.py"] = self.generate_table_module(schema, known)
        if self._config.generate_registry:
            result["registry.py"] = self.generate_registry(schemas)
        result["__init__.py"] = self.generate_init(schemas)
        logger.info(
            "Generated %d file(s) for %d table(s).", len(result), len(schemas)
        )
        return result


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "TemplateGenerator",
    "GENERATED_NOTE",
    "variant_name",
    "all_relations_name",
    "related_module_alias",
    "related_record_ref",
]

logger.debug("fluentorm.templates loaded — %d public symbols.", len(__all__))
