# File: fluentorm/validators.py
"""
FluentORM - Schema Validators
=============================
Structural checks run on every canonical ``TableSchema`` after merging and
before any code is generated.

Each rule is a plain function returning a ``ValidationResult``; the rules
never raise for schema problems.  Validation is all-or-nothing per table:
one error rejects the whole table, and tables that reference a rejected
table are rejected in turn so that no generated module imports a module
that was never written.

Usage by downstream modules:
    from fluentorm.validators import validate_registry
    outcome = validate_registry(registry)
    for name in outcome.accepted:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Set

from fluentorm.models import InputMode, RelationshipType, TableSchema
from fluentorm.registry import DuplicateFieldError, FragmentError, SchemaRegistry
from fluentorm.utils import is_identifier, is_python_keyword, singularize

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.validators")

# ---------------------------------------------------------------------------
# Validation result container
# ---------------------------------------------------------------------------


class ValidationError:
    """Lightweight error descriptor (no Pydantic overhead)."""

    __slots__ = ("level", "code", "message", "context")

    def __init__(
        self,
        level: str,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.level: str = level  # "error" | "warning"
        self.code: str = code
        self.message: str = message
        self.context: Dict[str, Any] = context or {}

    @property
    def is_error(self) -> bool:
        return self.level == "error"

    @property
    def is_warning(self) -> bool:
        return self.level == "warning"

    def __repr__(self) -> str:
        return f"[{self.level.upper()}] {self.code}: {self.message}"

    def __str__(self) -> str:
        return self.__repr__()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class ValidationResult:
    """Accumulates ``ValidationError`` instances produced by the rules."""

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: List[ValidationError] = []

    # -- Mutation -----------------------------------------------------------

    def add_error(
        self,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._items.append(ValidationError("error", code, message, context))

    def add_warning(
        self,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._items.append(ValidationError("warning", code, message, context))

    def merge(self, other: "ValidationResult") -> None:
        self._items.extend(other._items)

    # -- Query --------------------------------------------------------------

    @property
    def errors(self) -> List[ValidationError]:
        return [e for e in self._items if e.is_error]

    @property
    def warnings(self) -> List[ValidationError]:
        return [e for e in self._items if e.is_warning]

    @property
    def codes(self) -> List[str]:
        return [e.code for e in self._items]

    @property
    def has_errors(self) -> bool:
        return any(e.is_error for e in self._items)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    def summary(self) -> str:
        return (
            f"Validation: {len(self.errors)} error(s), "
            f"{len(self.warnings)} warning(s)."
        )

    def __repr__(self) -> str:
        return f"<ValidationResult {self.summary()}>"

    def __bool__(self) -> bool:
        """Truthy when there are NO errors (i.e. valid)."""
        return self.is_valid

    def __len__(self) -> int:
        return len(self._items)

    def format_report(self) -> str:
        """Human-readable multi-line report."""
        lines: List[str] = [self.summary()]
        for item in self._items:
            prefix: str = "✗" if item.is_error else "⚠"
            lines.append(f"  {prefix} [{item.code}] {item.message}")
            for k, v in item.context.items():
                lines.append(f"       {k}: {v}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Reserved names
# ---------------------------------------------------------------------------

# Members every generated record/module already defines.
_RESERVED_MEMBER_NAMES: FrozenSet[str] = frozenset(
    {
        "db",
        "table_name",
        "select_all_sql",
        "from_row",
        "from_base",
        "to_base",
        "model_config",
        "model_fields",
    }
)


# Module names of the generated package other than the table modules, and
# names the registry module defines next to the imported table modules.
_RESERVED_MODULE_NAMES: FrozenSet[str] = frozenset(
    {
        "registry",
        "get_model",
        "rebuild_models",
        "BaseModel",
        "Dict",
        "List",
        "QueryBuilder",
        "Type",
        "MODELS",
        "QUERIES",
        "TABLES",
        "VARIANTS",
    }
)

# Names imported into every generated table module.
_RESERVED_RECORD_NAMES: FrozenSet[str] = frozenset(
    {
        "Any",
        "BaseModel",
        "ClassVar",
        "ConfigDict",
        "Dict",
        "Field",
        "List",
        "Optional",
        "QueryBuilder",
        "Relation",
        "Sequence",
        "UUID",
    }
)


def _ctx(table: TableSchema, **extra: Any) -> Dict[str, Any]:
    ctx: Dict[str, Any] = {"table": table.name}
    ctx.update(extra)
    return ctx


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------


def validate_identifiers(table: TableSchema, tables: Mapping[str, TableSchema]) -> ValidationResult:
    """Table, field and index names must be usable as SQL and Python identifiers."""
    result: ValidationResult = ValidationResult()

    if not table.fields:
        result.add_error(
            "EMPTY_TABLE",
            f"Table '{table.name}' declares no fields.",
            _ctx(table),
        )

    if not is_identifier(table.name) or is_python_keyword(table.name):
        result.add_error(
            "INVALID_IDENTIFIER",
            f"Table name '{table.name}' is not a valid identifier.",
            _ctx(table),
        )
    elif table.name in _RESERVED_MODULE_NAMES or table.name.startswith("_"):
        result.add_error(
            "INVALID_IDENTIFIER",
            f"Table name '{table.name}' would shadow a module of the generated package.",
            _ctx(table),
        )

    record: str = table.record_name
    if not is_identifier(record) or is_python_keyword(record) or record in _RESERVED_RECORD_NAMES:
        result.add_error(
            "INVALID_IDENTIFIER",
            f"Record name '{record}' for table '{table.name}' is not usable as a class name.",
            _ctx(table, record=record),
        )

    for f in table.fields:
        if not is_identifier(f.name):
            result.add_error(
                "INVALID_IDENTIFIER",
                f"Field '{f.name}' in table '{table.name}' is not a valid identifier.",
                _ctx(table, field=f.name),
            )
            continue
        if (
            is_python_keyword(f.name)
            or f.name in _RESERVED_MEMBER_NAMES
            or f.name.startswith("_")
            or f.name.startswith("model_")
        ):
            result.add_error(
                "RESERVED_FIELD_NAME",
                f"Field '{f.name}' in table '{table.name}' clashes with a reserved "
                f"name and cannot be emitted as a record member.",
                _ctx(table, field=f.name),
            )

    seen: Set[str] = set()
    for idx in table.indexes:
        if not is_identifier(idx.name):
            result.add_error(
                "INVALID_IDENTIFIER",
                f"Index '{idx.name}' on table '{table.name}' is not a valid identifier.",
                _ctx(table, index=idx.name),
            )
        if idx.name in seen:
            result.add_error(
                "DUPLICATE_INDEX_NAME",
                f"Index '{idx.name}' is defined more than once on table '{table.name}'.",
                _ctx(table, index=idx.name),
            )
        seen.add(idx.name)

    return result


def validate_fields(table: TableSchema, tables: Mapping[str, TableSchema]) -> ValidationResult:
    """
    Field-set checks:
    - no duplicate names in the final set;
    - every non-nullable field has a default or is required/auto-generated.
    """
    result: ValidationResult = ValidationResult()
    seen: Set[str] = set()

    for f in table.fields:
        if f.name in seen:
            result.add_error(
                "DUPLICATE_FIELD",
                f"Field '{f.name}' appears more than once in table '{table.name}'.",
                _ctx(table, field=f.name),
            )
        seen.add(f.name)

        if not f.nullable and f.default is None and f.input_mode == InputMode.OPTIONAL:
            result.add_error(
                "MISSING_DEFAULT_FOR_REQUIRED_FIELD",
                f"Field '{f.name}' in table '{table.name}' is non-nullable and optional "
                f"on insert but has no default.",
                _ctx(table, field=f.name),
            )

    if table.fields and table.primary_key is None:
        result.add_warning(
            "NO_PRIMARY_KEY",
            f"Table '{table.name}' has no primary key; id-based CRUD functions "
            f"will not be generated.",
            _ctx(table),
        )

    return result


def validate_indexes(table: TableSchema, tables: Mapping[str, TableSchema]) -> ValidationResult:
    """Every index column must exist in the final field set."""
    result: ValidationResult = ValidationResult()

    for idx in table.indexes:
        missing: List[str] = [c for c in idx.columns if not table.has_field(c)]
        if missing:
            result.add_error(
                "UNKNOWN_INDEX_COLUMN",
                f"Index '{idx.name}' on table '{table.name}' references "
                f"non-existent columns: {missing}",
                _ctx(table, index=idx.name, columns=missing),
            )

    return result


def _references(junction: TableSchema, target: str) -> bool:
    """True when *junction* holds a foreign key pointing at *target*."""
    if junction.has_field(f"{singularize(target)}_id"):
        return True
    return any(
        not rel.is_reverse and rel.references_table == target
        for rel in junction.relationships
    )


def _references_other(junction: TableSchema, owner: str) -> bool:
    """True when *junction* holds a foreign key to some table other than *owner*."""
    if any(
        not rel.is_reverse and rel.references_table != owner
        for rel in junction.relationships
    ):
        return True
    owner_key: str = f"{singularize(owner)}_id"
    return any(
        f.name.endswith("_id") and f.name != owner_key for f in junction.fields
    )


def validate_relationships(
    table: TableSchema, tables: Mapping[str, TableSchema]
) -> ValidationResult:
    """
    Relationship checks:
    - the referenced table is known to the registry;
    - the local column exists;
    - relation member names are identifiers and don't collide;
    - a many-to-many target is a junction table keyed on both sides.
    """
    result: ValidationResult = ValidationResult()
    member_names: Set[str] = set(table.field_names)

    for rel in table.relationships:
        target: str = rel.references_table
        ctx: Dict[str, Any] = _ctx(table, relationship=f"{rel.column} → {target}")

        if target not in tables:
            result.add_error(
                "UNKNOWN_REFERENCED_TABLE",
                f"Relationship '{rel.column}' on table '{table.name}' references "
                f"unknown table '{target}'.",
                ctx,
            )
            continue

        if not table.has_field(rel.column):
            result.add_error(
                "UNKNOWN_RELATIONSHIP_COLUMN",
                f"Relationship column '{rel.column}' does not exist in table "
                f"'{table.name}'.",
                ctx,
            )

        name: str = rel.field_name
        if not is_identifier(name) or is_python_keyword(name):
            result.add_error(
                "INVALID_IDENTIFIER",
                f"Relationship '{rel.column}' → '{target}' yields member name "
                f"'{name}', which is not a valid identifier.",
                ctx,
            )
        elif name in member_names:
            result.add_error(
                "DUPLICATE_FIELD",
                f"Relationship '{rel.column}' → '{target}' yields member name "
                f"'{name}', which is already used in table '{table.name}'.",
                ctx,
            )
        member_names.add(name)

        if rel.relationship_type == RelationshipType.MANY_TO_MANY:
            junction: Optional[TableSchema] = tables.get(target)
            if junction is None:
                continue
            if not (_references(junction, table.name) and _references_other(junction, table.name)):
                result.add_error(
                    "INVALID_JUNCTION_TABLE",
                    f"Table '{target}' is used as a many-to-many junction by "
                    f"'{table.name}' but does not hold foreign keys to both sides "
                    f"(expected '{singularize(table.name)}_id' and a key to another table).",
                    ctx,
                )

    return result


# ---------------------------------------------------------------------------
# Composite validation orchestrators
# ---------------------------------------------------------------------------

TableValidatorFn = Callable[[TableSchema, Mapping[str, TableSchema]], ValidationResult]

TABLE_VALIDATORS: List[TableValidatorFn] = [
    validate_identifiers,
    validate_fields,
    validate_indexes,
    validate_relationships,
]


def validate_table(table: TableSchema, tables: Mapping[str, TableSchema]) -> ValidationResult:
    """
    Run every table rule.  *tables* maps each known table name to its merged
    schema; names whose merge failed may map to ``None``.
    """
    result: ValidationResult = ValidationResult()
    for validator_fn in TABLE_VALIDATORS:
        result.merge(validator_fn(table, tables))
    logger.debug("Validated table '%s': %s", table.name, result.summary())
    return result


@dataclass(frozen=False, slots=True)
class RegistryValidation:
    """Outcome of validating every table of a registry."""

    schemas: Dict[str, TableSchema] = field(default_factory=dict)
    results: Dict[str, ValidationResult] = field(default_factory=dict)
    accepted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.rejected

    def accepted_schemas(self) -> List[TableSchema]:
        return [self.schemas[name] for name in self.accepted]


def validate_registry(registry: SchemaRegistry) -> RegistryValidation:
    """
    **Master validation entry point.**

    Merges every table, runs the table rules against the full set of known
    names, then rejects tables whose relationships point at a rejected
    table until no more tables change state.  Table order follows the
    registry.
    """
    outcome: RegistryValidation = RegistryValidation()
    known: Dict[str, Optional[TableSchema]] = {name: None for name in registry.table_names}

    for entry in registry.entries:
        result: ValidationResult = ValidationResult()
        outcome.results[entry.table_name] = result
        try:
            schema: TableSchema = registry.merge_table(entry)
        except DuplicateFieldError as exc:
            result.add_error(
                "DUPLICATE_FIELD",
                str(exc),
                {"table": exc.table_name, "field": exc.field_name, "sources": exc.sources},
            )
            continue
        except FragmentError as exc:
            result.add_error(
                "MALFORMED_FRAGMENT",
                exc.message,
                {"table": entry.table_name, "source": exc.source},
            )
            continue
        outcome.schemas[entry.table_name] = schema
        known[entry.table_name] = schema

    record_owners: Dict[str, str] = {}
    for name, schema in outcome.schemas.items():
        outcome.results[name].merge(validate_table(schema, known))
        owner: Optional[str] = record_owners.setdefault(schema.record_name, name)
        if owner != name:
            outcome.results[name].add_error(
                "DUPLICATE_RECORD_NAME",
                f"Table '{name}' would generate record '{schema.record_name}', "
                f"already generated for table '{owner}'. Set 'struct_name' to disambiguate.",
                {"table": name, "record": schema.record_name},
            )

    rejected: Set[str] = {
        name for name, result in outcome.results.items() if result.has_errors
    }
    changed: bool = True
    while changed:
        changed = False
        for name, schema in outcome.schemas.items():
            if name in rejected:
                continue
            for rel in schema.relationships:
                if rel.references_table in rejected:
                    outcome.results[name].add_error(
                        "REFERENCED_TABLE_REJECTED",
                        f"Table '{name}' references table '{rel.references_table}', "
                        f"which was rejected.",
                        {"table": name, "relationship": f"{rel.column} → {rel.references_table}"},
                    )
                    rejected.add(name)
                    changed = True
                    break

    for name in registry.table_names:
        if name in rejected:
            outcome.rejected.append(name)
            logger.warning(
                "Table '%s' rejected: %s",
                name,
                "; ".join(e.code for e in outcome.results[name].errors),
            )
        else:
            outcome.accepted.append(name)

    logger.info(
        "Validation complete: %d accepted, %d rejected.",
        len(outcome.accepted),
        len(outcome.rejected),
    )
    return outcome


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "ValidationError",
    "ValidationResult",
    "validate_identifiers",
    "validate_fields",
    "validate_indexes",
    "validate_relationships",
    "TABLE_VALIDATORS",
    "validate_table",
    "RegistryValidation",
    "validate_registry",
]

logger.debug("fluentorm.validators loaded — %d public symbols.", len(__all__))
