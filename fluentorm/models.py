# File: fluentorm/models.py
"""
FluentORM - Schema Model
========================
Pydantic V2 models describing table schemas and generation configuration.
They are the single source of truth for the whole pipeline:
Fragment Loading → Merging → Validation → Code Generation → Export.

A ``SchemaFragment`` is one input unit as written on disk.  Several fragments
may target the same table; the registry folds them into exactly one
``TableSchema`` per table name.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from fluentorm.utils import (
    count_lines,
    relationship_field_name,
    sha256_hex,
    singularize,
    to_pascal_case,
)

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.models")

# ---------------------------------------------------------------------------
# Enums: fixed sets used across the entire project
# ---------------------------------------------------------------------------

OPTIONAL_SUFFIX: str = "_optional"


class FieldType(str, Enum):
    """Column types, each with an ``_optional`` (nullable) variant."""

    UUID = "uuid"
    UUID_OPTIONAL = "uuid_optional"
    TEXT = "text"
    TEXT_OPTIONAL = "text_optional"
    BOOLEAN = "boolean"
    BOOLEAN_OPTIONAL = "boolean_optional"

    # Numeric
    I16 = "i16"
    I16_OPTIONAL = "i16_optional"
    I32 = "i32"
    I32_OPTIONAL = "i32_optional"
    I64 = "i64"
    I64_OPTIONAL = "i64_optional"
    F32 = "f32"
    F32_OPTIONAL = "f32_optional"
    F64 = "f64"
    F64_OPTIONAL = "f64_optional"

    # Date / Time
    TIMESTAMP = "timestamp"
    TIMESTAMP_OPTIONAL = "timestamp_optional"
    TIMESTAMPTZ = "timestamptz"
    TIMESTAMPTZ_OPTIONAL = "timestamptz_optional"

    # Special
    JSON = "json"
    JSON_OPTIONAL = "json_optional"


class InputMode(str, Enum):
    """How a field participates in generated insert/update inputs."""

    REQUIRED = "required"
    OPTIONAL = "optional"
    AUTO_GENERATED = "auto_generated"


class RelationshipType(str, Enum):
    """Relationship cardinalities."""

    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    MANY_TO_MANY = "many_to_many"


class OnDeleteAction(str, Enum):
    """Foreign-key ON DELETE behaviour."""

    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


class OnUpdateAction(str, Enum):
    """Foreign-key ON UPDATE behaviour."""

    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


# base type (without suffix) → Python annotation used in generated code
PYTHON_TYPE_MAP: Dict[str, str] = {
    "uuid": "UUID",
    "text": "str",
    "boolean": "bool",
    "i16": "int",
    "i32": "int",
    "i64": "int",
    "f32": "float",
    "f64": "float",
    "timestamp": "datetime",
    "timestamptz": "datetime",
    "json": "Any",
}

# base type → (module, name) that generated code must import for it
PYTHON_TYPE_IMPORTS: Dict[str, tuple] = {
    "uuid": ("uuid", "UUID"),
    "timestamp": ("datetime", "datetime"),
    "timestamptz": ("datetime", "datetime"),
    "json": ("typing", "Any"),
}

SOFT_DELETE_COLUMN: str = "deleted_at"

# ---------------------------------------------------------------------------
# Mixin: shared model configuration
# ---------------------------------------------------------------------------

_SHARED_CONFIG: ConfigDict = ConfigDict(
    strict=False,
    populate_by_name=True,
    validate_assignment=True,
    validate_default=True,
    use_enum_values=True,
    frozen=False,
    extra="forbid",
)


def split_field_type(raw: str) -> tuple:
    """``"text_optional"`` → ``("text", True)``; ``"i32"`` → ``("i32", False)``."""
    if raw.endswith(OPTIONAL_SUFFIX):
        return raw[: -len(OPTIONAL_SUFFIX)], True
    return raw, False


# ---------------------------------------------------------------------------
# Field
# ---------------------------------------------------------------------------


class FieldDef(BaseModel):
    """
    One column of a table.

    The stored ``type`` always carries the ``_optional`` suffix iff the
    field is nullable.  An explicit ``nullable`` flag that contradicts the
    suffix is rejected; a missing flag is derived from the suffix.  When no
    ``input_mode`` is given, primary keys and fields with a default are
    ``auto_generated`` and everything else is ``required``.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1, description="Column name.")
    type: FieldType = Field(..., description="Column type (canonical form).")
    nullable: bool = Field(default=False, description="Whether the column allows NULL.")
    primary_key: bool = Field(default=False, description="Part of the primary key?")
    unique: bool = Field(default=False, description="Has a UNIQUE constraint?")
    default: Optional[str] = Field(
        default=None, description="SQL default expression, e.g. 'now()'."
    )
    input_mode: InputMode = Field(
        default=InputMode.REQUIRED, description="Insert/update input classification."
    )
    redacted: bool = Field(
        default=False, description="Hide the value from the generated record's repr."
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_nullability(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_type: Any = data.get("type")
        if isinstance(raw_type, Enum):
            raw_type = raw_type.value
        if isinstance(raw_type, str):
            base, optional_variant = split_field_type(raw_type)
            explicit: Optional[bool] = data.get("nullable")
            if explicit is not None and bool(explicit) != optional_variant:
                raise ValueError(
                    f"Field '{data.get('name')}' declares nullable={explicit} "
                    f"but its type '{raw_type}' is "
                    f"{'nullable' if optional_variant else 'non-nullable'}."
                )
            data["nullable"] = optional_variant
            data["type"] = f"{base}{OPTIONAL_SUFFIX}" if optional_variant else base
        if data.get("input_mode") is None:
            auto: bool = bool(data.get("primary_key")) or data.get("default") is not None
            data["input_mode"] = (
                InputMode.AUTO_GENERATED.value if auto else InputMode.REQUIRED.value
            )
        return data

    # -- Derived helpers ----------------------------------------------------

    @property
    def base_type(self) -> str:
        return split_field_type(str(self.type))[0]

    @property
    def python_type(self) -> str:
        """Annotation of the member without the Optional wrapper."""
        return PYTHON_TYPE_MAP[self.base_type]

    @property
    def python_annotation(self) -> str:
        if self.nullable and self.python_type != "Any":
            return f"Optional[{self.python_type}]"
        return self.python_type

    @property
    def is_input(self) -> bool:
        """True for fields exposed on insert/update input surfaces."""
        return self.input_mode != InputMode.AUTO_GENERATED

    def __repr__(self) -> str:
        pk_flag: str = " PK" if self.primary_key else ""
        return f"<Field {self.name} {self.type} {self.input_mode}{pk_flag}>"


# ---------------------------------------------------------------------------
# Index & relationships
# ---------------------------------------------------------------------------


class IndexDef(BaseModel):
    """Composite or single-column index."""

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1, description="Index name.")
    columns: List[str] = Field(
        ..., min_length=1, description="Ordered list of column names."
    )
    unique: bool = Field(default=False, description="UNIQUE index?")

    @field_validator("columns")
    @classmethod
    def _no_duplicate_columns(cls, v: List[str]) -> List[str]:
        if len(v) != len(set(v)):
            raise ValueError(f"Duplicate columns in index: {v}")
        return v


class ReferenceDef(BaseModel):
    """Target side of a relationship."""

    model_config = _SHARED_CONFIG

    table: str = Field(..., min_length=1, description="Referenced table.")
    column: str = Field(default="id", min_length=1, description="Referenced column.")


class RelationshipDef(BaseModel):
    """
    A relationship from the owning table to ``references.table``.

    ``column == "id"`` marks a reverse relationship: the referenced table
    holds the foreign key (``references.column``) pointing back at this one.
    """

    model_config = _SHARED_CONFIG

    name: Optional[str] = Field(default=None, description="Constraint name (optional).")
    column: str = Field(..., min_length=1, description="Local column.")
    references: ReferenceDef = Field(..., description="Referenced table/column.")
    relationship_type: RelationshipType = Field(
        default=RelationshipType.MANY_TO_ONE, alias="type", description="Cardinality."
    )
    on_delete: OnDeleteAction = Field(
        default=OnDeleteAction.NO_ACTION, description="ON DELETE referential action."
    )
    on_update: OnUpdateAction = Field(
        default=OnUpdateAction.NO_ACTION, description="ON UPDATE referential action."
    )

    @property
    def references_table(self) -> str:
        return self.references.table

    @property
    def is_reverse(self) -> bool:
        return self.column == "id"

    @property
    def is_many(self) -> bool:
        return self.relationship_type in (
            RelationshipType.ONE_TO_MANY,
            RelationshipType.MANY_TO_MANY,
        )

    @property
    def field_name(self) -> str:
        """Member name of the embedded relation in relation variants."""
        return relationship_field_name(
            self.column, self.references.table, str(self.relationship_type)
        )

    def foreign_column(self, owner_table: str) -> str:
        """
        Column on the referenced table that joins against ``self.column``.

        A reverse relationship left at the default ``id`` target is assumed
        to use the conventional ``<singular owner>_id`` key.
        """
        if self.is_reverse and self.references.column == "id":
            return f"{singularize(owner_table)}_id"
        return self.references.column

    def __repr__(self) -> str:
        return (
            f"<Relationship {self.column} ({self.relationship_type}) → "
            f"{self.references.table}.{self.references.column}>"
        )


# ---------------------------------------------------------------------------
# Fragments & canonical table
# ---------------------------------------------------------------------------


class SchemaFragment(BaseModel):
    """One schema input unit, usually one file."""

    model_config = _SHARED_CONFIG

    table_name: str = Field(..., min_length=1, description="Target table.")
    struct_name: Optional[str] = Field(
        default=None, description="Record type name override."
    )
    fields: List[FieldDef] = Field(default_factory=list, description="Base fields.")
    alters: List[FieldDef] = Field(
        default_factory=list, description="Overrides of earlier fields, by name."
    )
    indexes: List[IndexDef] = Field(default_factory=list, description="Indexes.")
    relationships: List[RelationshipDef] = Field(
        default_factory=list, description="Relationships."
    )
    source: Optional[str] = Field(
        default=None, exclude=True, description="File the fragment was read from."
    )

    def __repr__(self) -> str:
        origin: str = self.source or "<memory>"
        return (
            f"<SchemaFragment {self.table_name} from {origin} "
            f"({len(self.fields)} fields, {len(self.alters)} alters)>"
        )


class TableSchema(BaseModel):
    """
    Canonical, merged representation of one table.

    This is the central model consumed by the validators and the template
    engine.  Alters are already folded into ``fields``; they are kept only
    for reporting.
    """

    model_config = _SHARED_CONFIG

    name: str = Field(..., min_length=1, description="Table name.")
    struct_name: Optional[str] = Field(
        default=None, description="Record type name override."
    )
    fields: List[FieldDef] = Field(default_factory=list, description="Final fields.")
    relationships: List[RelationshipDef] = Field(
        default_factory=list, description="Relationships."
    )
    indexes: List[IndexDef] = Field(default_factory=list, description="Indexes.")
    alters: List[FieldDef] = Field(
        default_factory=list, description="Applied overrides."
    )

    # -- Fast O(1) lookup cache (populated once via model_validator) --------
    _field_map: Dict[str, FieldDef] = {}

    @model_validator(mode="after")
    def _build_field_map(self) -> "TableSchema":
        object.__setattr__(self, "_field_map", {f.name: f for f in self.fields})
        return self

    def get_field(self, name: str) -> Optional[FieldDef]:
        return self._field_map.get(name)

    def has_field(self, name: str) -> bool:
        return name in self._field_map

    # -- Computed helpers ---------------------------------------------------

    @computed_field  # type: ignore[misc]
    @property
    def record_name(self) -> str:
        """Record class name: ``struct_name`` or the singular PascalCase table."""
        return self.struct_name or to_pascal_case(self.name, singular=True)

    @computed_field  # type: ignore[misc]
    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @computed_field  # type: ignore[misc]
    @property
    def primary_key(self) -> Optional[str]:
        """The first primary-key field, else a field literally named ``id``."""
        for f in self.fields:
            if f.primary_key:
                return f.name
        return "id" if "id" in self._field_map else None

    @computed_field  # type: ignore[misc]
    @property
    def has_soft_delete(self) -> bool:
        return SOFT_DELETE_COLUMN in self._field_map

    @property
    def input_fields(self) -> List[FieldDef]:
        return [f for f in self.fields if f.is_input]

    @property
    def unique_input_fields(self) -> List[FieldDef]:
        return [f for f in self.fields if f.is_input and f.unique]

    @property
    def select_all_sql(self) -> str:
        return f"SELECT {self.name}.* FROM {self.name}"

    def python_imports(self) -> Dict[str, Set[str]]:
        """Imports required by the member annotations of this table."""
        imports: Dict[str, Set[str]] = {}
        for f in self.fields:
            entry = PYTHON_TYPE_IMPORTS.get(f.base_type)
            if entry is not None:
                imports.setdefault(entry[0], set()).add(entry[1])
            if f.nullable and f.python_type != "Any":
                imports.setdefault("typing", set()).add("Optional")
        return imports

    def __repr__(self) -> str:
        return (
            f"<TableSchema {self.name} "
            f"({len(self.fields)} fields, {len(self.indexes)} indexes, "
            f"{len(self.relationships)} rels)>"
        )


# ---------------------------------------------------------------------------
# Code Generation Configuration
# ---------------------------------------------------------------------------


class GenerationConfig(BaseModel):
    """
    Configuration that controls code generation and export.

    Sources in precedence order: CLI flags, an optional ``--config`` file,
    then these defaults.
    """

    model_config = _SHARED_CONFIG

    output_dir: str = Field(
        default="./generated", description="Directory of the generated package."
    )
    runtime_package: str = Field(
        default="fluentorm",
        min_length=1,
        description="Import root of the query runtime used by emitted code.",
    )
    indent_size: int = Field(
        default=4, ge=2, le=8, description="Indentation width."
    )
    generate_docstrings: bool = Field(
        default=True, description="Add docstrings to generated classes."
    )
    generate_relations: bool = Field(
        default=True, description="Emit relation-variant records."
    )
    generate_registry: bool = Field(
        default=True, description="Emit the cross-table registry module."
    )
    write_manifest: bool = Field(
        default=True, description="Write manifest.json next to the sources."
    )
    clean_output: bool = Field(
        default=False,
        description="Remove stale generated modules for tables no longer present.",
    )

    @field_validator("runtime_package")
    @classmethod
    def _dotted_identifier(cls, v: str) -> str:
        if not all(part.isidentifier() for part in v.split(".")):
            raise ValueError(f"runtime_package must be a dotted module path, got {v!r}")
        return v


# ---------------------------------------------------------------------------
# Generation output
# ---------------------------------------------------------------------------


class GeneratedFile(BaseModel):
    """Represents a single file produced by the code generator."""

    model_config = _SHARED_CONFIG

    path: str = Field(..., min_length=1, description="Relative file path.")
    content: str = Field(..., description="Full file content.")
    table_name: Optional[str] = Field(
        default=None, description="Table the file was generated for, if any."
    )
    line_count: int = Field(default=0, ge=0, description="Number of lines.")
    size_bytes: int = Field(default=0, ge=0, description="Content size in bytes.")
    checksum: Optional[str] = Field(
        default=None, description="SHA-256 hex digest of content."
    )

    @model_validator(mode="before")
    @classmethod
    def _compute_metrics(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("content"), str):
            data = dict(data)
            content: str = data["content"]
            data["line_count"] = count_lines(content)
            data["size_bytes"] = len(content.encode("utf-8"))
            data["checksum"] = sha256_hex(content)
        return data


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "OPTIONAL_SUFFIX",
    "SOFT_DELETE_COLUMN",
    "PYTHON_TYPE_MAP",
    "FieldType",
    "InputMode",
    "RelationshipType",
    "OnDeleteAction",
    "OnUpdateAction",
    "split_field_type",
    "FieldDef",
    "IndexDef",
    "ReferenceDef",
    "RelationshipDef",
    "SchemaFragment",
    "TableSchema",
    "GenerationConfig",
    "GeneratedFile",
]

logger.debug("fluentorm.models loaded — %d public symbols.", len(__all__))
