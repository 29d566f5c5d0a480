# File: fluentorm/__init__.py
"""
FluentORM — Typed Data-Access Code Generator and Query Runtime
==============================================================

Merges table schema fragments (JSON/YAML) into canonical table schemas,
validates them, and generates a Python package of pydantic records, CRUD
functions and table-bound query builders.  The generated code runs on the
runtime half of this package: a fluent ``QueryBuilder`` over PostgreSQL
(psycopg 3) with ``$n`` placeholders, eager relation loading and soft delete.

Architecture overview::

    ┌──────────────┐     ┌───────────────┐     ┌──────────────────┐
    │  CLI / Entry │────▶│   Generator   │────▶│ TemplateGenerator│
    │   (cli.py)   │     │ (generator.py)│     │  (templates.py)  │
    └──────────────┘     └───────┬───────┘     └──────────────────┘
                                 │
                    ┌────────────┼────────────┐
                    ▼            ▼            ▼
             ┌──────────┐ ┌───────────┐ ┌───────────┐
             │ registry │ │validators │ │ exporters │
             │  (.py)   │ │  (.py)    │ │  (.py)    │
             └──────────┘ └───────────┘ └───────────┘

    generated code ──▶ query.py / crud.py / hydration.py ──▶ executor.py ──▶ psycopg

Usage::

    # As a library
    from fluentorm import Generator, GenerationConfig
    report = Generator(GenerationConfig(output_dir="./app/db")).generate_from_directory("./schemas")

    # From the command line
    python -m fluentorm generate ./schemas ./app/db --verbose
"""

from __future__ import annotations

__version__: str = "0.1.0"

from fluentorm.errors import (
    AlreadyCommittedError,
    AlreadyRolledBackError,
    BuilderStateError,
    ErrorCode,
    OrmError,
    PgErrorInfo,
    QueryError,
    TransactionError,
)
from fluentorm.models import (
    FieldDef,
    FieldType,
    GeneratedFile,
    GenerationConfig,
    IndexDef,
    InputMode,
    RelationshipDef,
    RelationshipType,
    SchemaFragment,
    TableSchema,
)
from fluentorm.registry import DuplicateFieldError, FragmentError, SchemaRegistry
from fluentorm.validators import ValidationResult, validate_registry, validate_table
from fluentorm.query import (
    Aggregate,
    BuilderState,
    IncludeOptions,
    JoinType,
    Operator,
    QueryBuilder,
    Relation,
    SortDirection,
)
from fluentorm.executor import ConnectionExecutor, Executor, PoolExecutor
from fluentorm.transaction import Transaction
from fluentorm.templates import TemplateGenerator
from fluentorm.exporters import ExportManifest, ExportResult, PackageExporter
from fluentorm.generator import GenerationReport, Generator

# ---------------------------------------------------------------------------
# Public API surface
# ---------------------------------------------------------------------------

__all__: list[str] = [
    "__version__",
    # Pipeline
    "Generator",
    "GenerationReport",
    "GenerationConfig",
    "TemplateGenerator",
    "PackageExporter",
    "ExportManifest",
    "ExportResult",
    # Schema model
    "FieldDef",
    "FieldType",
    "GeneratedFile",
    "IndexDef",
    "InputMode",
    "RelationshipDef",
    "RelationshipType",
    "SchemaFragment",
    "TableSchema",
    # Registry & validation
    "SchemaRegistry",
    "DuplicateFieldError",
    "FragmentError",
    "ValidationResult",
    "validate_registry",
    "validate_table",
    # Runtime
    "QueryBuilder",
    "Relation",
    "IncludeOptions",
    "Operator",
    "JoinType",
    "Aggregate",
    "SortDirection",
    "BuilderState",
    "Executor",
    "PoolExecutor",
    "ConnectionExecutor",
    "Transaction",
    # Errors
    "ErrorCode",
    "PgErrorInfo",
    "OrmError",
    "QueryError",
    "BuilderStateError",
    "TransactionError",
    "AlreadyCommittedError",
    "AlreadyRolledBackError",
]
