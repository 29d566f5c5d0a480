"""
tests/conftest.py
Shared fixtures for the fluentorm test suite.

No external mocking libraries are used: real file I/O happens inside
pytest's tmp_path directories, and a recording ``Executor`` subclass stands
in for the database so emitted SQL and parameters can be asserted on.
``CatalogExecutor`` answers the introspection queries from canned catalog
rows.
"""

from __future__ import annotations

import importlib
import itertools
import json
import pathlib
import shutil
import sys
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pytest
import yaml

from fluentorm.executor import Executor, Row
from fluentorm.generator import Generator
from fluentorm.introspection import (
    COLUMNS_SQL,
    FOREIGN_KEYS_SQL,
    INDEXES_SQL,
    PRIMARY_KEY_SQL,
    SCHEMA_EXISTS_SQL,
    TABLES_SQL,
    UNIQUE_CONSTRAINTS_SQL,
)
from fluentorm.models import GenerationConfig


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

ROOT_DIR: pathlib.Path = pathlib.Path(__file__).resolve().parent.parent
SCHEMA_EXAMPLE_DIR: pathlib.Path = ROOT_DIR / "schema_example"

_package_counter = itertools.count(1)

# A table the validator rejects: its index names a column it does not have.
TAGS_WITH_BAD_INDEX: Dict[str, Any] = {
    "table_name": "tags",
    "fields": [
        {"name": "id", "type": "uuid", "primary_key": True, "default": "gen_random_uuid()"},
        {"name": "label", "type": "text"},
    ],
    "indexes": [{"name": "tags_colour_idx", "columns": ["colour"]}],
}


def write_fragments(directory: pathlib.Path, fragments: Dict[str, Any]) -> pathlib.Path:
    """
    Write ``{file_name: mapping}`` into *directory*; ``.json`` names are
    dumped as JSON, everything else as YAML.  Strings are written verbatim.
    """
    directory.mkdir(parents=True, exist_ok=True)
    for name, data in fragments.items():
        path = directory / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        elif name.endswith(".json"):
            path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return directory


# ---------------------------------------------------------------------------
# Schema fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def example_schemas_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """Copy of the reference fragments (users, posts, comments) in tmp_path."""
    assert SCHEMA_EXAMPLE_DIR.is_dir(), f"Reference fragments not found at {SCHEMA_EXAMPLE_DIR}."
    target = tmp_path / "schemas"
    shutil.copytree(SCHEMA_EXAMPLE_DIR, target)
    return target


@pytest.fixture()
def users_fragment() -> Dict[str, Any]:
    """Smallest useful table: auto-generated uuid key and one required column."""
    return {
        "table_name": "users",
        "fields": [
            {"name": "id", "type": "uuid", "primary_key": True, "default": "gen_random_uuid()"},
            {"name": "email", "type": "text"},
        ],
    }


# ---------------------------------------------------------------------------
# Recording executor
# ---------------------------------------------------------------------------


class RecordingExecutor(Executor):
    """
    Executor that records every statement instead of talking to PostgreSQL.

    ``rows`` is returned by every ``query`` call; ``rowcount`` by every
    ``execute`` call.
    """

    def __init__(self, rows: Optional[List[Row]] = None, rowcount: int = 0) -> None:
        self.rows: List[Row] = list(rows or [])
        self.rowcount: int = rowcount
        self.calls: List[Tuple[str, List[Any]]] = []

    def acquire(self) -> Any:
        raise NotImplementedError

    def release(self, conn: Any) -> None:
        raise NotImplementedError

    def connection(self) -> Any:
        raise NotImplementedError

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        self.calls.append((sql, list(params or [])))
        return self.rowcount

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        self.calls.append((sql, list(params or [])))
        return [dict(row) for row in self.rows]

    @property
    def last_sql(self) -> str:
        return self.calls[-1][0]

    @property
    def last_params(self) -> List[Any]:
        return self.calls[-1][1]


@pytest.fixture()
def recording_db() -> RecordingExecutor:
    return RecordingExecutor()


# ---------------------------------------------------------------------------
# Catalog executor
# ---------------------------------------------------------------------------


def catalog_column(
    name: str,
    udt_name: str,
    nullable: bool = False,
    default: Optional[str] = None,
    identity: bool = False,
) -> Row:
    """One ``information_schema.columns`` row."""
    return {
        "column_name": name,
        "data_type": udt_name,
        "udt_name": udt_name,
        "is_nullable": "YES" if nullable else "NO",
        "column_default": default,
        "is_identity": "YES" if identity else "NO",
    }


def catalog_index(name: str, columns: Sequence[str], unique: bool = False, primary: bool = False) -> List[Row]:
    return [
        {"index_name": name, "column_name": c, "is_unique": unique or primary, "is_primary": primary}
        for c in columns
    ]


def catalog_foreign_key(
    name: str, column: str, table: str, foreign_column: str = "id", on_delete: str = "NO ACTION"
) -> Row:
    return {
        "constraint_name": name,
        "column_name": column,
        "foreign_table_name": table,
        "foreign_column_name": foreign_column,
        "delete_rule": on_delete,
        "update_rule": "NO ACTION",
    }


def sample_catalog() -> Dict[str, Dict[str, List[Row]]]:
    """
    ``users``, ``posts`` and ``tags`` as PostgreSQL reports them, keyed by
    table and catalog query.
    """
    return {
        "users": {
            COLUMNS_SQL: [
                catalog_column("id", "uuid", default="gen_random_uuid()"),
                catalog_column("email", "varchar"),
                catalog_column("password_hash", "text", nullable=True),
                catalog_column("created_at", "timestamptz", default="now()"),
            ],
            PRIMARY_KEY_SQL: [{"column_name": "id"}],
            UNIQUE_CONSTRAINTS_SQL: [{"constraint_name": "users_email_key", "column_name": "email"}],
            INDEXES_SQL: (
                catalog_index("users_email_key", ["email"], unique=True)
                + catalog_index("users_pkey", ["id"], primary=True)
            ),
        },
        "posts": {
            COLUMNS_SQL: [
                catalog_column("id", "int8", identity=True),
                catalog_column("user_id", "uuid"),
                catalog_column("title", "text"),
                catalog_column("status", "text", default="'draft'::text"),
                catalog_column("meta", "jsonb", nullable=True),
                catalog_column("tag_id", "int4", nullable=True),
                catalog_column("deleted_at", "timestamptz", nullable=True),
            ],
            PRIMARY_KEY_SQL: [{"column_name": "id"}],
            FOREIGN_KEYS_SQL: [
                catalog_foreign_key("posts_tag_id_fkey", "tag_id", "tags"),
                catalog_foreign_key("posts_user_id_fkey", "user_id", "users", on_delete="CASCADE"),
            ],
            INDEXES_SQL: (
                catalog_index("posts_pkey", ["id"], primary=True)
                + catalog_index("posts_user_status_idx", ["user_id", "status"])
            ),
        },
        "tags": {
            COLUMNS_SQL: [catalog_column("id", "int4", identity=True), catalog_column("label", "text")],
            PRIMARY_KEY_SQL: [{"column_name": "id"}],
        },
    }


class CatalogExecutor(RecordingExecutor):
    """
    Answers the introspection queries from an in-memory catalog.

    ``catalog`` maps table name → catalog query → rows; every listed table
    is reported by the table listing, together with ``extra_tables``.
    """

    def __init__(
        self,
        catalog: Dict[str, Dict[str, List[Row]]],
        extra_tables: Sequence[str] = (),
        schema_exists: bool = True,
    ) -> None:
        super().__init__()
        self.catalog: Dict[str, Dict[str, List[Row]]] = catalog
        self.table_names: List[str] = sorted([*catalog, *extra_tables])
        self.schema_exists: bool = schema_exists

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        values: List[Any] = list(params or [])
        self.calls.append((sql, values))
        if sql == SCHEMA_EXISTS_SQL:
            return [{"exists": self.schema_exists}]
        if sql == TABLES_SQL:
            return [{"table_name": name} for name in self.table_names]
        return [dict(row) for row in self.catalog.get(values[1], {}).get(sql, [])]


@pytest.fixture()
def catalog_db() -> CatalogExecutor:
    return CatalogExecutor(sample_catalog(), extra_tables=["schema_migrations"])


# ---------------------------------------------------------------------------
# Generated package import
# ---------------------------------------------------------------------------


@pytest.fixture()
def import_generated(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[Callable[..., Any]]:
    """
    Return ``load(schemas_dir, **config)`` which generates a uniquely named
    package below tmp_path and imports it.  Imported modules are dropped
    from ``sys.modules`` afterwards.
    """
    root = tmp_path / "out"
    root.mkdir()
    monkeypatch.syspath_prepend(str(root))
    loaded: List[str] = []

    def load(schemas_dir: pathlib.Path, **config: Any) -> Any:
        name = f"generated_pkg_{next(_package_counter)}"
        report = Generator(GenerationConfig(**config)).generate_from_directory(
            schemas_dir, root / name
        )
        assert report.success, report.summary()
        importlib.invalidate_caches()
        loaded.append(name)
        return importlib.import_module(name)

    yield load

    for module_name in list(sys.modules):
        if any(module_name == n or module_name.startswith(f"{n}.") for n in loaded):
            del sys.modules[module_name]


@pytest.fixture()
def example_package(
    example_schemas_dir: pathlib.Path, import_generated: Callable[..., Any]
) -> Any:
    """The reference fragments generated and imported as a package."""
    return import_generated(example_schemas_dir)
