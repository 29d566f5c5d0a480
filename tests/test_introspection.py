"""
tests/test_introspection.py
Unit and integration tests for fluentorm.introspection.

A ``CatalogExecutor`` answers the catalog queries from canned rows, so the
whole pull runs without a database and writes real fragment files into
tmp_path.

Tests cover:
- PostgreSQL type mapping and nullable variants
- Table listing: schema check, migration tables, include/exclude filters
- Per-table catalog reads (columns, keys, constraints, indexes)
- Conversion to fragments: input modes, redaction, unique columns,
  forward and inferred reverse relationships, skipped constraints
- Fragment files: layout, dry run, and a full generate run over them
"""

from __future__ import annotations

import pathlib
from typing import Dict, List

import pytest
import yaml

from conftest import CatalogExecutor, catalog_column, catalog_foreign_key, sample_catalog
from fluentorm.generator import Generator
from fluentorm.introspection import (
    COLUMNS_SQL,
    FOREIGN_KEYS_SQL,
    PRIMARY_KEY_SQL,
    SCHEMA_EXISTS_SQL,
    IntrospectedTable,
    IntrospectionError,
    Introspector,
    fragment_to_yaml,
    map_pg_type,
    pull_schema,
    table_to_fragment,
)
from fluentorm.models import SchemaFragment
from fluentorm.registry import SchemaRegistry, parse_fragment


def _fragments(db: CatalogExecutor, warnings: List[str], **filters: object) -> Dict[str, SchemaFragment]:
    tables = Introspector(db, **filters).introspect()  # type: ignore[arg-type]
    return {t.name: table_to_fragment(t, tables, warnings) for t in tables}


# ===========================================================================
# Type mapping
# ===========================================================================


class TestMapPgType:

    @pytest.mark.parametrize(
        "udt_name, data_type, nullable, expected",
        [
            ("uuid", "uuid", False, "uuid"),
            ("varchar", "character varying", False, "text"),
            ("bpchar", "character", True, "text_optional"),
            ("bool", "boolean", False, "boolean"),
            ("int2", "smallint", False, "i16"),
            ("int4", "integer", True, "i32_optional"),
            ("int8", "bigint", False, "i64"),
            ("float4", "real", False, "f32"),
            ("float8", "double precision", False, "f64"),
            ("numeric", "numeric", True, "f64_optional"),
            ("timestamp", "timestamp without time zone", False, "timestamp"),
            ("timestamptz", "timestamp with time zone", True, "timestamptz_optional"),
            ("jsonb", "jsonb", False, "json"),
            ("json", "json", True, "json_optional"),
        ],
    )
    def test_known_types(self, udt_name: str, data_type: str, nullable: bool, expected: str) -> None:
        assert map_pg_type(udt_name, data_type, nullable) == expected

    def test_unknown_types_fall_back_to_text(self) -> None:
        assert map_pg_type("bytea", "bytea") == "text"
        assert map_pg_type("_int4", "ARRAY", nullable=True) == "text_optional"


# ===========================================================================
# Catalog reads
# ===========================================================================


class TestIntrospector:

    def test_lists_tables_without_migration_bookkeeping(self, catalog_db: CatalogExecutor) -> None:
        assert Introspector(catalog_db).list_tables() == ["posts", "tags", "users"]

    def test_include_and_exclude(self, catalog_db: CatalogExecutor) -> None:
        assert Introspector(catalog_db, include=["users", "ghosts"]).list_tables() == ["users"]
        assert Introspector(catalog_db, exclude=["tags"]).list_tables() == ["posts", "users"]

    def test_schema_name_is_bound(self, catalog_db: CatalogExecutor) -> None:
        Introspector(catalog_db, "app").introspect_table("users")
        Introspector(catalog_db, "app").list_tables()
        assert (COLUMNS_SQL, ["app", "users"]) in catalog_db.calls
        assert (SCHEMA_EXISTS_SQL, ["app"]) in catalog_db.calls

    def test_missing_schema(self) -> None:
        db = CatalogExecutor(sample_catalog(), schema_exists=False)
        with pytest.raises(IntrospectionError, match="Schema 'public' does not exist"):
            Introspector(db).list_tables()

    def test_table_details(self, catalog_db: CatalogExecutor) -> None:
        posts: IntrospectedTable = Introspector(catalog_db).introspect_table("posts")
        assert [c.name for c in posts.columns] == [
            "id", "user_id", "title", "status", "meta", "tag_id", "deleted_at",
        ]
        assert posts.primary_key == ["id"]
        assert posts.columns[0].is_identity and posts.columns[0].is_auto_generated
        assert not posts.columns[3].is_auto_generated
        assert [(fk.constraint_name, fk.columns, fk.foreign_table) for fk in posts.foreign_keys] == [
            ("posts_tag_id_fkey", ["tag_id"], "tags"),
            ("posts_user_id_fkey", ["user_id"], "users"),
        ]
        assert posts.foreign_keys[1].on_delete == "CASCADE"
        assert [(i.name, i.columns, i.primary) for i in posts.indexes] == [
            ("posts_pkey", ["id"], True),
            ("posts_user_status_idx", ["user_id", "status"], False),
        ]

    def test_unique_columns(self, catalog_db: CatalogExecutor) -> None:
        users = Introspector(catalog_db).introspect_table("users")
        assert users.unique_constraints == {"users_email_key": ["email"]}
        assert users.unique_columns == {"email"}


# ===========================================================================
# Conversion
# ===========================================================================


class TestTableToFragment:

    def test_users_fields(self, catalog_db: CatalogExecutor) -> None:
        users = _fragments(catalog_db, [])["users"]
        fields = {f.name: f for f in users.fields}
        assert fields["id"].primary_key
        assert fields["id"].input_mode == "auto_generated"
        assert fields["email"].type == "text"
        assert fields["email"].unique
        assert fields["email"].input_mode == "required"
        assert fields["password_hash"].type == "text_optional"
        assert fields["password_hash"].redacted
        assert fields["password_hash"].input_mode == "optional"
        assert fields["created_at"].input_mode == "auto_generated"
        assert fields["created_at"].default == "now()"

    def test_posts_fields(self, catalog_db: CatalogExecutor) -> None:
        fields = {f.name: f for f in _fragments(catalog_db, [])["posts"].fields}
        assert fields["id"].type == "i64"
        assert fields["id"].default is None
        assert fields["id"].input_mode == "auto_generated"
        assert fields["status"].default == "'draft'::text"
        assert fields["status"].input_mode == "optional"
        assert fields["meta"].type == "json_optional"
        assert fields["deleted_at"].type == "timestamptz_optional"

    def test_indexes_skip_primary_and_unique_constraints(self, catalog_db: CatalogExecutor) -> None:
        fragments = _fragments(catalog_db, [])
        assert fragments["users"].indexes == []
        assert [(i.name, i.columns, i.unique) for i in fragments["posts"].indexes] == [
            ("posts_user_status_idx", ["user_id", "status"], False),
        ]

    def test_forward_and_reverse_relationships(self, catalog_db: CatalogExecutor) -> None:
        fragments = _fragments(catalog_db, [])
        posts = fragments["posts"].relationships
        assert [(r.column, r.references.table, r.relationship_type) for r in posts] == [
            ("tag_id", "tags", "many_to_one"),
            ("user_id", "users", "many_to_one"),
        ]
        assert posts[1].on_delete == "CASCADE"
        assert posts[1].name == "posts_user_id_fkey"

        users = fragments["users"].relationships
        assert [(r.column, r.references.table, r.references.column, r.relationship_type) for r in users] == [
            ("id", "posts", "user_id", "one_to_many"),
        ]

    def test_foreign_key_to_unpulled_table(self, catalog_db: CatalogExecutor) -> None:
        warnings: List[str] = []
        posts = _fragments(catalog_db, warnings, exclude=["tags"])["posts"]
        assert [r.column for r in posts.relationships] == ["user_id"]
        assert warnings == [
            "posts: foreign key 'posts_tag_id_fkey' targets 'tags', which was not pulled",
        ]

    def test_composite_foreign_key_skipped(self) -> None:
        catalog = {
            "orders": {
                COLUMNS_SQL: [catalog_column("id", "int4", identity=True)],
                PRIMARY_KEY_SQL: [{"column_name": "id"}],
            },
            "lines": {
                COLUMNS_SQL: [
                    catalog_column("id", "int4", identity=True),
                    catalog_column("order_id", "int4"),
                    catalog_column("order_rev", "int4"),
                ],
                PRIMARY_KEY_SQL: [{"column_name": "id"}],
                FOREIGN_KEYS_SQL: [
                    catalog_foreign_key("lines_order_fkey", "order_id", "orders"),
                    catalog_foreign_key("lines_order_fkey", "order_rev", "orders", "rev"),
                ],
            },
        }
        warnings: List[str] = []
        fragments = _fragments(CatalogExecutor(catalog), warnings)
        assert fragments["lines"].relationships == []
        assert fragments["orders"].relationships == []
        assert warnings == ["lines: composite foreign key 'lines_order_fkey' skipped"]

    def test_one_reverse_relationship_per_table(self) -> None:
        catalog = {
            "users": {
                COLUMNS_SQL: [catalog_column("id", "int4", identity=True)],
                PRIMARY_KEY_SQL: [{"column_name": "id"}],
            },
            "reviews": {
                COLUMNS_SQL: [
                    catalog_column("id", "int4", identity=True),
                    catalog_column("author_id", "int4"),
                    catalog_column("editor_id", "int4", nullable=True),
                ],
                PRIMARY_KEY_SQL: [{"column_name": "id"}],
                FOREIGN_KEYS_SQL: [
                    catalog_foreign_key("reviews_author_id_fkey", "author_id", "users"),
                    catalog_foreign_key("reviews_editor_id_fkey", "editor_id", "users"),
                ],
            },
        }
        warnings: List[str] = []
        users = _fragments(CatalogExecutor(catalog), warnings)["users"]
        assert [(r.references.table, r.references.column) for r in users.relationships] == [
            ("reviews", "author_id"),
        ]
        assert warnings == ["users: extra reverse relationship through 'reviews.editor_id' skipped"]


# ===========================================================================
# Fragment files
# ===========================================================================


class TestPullSchema:

    def test_writes_one_fragment_per_table(self, catalog_db: CatalogExecutor, tmp_path: pathlib.Path) -> None:
        out = tmp_path / "schemas"
        report = pull_schema(catalog_db, out)
        assert report.table_names == ["posts", "tags", "users"]
        assert report.written == ["posts.yaml", "tags.yaml", "users.yaml"]
        assert sorted(p.name for p in out.iterdir()) == report.written
        assert report.warnings == []
        assert "Schema Pull Report" in report.summary()

    def test_yaml_layout(self, catalog_db: CatalogExecutor, tmp_path: pathlib.Path) -> None:
        pull_schema(catalog_db, tmp_path)
        data = yaml.safe_load((tmp_path / "users.yaml").read_text(encoding="utf-8"))
        assert list(data) == ["table_name", "fields", "relationships"]
        assert data["fields"][0] == {
            "name": "id",
            "type": "uuid",
            "primary_key": True,
            "default": "gen_random_uuid()",
            "input_mode": "auto_generated",
        }
        assert data["relationships"] == [
            {"column": "id", "references": {"table": "posts", "column": "user_id"}, "type": "one_to_many"},
        ]

    def test_yaml_reloads_to_same_fragment(self, catalog_db: CatalogExecutor) -> None:
        fragment = _fragments(catalog_db, [])["posts"]
        reloaded = parse_fragment(yaml.safe_load(fragment_to_yaml(fragment)), source="posts.yaml")
        assert reloaded.model_dump() == fragment.model_dump()

    def test_dry_run_writes_nothing(self, catalog_db: CatalogExecutor, tmp_path: pathlib.Path) -> None:
        out = tmp_path / "schemas"
        report = pull_schema(catalog_db, out, dry_run=True)
        assert report.written == []
        assert [f.table_name for f in report.fragments] == ["posts", "tags", "users"]
        assert not out.exists()
        assert "(dry run)" in report.summary()

    def test_output_dir_required(self, catalog_db: CatalogExecutor) -> None:
        with pytest.raises(ValueError):
            pull_schema(catalog_db)

    def test_pulled_fragments_generate(self, catalog_db: CatalogExecutor, tmp_path: pathlib.Path) -> None:
        schemas = tmp_path / "schemas"
        pull_schema(catalog_db, schemas, include=["users", "posts"])
        assert len(SchemaRegistry.from_directory(schemas)) == 2
        report = Generator().generate_from_directory(schemas, tmp_path / "db")
        assert report.success, report.summary()
        assert report.accepted_tables == ["posts", "users"]
        assert (tmp_path / "db" / "posts.py").is_file()

    def test_full_catalog_generates(self, catalog_db: CatalogExecutor, tmp_path: pathlib.Path) -> None:
        pull_schema(catalog_db, tmp_path / "schemas")
        report = Generator().generate_from_directory(tmp_path / "schemas", tmp_path / "db")
        assert report.success, report.summary()
        assert report.accepted_tables == ["posts", "tags", "users"]
