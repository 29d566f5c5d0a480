"""
tests/test_generated_code.py
Integration tests that generate a package, import it and call into it.

A ``RecordingExecutor`` stands in for PostgreSQL, so every test asserts on
the SQL text and parameter list the emitted functions send, and on the
records they hydrate from canned rows.

Tests cover:
- insert surface of a minimal table
- CRUD functions of the reference schema (insert, insert_many, find_by_id,
  update, delete, soft_delete, upsert, count, truncate, table_exists)
- Registry lookups and forward-reference resolution
- Relation variants: from_row hydration, from_base / to_base
- Related records whose class names match a local input model
- include_deleted on find_all and count of soft-delete tables
"""

from __future__ import annotations

import inspect
import json
import pathlib
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import pytest
from pydantic import ValidationError

from conftest import RecordingExecutor, write_fragments
from fluentorm.errors import ErrorCode, QueryError


USER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
POST_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
CREATED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _user_row(**overrides: Any) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "id": USER_ID,
        "email": "ada@example.com",
        "name": "Ada",
        "password_hash": "secret-hash",
        "created_at": CREATED,
    }
    row.update(overrides)
    return row


def _post_row(**overrides: Any) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "id": POST_ID,
        "user_id": USER_ID,
        "title": "Hello",
        "body": "",
        "active": True,
        "created_at": CREATED,
        "deleted_at": None,
        "views": 0,
    }
    row.update(overrides)
    return row


def _comment_row(comment_id: int, body: str) -> Dict[str, Any]:
    return {
        "id": comment_id,
        "post_id": str(POST_ID),
        "body": body,
        "created_at": CREATED.isoformat(),
    }


# ===========================================================================
# Minimal table
# ===========================================================================


class TestMinimalInsert:

    def test_insert_accepts_only_email(
        self,
        tmp_path: pathlib.Path,
        users_fragment: Dict[str, Any],
        import_generated: Callable[..., Any],
    ) -> None:
        schemas = write_fragments(tmp_path / "schemas", {"01_users.json": users_fragment})
        pkg = import_generated(schemas)

        params = list(inspect.signature(pkg.users.insert).parameters)
        assert params == ["db", "email"]

        db = RecordingExecutor(rows=[{"id": USER_ID, "email": "ada@example.com"}])
        user = pkg.users.insert(db, email="ada@example.com")
        assert db.calls == [
            ("INSERT INTO users (email) VALUES ($1) RETURNING *", ["ada@example.com"]),
        ]
        assert user.id == USER_ID
        assert user.email == "ada@example.com"

    def test_insert_without_returned_row(
        self,
        tmp_path: pathlib.Path,
        users_fragment: Dict[str, Any],
        import_generated: Callable[..., Any],
    ) -> None:
        schemas = write_fragments(tmp_path / "schemas", {"01_users.json": users_fragment})
        pkg = import_generated(schemas)
        with pytest.raises(QueryError) as exc_info:
            pkg.users.insert(RecordingExecutor(rows=[]), email="ada@example.com")
        assert exc_info.value.code is ErrorCode.NO_ROWS_RETURNED
        assert exc_info.value.param_count == 1


# ===========================================================================
# Reference schema: CRUD
# ===========================================================================


class TestCrudFunctions:

    def test_insert_optional_inputs_default_to_none(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_post_row()])
        post = example_package.posts.insert(db, user_id=USER_ID, title="Hello")
        sql, params = db.calls[0]
        assert sql.startswith("INSERT INTO posts (user_id, title, body, active, views)")
        assert params == [USER_ID, "Hello", None, None, None]
        assert post.title == "Hello"
        assert post.deleted_at is None

    def test_insert_missing_required_argument(self, example_package: Any) -> None:
        with pytest.raises(TypeError):
            example_package.posts.insert(RecordingExecutor(), title="Hello")

    def test_insert_many(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_post_row(), _post_row(title="Second")])
        posts = example_package.posts.insert_many(db, [
            {"user_id": USER_ID, "title": "Hello"},
            example_package.posts.PostCreate(user_id=USER_ID, title="Second", views=3),
        ])
        sql, params = db.calls[0]
        assert sql == (
            "INSERT INTO posts (user_id, title, body, active, views) VALUES "
            "($1, $2, COALESCE($3, ''), COALESCE($4, true), COALESCE($5, 0)), "
            "($6, $7, COALESCE($8, ''), COALESCE($9, true), COALESCE($10, 0)) RETURNING *"
        )
        assert params == [USER_ID, "Hello", None, None, None, USER_ID, "Second", None, None, 3]
        assert [p.title for p in posts] == ["Hello", "Second"]

    def test_insert_many_rejects_unknown_keys(self, example_package: Any) -> None:
        with pytest.raises(ValidationError):
            example_package.posts.insert_many(
                RecordingExecutor(), [{"user_id": USER_ID, "title": "x", "colour": "red"}]
            )

    def test_find_by_id_excludes_deleted(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_post_row()])
        post = example_package.posts.find_by_id(db, POST_ID)
        assert db.last_sql == "SELECT posts.* FROM posts WHERE id = $1 AND deleted_at IS NULL"
        assert db.last_params == [POST_ID]
        assert post.id == POST_ID

    def test_find_by_id_including_deleted(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[])
        assert example_package.posts.find_by_id(db, POST_ID, include_deleted=True) is None
        assert db.last_sql == "SELECT posts.* FROM posts WHERE id = $1"

    def test_find_all_applies_soft_delete(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_post_row()])
        posts = example_package.posts.find_all(db)
        assert db.last_sql == "SELECT posts.* FROM posts WHERE posts.deleted_at IS NULL"
        assert isinstance(posts[0], example_package.posts.Post)

    def test_find_all_including_deleted(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_post_row(deleted_at=CREATED)])
        posts = example_package.posts.find_all(db, include_deleted=True)
        assert db.last_sql == "SELECT posts.* FROM posts"
        assert posts[0].deleted_at == CREATED

    def test_count_soft_delete_scope(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[{"count": 2}])
        assert example_package.posts.count(db) == 2
        assert example_package.posts.count(db, include_deleted=True) == 2
        assert [sql for sql, _ in db.calls] == [
            "SELECT COUNT(*) AS count FROM posts WHERE posts.deleted_at IS NULL",
            "SELECT COUNT(*) AS count FROM posts",
        ]

    def test_include_deleted_only_on_soft_delete_tables(self, example_package: Any) -> None:
        assert "include_deleted" in inspect.signature(example_package.posts.find_all).parameters
        assert "include_deleted" not in inspect.signature(example_package.comments.count).parameters

    def test_update_writes_only_supplied_columns(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_post_row(title="New", views=7)])
        post = example_package.posts.update(db, POST_ID, views=7, title="New")
        assert db.calls == [
            ("UPDATE posts SET title = $2, views = $3 WHERE id = $1 RETURNING *", [POST_ID, "New", 7]),
        ]
        assert post.views == 7

    def test_update_can_write_null(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_user_row(name=None)])
        example_package.users.update(db, USER_ID, name=None)
        assert db.calls[0] == (
            "UPDATE users SET name = $2 WHERE id = $1 RETURNING *", [USER_ID, None],
        )

    def test_update_unknown_column(self, example_package: Any) -> None:
        with pytest.raises(ValidationError):
            example_package.posts.update(RecordingExecutor(), POST_ID, colour="red")

    def test_update_nothing(self, example_package: Any) -> None:
        with pytest.raises(ValueError):
            example_package.posts.update(RecordingExecutor(), POST_ID)

    def test_delete_and_soft_delete(self, example_package: Any) -> None:
        db = RecordingExecutor(rowcount=1)
        assert example_package.posts.delete(db, POST_ID) == 1
        assert example_package.posts.soft_delete(db, POST_ID) == 1
        assert db.calls == [
            ("DELETE FROM posts WHERE id = $1", [POST_ID]),
            ("UPDATE posts SET deleted_at = CURRENT_TIMESTAMP WHERE id = $1", [POST_ID]),
        ]

    def test_upsert(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[_user_row()])
        user = example_package.users.upsert(db, email="ada@example.com", name="Ada")
        sql, params = db.calls[0]
        assert "ON CONFLICT (email) DO UPDATE SET" in sql
        assert params == ["ada@example.com", "Ada", None]
        assert user.email == "ada@example.com"

    def test_count_truncate_exists(self, example_package: Any) -> None:
        db = RecordingExecutor(rows=[{"count": 4}])
        assert example_package.comments.count(db) == 4
        assert db.last_sql == "SELECT COUNT(*) AS count FROM comments"

        db = RecordingExecutor()
        example_package.comments.truncate(db)
        assert db.calls == [("TRUNCATE TABLE comments RESTART IDENTITY CASCADE", [])]

        db = RecordingExecutor(rows=[{"found": True}])
        assert example_package.comments.table_exists(db) is True
        assert db.last_params == ["comments"]

    def test_redacted_field_hidden_from_repr(self, example_package: Any) -> None:
        user = example_package.users.User.from_row(_user_row())
        assert "secret-hash" not in repr(user)
        assert user.password_hash == "secret-hash"

    def test_from_row_ignores_extra_columns(self, example_package: Any) -> None:
        user = example_package.users.User.from_row(_user_row(extra_column=1))
        assert not hasattr(user, "extra_column")


# ===========================================================================
# Registry
# ===========================================================================


class TestRegistry:

    def test_tables_and_lookups(self, example_package: Any) -> None:
        assert example_package.TABLES == ["users", "posts", "comments"]
        assert example_package.get_model("posts") is example_package.posts.Post
        assert example_package.QUERIES["comments"] is example_package.comments.CommentQuery

    def test_unknown_table(self, example_package: Any) -> None:
        with pytest.raises(KeyError, match="Unknown table"):
            example_package.get_model("ghosts")

    def test_rebuild_is_repeatable(self, example_package: Any) -> None:
        example_package.rebuild_models()
        example_package.rebuild_models()

    def test_regenerated_package_imports_again(
        self, example_schemas_dir: pathlib.Path, import_generated: Callable[..., Any]
    ) -> None:
        first = import_generated(example_schemas_dir)
        second = import_generated(example_schemas_dir)
        assert first.TABLES == second.TABLES
        assert first.posts.Post is not second.posts.Post


# ===========================================================================
# Relation variants
# ===========================================================================


class TestRelationVariants:

    def test_many_relation_from_json_text(self, example_package: Any) -> None:
        row = _post_row(comments=json.dumps([_comment_row(1, "first"), _comment_row(2, "second")]))
        post = example_package.posts.PostWithComments.from_row(row)
        assert [c.body for c in post.comments] == ["first", "second"]
        assert isinstance(post.comments[0], example_package.comments.Comment)

    def test_many_relation_from_decoded_list(self, example_package: Any) -> None:
        row = _post_row(comments=[_comment_row(1, "first"), _comment_row(2, "second")])
        post = example_package.posts.PostWithComments.from_row(row)
        assert len(post.comments) == 2

    def test_malformed_json_yields_absent_relation(self, example_package: Any) -> None:
        post = example_package.posts.PostWithComments.from_row(_post_row(comments="[{not json"))
        assert post.comments is None
        assert post.title == "Hello"

    def test_empty_list_is_no_related_rows(self, example_package: Any) -> None:
        post = example_package.posts.PostWithComments.from_row(_post_row(comments="[]"))
        assert post.comments == []

    def test_single_relation(self, example_package: Any) -> None:
        user = json.loads(json.dumps(_user_row(), default=str))
        post = example_package.posts.PostWithUser.from_row(_post_row(user=user))
        assert post.user.email == "ada@example.com"

    def test_single_relation_wrong_shape(self, example_package: Any) -> None:
        post = example_package.posts.PostWithUser.from_row(_post_row(user="[1, 2]"))
        assert post.user is None

    def test_all_relations(self, example_package: Any) -> None:
        row = _post_row(user=None, comments=[_comment_row(1, "only")])
        post = example_package.posts.PostWithAllRelations.from_row(row)
        assert post.user is None
        assert len(post.comments) == 1

    def test_from_base_and_to_base(self, example_package: Any) -> None:
        posts = example_package.posts
        base = posts.Post.from_row(_post_row())
        variant = posts.PostWithComments.from_base(base, comments=[])
        assert variant.comments == []
        assert variant.to_base() == base
        assert type(variant.to_base()) is posts.Post

    def test_reverse_relation_variant_on_users(self, example_package: Any) -> None:
        row = _user_row(posts=[json.loads(json.dumps(_post_row(), default=str))])
        user = example_package.users.UserWithPosts.from_row(row)
        assert user.posts[0].id == POST_ID


# ===========================================================================
# Record names shared across modules
# ===========================================================================


POSTS_FRAGMENT: Dict[str, Any] = {
    "table_name": "posts",
    "fields": [
        {"name": "id", "type": "uuid", "primary_key": True, "default": "gen_random_uuid()"},
        {"name": "title", "type": "text"},
    ],
    "relationships": [
        {"column": "id", "references": {"table": "post_updates"}, "type": "one_to_many"},
    ],
}

POST_UPDATES_FRAGMENT: Dict[str, Any] = {
    "table_name": "post_updates",
    "fields": [
        {"name": "id", "type": "uuid", "primary_key": True, "default": "gen_random_uuid()"},
        {"name": "post_id", "type": "uuid"},
        {"name": "note", "type": "text"},
    ],
    "relationships": [
        {"column": "post_id", "references": {"table": "posts"}},
    ],
}


class TestRelatedRecordNames:
    """``post_updates`` generates ``PostUpdate``, the name of the update input of ``posts``."""

    @pytest.fixture()
    def pkg(self, tmp_path: pathlib.Path, import_generated: Callable[..., Any]) -> Any:
        schemas = write_fragments(
            tmp_path / "schemas",
            {"01_posts.yaml": POSTS_FRAGMENT, "02_post_updates.yaml": POST_UPDATES_FRAGMENT},
        )
        return import_generated(schemas)

    def test_update_input_not_shadowed(self, pkg: Any) -> None:
        assert pkg.posts.PostUpdate is not pkg.post_updates.PostUpdate
        assert set(pkg.posts.PostUpdate.model_fields) == {"title"}

    def test_update_uses_own_input_model(self, pkg: Any) -> None:
        db = RecordingExecutor(rows=[{"id": POST_ID, "title": "new"}])
        post = pkg.posts.update(db, POST_ID, title="new")
        assert db.calls == [
            ("UPDATE posts SET title = $2 WHERE id = $1 RETURNING *", [POST_ID, "new"]),
        ]
        assert post.title == "new"

    def test_variant_hydrates_related_record(self, pkg: Any) -> None:
        update_id = uuid.UUID("33333333-3333-3333-3333-333333333333")
        row = {
            "id": POST_ID,
            "title": "Hello",
            "post_updates": [{"id": str(update_id), "post_id": str(POST_ID), "note": "typo"}],
        }
        post = pkg.posts.PostWithPostUpdates.from_row(row)
        assert isinstance(post.post_updates[0], pkg.post_updates.PostUpdate)
        assert post.post_updates[0].note == "typo"

    def test_reverse_direction(self, pkg: Any) -> None:
        row = {
            "id": POST_ID,
            "post_id": POST_ID,
            "note": "typo",
            "post": {"id": str(POST_ID), "title": "Hello"},
        }
        update = pkg.post_updates.PostUpdateWithPost.from_row(row)
        assert isinstance(update.post, pkg.posts.Post)
