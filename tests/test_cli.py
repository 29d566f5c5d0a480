"""
tests/test_cli.py
Tests for the fluentorm command-line interface.

Tests cover:
- Exit codes of ``generate`` and ``validate``
- Per-table details written to stderr
- ``--config`` files and flag precedence
- Report-to-exit-code mapping
- ``pull``: database URL sources, table filters and report-only mode
"""

from __future__ import annotations

import logging
import pathlib
from contextlib import contextmanager
from typing import Iterator, List

import pytest

from conftest import TAGS_WITH_BAD_INDEX, CatalogExecutor, sample_catalog, write_fragments
from fluentorm.cli import (
    EXIT_EXPORT_ERROR,
    EXIT_GENERATION_ERROR,
    EXIT_INPUT_ERROR,
    EXIT_SUCCESS,
    EXIT_VALIDATION_ERROR,
    _build_parser,
    build_config,
    cli_main,
    exit_code_for,
)
from fluentorm.generator import GenerationReport


@pytest.fixture(autouse=True)
def _reset_fluentorm_logger() -> Iterator[None]:
    yield
    root_logger = logging.getLogger("fluentorm")
    root_logger.handlers.clear()
    root_logger.propagate = True
    root_logger.setLevel(logging.NOTSET)


def _run(argv: List[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        cli_main(argv)
    return exc_info.value.code


@pytest.fixture()
def rejected_schemas_dir(tmp_path: pathlib.Path, users_fragment: dict) -> pathlib.Path:
    return write_fragments(
        tmp_path / "schemas",
        {
            "01_users.yaml": users_fragment,
            "02_tags.yaml": TAGS_WITH_BAD_INDEX,
        },
    )


# ===========================================================================
# generate
# ===========================================================================


class TestGenerateCommand:

    def test_success(self, example_schemas_dir: pathlib.Path, tmp_path: pathlib.Path,
                     capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "db"
        assert _run(["generate", str(example_schemas_dir), str(out), "-q"]) == EXIT_SUCCESS
        assert (out / "posts.py").is_file()
        assert "SUCCESS" in capsys.readouterr().out

    def test_rejected_table(self, rejected_schemas_dir: pathlib.Path, tmp_path: pathlib.Path,
                            capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "db"
        assert _run(["generate", str(rejected_schemas_dir), str(out), "-q"]) == EXIT_VALIDATION_ERROR
        err = capsys.readouterr().err
        assert "table 'tags' rejected" in err
        assert "[UNKNOWN_INDEX_COLUMN]" in err
        assert (out / "users.py").is_file()
        assert not (out / "tags.py").exists()

    def test_missing_schemas_dir(self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture) -> None:
        assert _run(["generate", str(tmp_path / "nowhere"), "-q"]) == EXIT_INPUT_ERROR
        assert "Schemas directory not found" in capsys.readouterr().err

    def test_unreadable_fragment(self, tmp_path: pathlib.Path, users_fragment: dict,
                                 capsys: pytest.CaptureFixture) -> None:
        schemas = write_fragments(
            tmp_path / "schemas",
            {"01_users.yaml": users_fragment, "02_broken.json": "{not json"},
        )
        assert _run(["generate", str(schemas), str(tmp_path / "db"), "-q"]) == EXIT_INPUT_ERROR
        assert "02_broken.json" in capsys.readouterr().err

    def test_config_file(self, example_schemas_dir: pathlib.Path, tmp_path: pathlib.Path) -> None:
        out = tmp_path / "from_config"
        config = tmp_path / "orm.yaml"
        config.write_text(f"output_dir: {out}\nwrite_manifest: false\n", encoding="utf-8")
        assert _run(["generate", str(example_schemas_dir), "--config", str(config), "-q"]) == EXIT_SUCCESS
        assert (out / "users.py").is_file()
        assert not (out / "manifest.json").exists()

    def test_invalid_config_file(self, example_schemas_dir: pathlib.Path, tmp_path: pathlib.Path) -> None:
        config = tmp_path / "orm.yaml"
        config.write_text("indent_size: 1\n", encoding="utf-8")
        assert _run(["generate", str(example_schemas_dir), "--config", str(config), "-q"]) == EXIT_INPUT_ERROR

    def test_missing_config_file(self, example_schemas_dir: pathlib.Path, tmp_path: pathlib.Path) -> None:
        argv = ["generate", str(example_schemas_dir), "--config", str(tmp_path / "none.yaml"), "-q"]
        assert _run(argv) == EXIT_INPUT_ERROR


# ===========================================================================
# validate
# ===========================================================================


class TestValidateCommand:

    def test_valid(self, example_schemas_dir: pathlib.Path, capsys: pytest.CaptureFixture) -> None:
        assert _run(["validate", str(example_schemas_dir), "-q"]) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "Schema Validation Report" in out
        assert "Accepted:  3" in out

    def test_rejected(self, rejected_schemas_dir: pathlib.Path, capsys: pytest.CaptureFixture) -> None:
        assert _run(["validate", str(rejected_schemas_dir), "-q"]) == EXIT_VALIDATION_ERROR
        assert "Rejected:  1" in capsys.readouterr().out

    def test_writes_nothing(self, example_schemas_dir: pathlib.Path, tmp_path: pathlib.Path,
                            monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        _run(["validate", str(example_schemas_dir), "-q"])
        assert not (tmp_path / "generated").exists()


# ===========================================================================
# pull
# ===========================================================================


@pytest.fixture()
def opened_urls(monkeypatch: pytest.MonkeyPatch) -> List[str]:
    """Route ``pull`` to a catalog double; collects the URLs it was opened with."""
    urls: List[str] = []

    @contextmanager
    def fake_open(database_url: str) -> Iterator[CatalogExecutor]:
        urls.append(database_url)
        yield CatalogExecutor(sample_catalog(), extra_tables=["schema_migrations"])

    monkeypatch.setattr("fluentorm.cli.open_executor", fake_open)
    return urls


class TestPullCommand:

    def test_writes_fragments(self, opened_urls: List[str], tmp_path: pathlib.Path,
                              capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "schemas"
        code = _run(["pull", str(out), "--database-url", "postgresql://db/app", "-q"])
        assert code == EXIT_SUCCESS
        assert opened_urls == ["postgresql://db/app"]
        assert sorted(p.name for p in out.iterdir()) == ["posts.yaml", "tags.yaml", "users.yaml"]
        assert "Schema Pull Report" in capsys.readouterr().out

    def test_pulled_directory_validates(self, opened_urls: List[str], tmp_path: pathlib.Path) -> None:
        out = tmp_path / "schemas"
        _run(["pull", str(out), "-d", "postgresql://db/app", "-q"])
        assert _run(["validate", str(out), "-q"]) == EXIT_SUCCESS

    def test_url_from_environment(self, opened_urls: List[str], tmp_path: pathlib.Path,
                                  monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://env/app")
        assert _run(["pull", str(tmp_path / "schemas"), "-q"]) == EXIT_SUCCESS
        assert opened_urls == ["postgresql://env/app"]

    def test_report_only(self, opened_urls: List[str], tmp_path: pathlib.Path,
                         capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "schemas"
        code = _run(["pull", str(out), "-d", "postgresql://db/app", "--report-only", "-q"])
        assert code == EXIT_SUCCESS
        assert not out.exists()
        assert "(dry run)" in capsys.readouterr().out

    def test_include_filter(self, opened_urls: List[str], tmp_path: pathlib.Path) -> None:
        out = tmp_path / "schemas"
        _run(["pull", str(out), "-d", "postgresql://db/app", "--include", "users,posts", "-q"])
        assert sorted(p.name for p in out.iterdir()) == ["posts.yaml", "users.yaml"]

    def test_missing_database_url(self, opened_urls: List[str], tmp_path: pathlib.Path,
                                  monkeypatch: pytest.MonkeyPatch,
                                  capsys: pytest.CaptureFixture) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert _run(["pull", str(tmp_path / "schemas"), "-q"]) == EXIT_INPUT_ERROR
        assert opened_urls == []
        assert "No database URL" in capsys.readouterr().err

    def test_missing_schema(self, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch,
                            capsys: pytest.CaptureFixture) -> None:
        @contextmanager
        def fake_open(database_url: str) -> Iterator[CatalogExecutor]:
            yield CatalogExecutor(sample_catalog(), schema_exists=False)

        monkeypatch.setattr("fluentorm.cli.open_executor", fake_open)
        code = _run(["pull", str(tmp_path / "schemas"), "-d", "postgresql://db/app", "-s", "app", "-q"])
        assert code == EXIT_INPUT_ERROR
        assert "Schema 'app' does not exist" in capsys.readouterr().err

    def test_table_lists(self) -> None:
        args = _build_parser().parse_args(
            ["pull", "schemas", "--include", " users, ,posts ", "--exclude", "tags"]
        )
        assert args.include == ["users", "posts"]
        assert args.exclude == ["tags"]
        assert args.schema == "public"
        assert args.report_only is False


# ===========================================================================
# Configuration resolution
# ===========================================================================


class TestBuildConfig:

    def test_flags_override_config_file(self, tmp_path: pathlib.Path) -> None:
        config = tmp_path / "orm.yaml"
        config.write_text("output_dir: ./from_file\nindent_size: 2\n", encoding="utf-8")
        args = _build_parser().parse_args(
            ["generate", "schemas", "./from_flag", "--config", str(config), "--no-relations"]
        )
        resolved = build_config(args)
        assert resolved.output_dir == "./from_flag"
        assert resolved.indent_size == 2
        assert resolved.generate_relations is False

    def test_defaults(self) -> None:
        resolved = build_config(_build_parser().parse_args(["generate", "schemas"]))
        assert resolved.output_dir == "./generated"
        assert resolved.clean_output is False

    def test_config_must_be_mapping(self, tmp_path: pathlib.Path) -> None:
        config = tmp_path / "orm.yaml"
        config.write_text("- a\n- b\n", encoding="utf-8")
        args = _build_parser().parse_args(["generate", "schemas", "--config", str(config)])
        with pytest.raises(ValueError, match="Expected a mapping"):
            build_config(args)


class TestExitCodeFor:

    @pytest.mark.parametrize(
        "report, expected",
        [
            (GenerationReport(success=True), EXIT_SUCCESS),
            (GenerationReport(input_errors=["x"]), EXIT_INPUT_ERROR),
            (GenerationReport(export_errors=["x"]), EXIT_EXPORT_ERROR),
            (GenerationReport(generation_errors=["x"]), EXIT_GENERATION_ERROR),
            (GenerationReport(rejected_tables=["tags"]), EXIT_VALIDATION_ERROR),
        ],
    )
    def test_mapping(self, report: GenerationReport, expected: int) -> None:
        assert exit_code_for(report) == expected
