# File: fluentorm/cli.py
"""
FluentORM - Command-Line Interface
==================================

CLI built with the standard-library ``argparse`` module.

Usage examples::

    # Generate a package from a directory of fragments
    python -m fluentorm generate ./schemas ./app/db

    # Verbose output, stale modules removed, settings from a file
    python -m fluentorm generate ./schemas ./app/db -v --clean --config orm.yaml

    # Validate only (no file output)
    python -m fluentorm validate ./schemas

    # Write fragments for the tables of an existing database
    python -m fluentorm pull ./schemas --database-url postgresql://localhost/app

Exit codes:
    0 — success
    1 — validation error (at least one table rejected)
    2 — generation error
    3 — export error
    4 — input/argument error (including an unreachable database for ``pull``)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, NoReturn, Optional, Sequence

import yaml
from pydantic import ValidationError as PydanticValidationError

if TYPE_CHECKING:
    from fluentorm.executor import Executor
    from fluentorm.generator import GenerationReport
    from fluentorm.models import GenerationConfig

# ---------------------------------------------------------------------------
# Logger (configured in _setup_logging)
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm")


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_SUCCESS: int = 0
EXIT_VALIDATION_ERROR: int = 1
EXIT_GENERATION_ERROR: int = 2
EXIT_EXPORT_ERROR: int = 3
EXIT_INPUT_ERROR: int = 4

DATABASE_URL_ENV: str = "DATABASE_URL"


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(verbosity: int) -> None:
    """
    Configure the ``fluentorm`` logger.

    Args:
        verbosity: -1 = silent, 0 = WARNING, 1 = INFO, 2+ = DEBUG.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    elif verbosity == 0:
        level = logging.WARNING
    else:
        level = logging.CRITICAL + 1

    handler: logging.StreamHandler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
            datefmt="%H:%M:%S",
        )
    )

    root_logger: logging.Logger = logging.getLogger("fluentorm")
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.propagate = False


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "schemas_dir",
        type=str,
        metavar="SCHEMAS_DIR",
        help="Directory of JSON/YAML schema fragments.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        metavar="PATH",
        help="Generation settings file (YAML or JSON).",
    )
    _add_verbosity_arguments(parser)


def _add_verbosity_arguments(parser: argparse.ArgumentParser) -> None:
    verbosity_group = parser.add_argument_group("verbosity")
    verbosity_group.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG).",
    )
    verbosity_group.add_argument(
        "-q", "--quiet",
        action="store_true",
        default=False,
        help="Suppress log output.",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    from fluentorm import __version__

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="fluentorm",
        description=(
            "FluentORM — typed data-access code generator.\n\n"
            "Merges table schema fragments (JSON/YAML), validates them and "
            "writes a Python package with records, CRUD functions and query builders."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s generate ./schemas ./app/db\n"
            "  %(prog)s generate ./schemas --config orm.yaml -v\n"
            "  %(prog)s validate ./schemas\n"
            "  %(prog)s pull ./schemas --include users,posts --report-only\n"
        ),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"FluentORM v{__version__}",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    generate = commands.add_parser("generate", help="Generate the data-access package.")
    _add_common_arguments(generate)
    generate.add_argument(
        "output_dir",
        type=str,
        nargs="?",
        default=None,
        metavar="OUTPUT_DIR",
        help="Output package directory (default: config output_dir, './generated').",
    )

    config_group = generate.add_argument_group("configuration overrides")
    config_group.add_argument(
        "--runtime-package",
        type=str,
        default=None,
        metavar="MODULE",
        help="Import root of the query runtime used by emitted code.",
    )
    config_group.add_argument(
        "--indent-size",
        type=int,
        default=None,
        metavar="N",
        help="Indentation width of emitted code.",
    )
    config_group.add_argument(
        "--no-docstrings",
        action="store_true",
        default=False,
        help="Emit no docstrings.",
    )
    config_group.add_argument(
        "--no-relations",
        action="store_true",
        default=False,
        help="Skip relation-variant records.",
    )
    config_group.add_argument(
        "--no-registry",
        action="store_true",
        default=False,
        help="Skip the cross-table registry module.",
    )
    config_group.add_argument(
        "--no-manifest",
        action="store_true",
        default=False,
        help="Skip manifest.json.",
    )
    config_group.add_argument(
        "--clean",
        action="store_true",
        default=False,
        help="Remove generated modules of tables that no longer exist.",
    )

    validate = commands.add_parser("validate", help="Merge and validate fragments only.")
    _add_common_arguments(validate)

    pull = commands.add_parser(
        "pull", help="Write schema fragments for the tables of an existing database."
    )
    pull.add_argument(
        "schemas_dir",
        type=str,
        metavar="SCHEMAS_DIR",
        help="Directory the fragments are written to.",
    )
    pull.add_argument(
        "-d", "--database-url",
        type=str,
        default=None,
        metavar="URL",
        help=f"PostgreSQL connection URL (default: ${DATABASE_URL_ENV}).",
    )
    pull.add_argument(
        "-s", "--schema",
        type=str,
        default="public",
        metavar="NAME",
        help="Database schema to read (default: public).",
    )
    pull.add_argument(
        "--include",
        type=_table_list,
        default=None,
        metavar="TABLES",
        help="Comma-separated tables to pull; all others are skipped.",
    )
    pull.add_argument(
        "--exclude",
        type=_table_list,
        default=[],
        metavar="TABLES",
        help="Comma-separated tables to skip.",
    )
    pull.add_argument(
        "--report-only",
        action="store_true",
        default=False,
        help="Print the introspection report without writing fragments.",
    )
    _add_verbosity_arguments(pull)

    return parser


def _table_list(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _load_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON settings mapping; JSON is parsed as YAML."""
    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Expected a mapping at top level of {path}, got {type(data).__name__}."
        )
    return data


def _build_config_overrides(args: argparse.Namespace) -> Dict[str, object]:
    """Build a config override dictionary from CLI arguments."""
    overrides: Dict[str, object] = {}

    if getattr(args, "output_dir", None) is not None:
        overrides["output_dir"] = args.output_dir
    if getattr(args, "runtime_package", None) is not None:
        overrides["runtime_package"] = args.runtime_package
    if getattr(args, "indent_size", None) is not None:
        overrides["indent_size"] = args.indent_size
    if getattr(args, "no_docstrings", False):
        overrides["generate_docstrings"] = False
    if getattr(args, "no_relations", False):
        overrides["generate_relations"] = False
    if getattr(args, "no_registry", False):
        overrides["generate_registry"] = False
    if getattr(args, "no_manifest", False):
        overrides["write_manifest"] = False
    if getattr(args, "clean", False):
        overrides["clean_output"] = True

    return overrides


def build_config(args: argparse.Namespace) -> GenerationConfig:
    """
    Resolve the generation settings: CLI flags, then ``--config``, then defaults.

    Raises:
        ValueError: If the config file can't be read or the settings are invalid.
    """
    from fluentorm.models import GenerationConfig

    data: Dict[str, Any] = {}
    if args.config is not None:
        config_path: Path = Path(args.config)
        if not config_path.is_file():
            raise ValueError(f"Config file not found: {config_path}")
        data.update(_load_config_file(config_path))
    data.update(_build_config_overrides(args))

    try:
        return GenerationConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ValueError(f"Config validation failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def _print_table_details(report: GenerationReport) -> None:
    """Per-table problems go to stderr."""
    for error in report.input_errors:
        print(f"✗ {error}", file=sys.stderr)
    for name in report.rejected_tables:
        print(f"✗ table '{name}' rejected", file=sys.stderr)
        for err in report.table_results[name].errors:
            print(f"    [{err.code}] {err.message}", file=sys.stderr)
    for warning in report.validation_warnings:
        print(f"⚠ {warning}", file=sys.stderr)


def exit_code_for(report: GenerationReport) -> int:
    """Map a pipeline report to a process exit code."""
    if report.success:
        return EXIT_SUCCESS
    if report.input_errors:
        return EXIT_INPUT_ERROR
    if report.export_errors:
        return EXIT_EXPORT_ERROR
    if report.generation_errors:
        return EXIT_GENERATION_ERROR
    return EXIT_VALIDATION_ERROR


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _run_validate(schemas_dir: Path) -> int:
    from fluentorm.registry import SchemaRegistry
    from fluentorm.validators import validate_registry

    try:
        registry: SchemaRegistry = SchemaRegistry.from_directory(schemas_dir)
    except (FileNotFoundError, NotADirectoryError) as exc:
        logger.error("Cannot read schemas: %s", exc)
        return EXIT_INPUT_ERROR

    outcome = validate_registry(registry)

    print(f"\n{'='*50}")
    print("  Schema Validation Report")
    print(f"{'='*50}")
    print(f"  Directory: {schemas_dir}")
    print(f"  Tables:    {len(registry)}")
    print(f"  Accepted:  {len(outcome.accepted)}")
    print(f"  Rejected:  {len(outcome.rejected)}")
    for name, result in outcome.results.items():
        if len(result):
            print(f"\n  {name}: {result.format_report()}")
    print(f"{'='*50}\n")

    for error in registry.input_errors:
        print(f"✗ {error}", file=sys.stderr)
    if registry.input_errors:
        return EXIT_INPUT_ERROR
    return EXIT_SUCCESS if outcome.is_valid else EXIT_VALIDATION_ERROR


def _run_generation(schemas_dir: Path, args: argparse.Namespace) -> int:
    from fluentorm.generator import Generator, GenerationReport

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_INPUT_ERROR

    logger.info("Schemas: %s", schemas_dir)
    logger.info("Output:  %s", config.output_dir)

    report: GenerationReport = Generator(config).generate_from_directory(schemas_dir)
    print(report.summary())
    _print_table_details(report)
    return exit_code_for(report)


@contextmanager
def open_executor(database_url: str) -> Iterator[Executor]:
    """Pool-backed executor for a short-lived command; the pool is closed on exit."""
    from psycopg_pool import ConnectionPool

    from fluentorm.executor import PoolExecutor

    pool: ConnectionPool = ConnectionPool(
        conninfo=database_url, min_size=1, max_size=2, open=False, name="fluentorm-pull"
    )
    try:
        pool.open(wait=True, timeout=10.0)
        yield PoolExecutor(pool)
    finally:
        pool.close()


def _run_pull(schemas_dir: Path, args: argparse.Namespace) -> int:
    import psycopg

    from fluentorm.errors import QueryError
    from fluentorm.introspection import IntrospectionError, IntrospectionReport, pull_schema

    database_url: Optional[str] = args.database_url or os.environ.get(DATABASE_URL_ENV)
    if not database_url:
        logger.error("No database URL given.")
        print(
            f"✗ No database URL: pass --database-url or set {DATABASE_URL_ENV}.",
            file=sys.stderr,
        )
        return EXIT_INPUT_ERROR

    logger.info("Schema:  %s", args.schema)
    logger.info("Output:  %s", schemas_dir)

    try:
        with open_executor(database_url) as db:
            report: IntrospectionReport = pull_schema(
                db,
                schemas_dir,
                schema_name=args.schema,
                include=args.include,
                exclude=args.exclude,
                dry_run=args.report_only,
            )
    except (IntrospectionError, QueryError, psycopg.Error) as exc:
        logger.error("Introspection failed: %s", exc)
        print(f"✗ {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except OSError as exc:
        logger.error("Cannot write fragments: %s", exc)
        print(f"✗ {exc}", file=sys.stderr)
        return EXIT_EXPORT_ERROR

    print(report.summary())
    return EXIT_SUCCESS


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def cli_main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """
    Main CLI entry point.

    Can be called from ``__main__.py`` or directly for testing.
    """
    parser: argparse.ArgumentParser = _build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    verbosity: int = -1 if args.quiet else args.verbose
    _setup_logging(verbosity)

    schemas_dir: Path = Path(args.schemas_dir)
    if args.command != "pull" and not schemas_dir.is_dir():
        logger.error("Schemas directory not found: %s", schemas_dir)
        print(f"✗ Schemas directory not found: {schemas_dir}", file=sys.stderr)
        sys.exit(EXIT_INPUT_ERROR)

    if args.command == "pull":
        exit_code: int = _run_pull(schemas_dir, args)
    elif args.command == "validate":
        exit_code = _run_validate(schemas_dir)
    else:
        exit_code = _run_generation(schemas_dir, args)

    if exit_code == EXIT_SUCCESS:
        logger.info("Completed successfully.")
    else:
        logger.error("Failed with exit code %d.", exit_code)
    sys.exit(exit_code)


def main() -> None:
    """Console-script entry point."""
    cli_main()


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "cli_main",
    "main",
    "build_config",
    "exit_code_for",
    "open_executor",
    "EXIT_SUCCESS",
    "EXIT_VALIDATION_ERROR",
    "EXIT_GENERATION_ERROR",
    "EXIT_EXPORT_ERROR",
    "EXIT_INPUT_ERROR",
]

logger.debug("fluentorm.cli loaded — %d public symbols.", len(__all__))
