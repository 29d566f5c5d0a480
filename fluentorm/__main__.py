# File: fluentorm/__main__.py
"""
FluentORM — Module entry point.

Allows running the generator directly via::

    python -m fluentorm generate ./schemas ./generated

This module simply delegates to the CLI entry point defined in ``fluentorm.cli``.
"""

from __future__ import annotations


def main() -> None:
    """Delegate to the CLI main function."""
    from fluentorm.cli import cli_main
    cli_main()


if __name__ == "__main__":
    main()
