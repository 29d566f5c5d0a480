# File: fluentorm/utils.py
"""
FluentORM - Naming Engine & Utility Helpers
============================================
Deterministic string transforms used to name generated records, members,
relation variants and query builders, plus the small file-I/O and
code-formatting helpers shared by the generation pipeline.

Every naming function is referentially transparent: generated modules are
diffed and reviewed by humans, so the same schema must always yield the same
identifiers.  The transforms are cached with ``functools.lru_cache`` because
the template engine asks for the same names many times per table.

Known limitation: ``singularize`` only strips a single trailing ``s``.
Irregular plurals (``people``, ``indices``) and words ending in ``s``
(``bus`` → ``bu``) are not special-cased.
"""

from __future__ import annotations

import functools
import hashlib
import keyword
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Set

if TYPE_CHECKING:
    from fluentorm.models import RelationshipDef

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.utils")

# ---------------------------------------------------------------------------
# Pre-compiled patterns
# ---------------------------------------------------------------------------

_IDENTIFIER_RE: re.Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# ---------------------------------------------------------------------------
# Naming / normalization engine
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=None)
def singularize(name: str) -> str:
    """
    Strip a single trailing ``s`` when the name is longer than one character.

    Examples:
        >>> singularize("posts")
        'post'
        >>> singularize("bus")
        'bu'
        >>> singularize("s")
        's'
    """
    if len(name) > 1 and name.endswith("s"):
        return name[:-1]
    return name


@functools.lru_cache(maxsize=None)
def to_pascal_case(name: str, singular: bool = False) -> str:
    """
    Split on underscores and upper-case the first letter of each segment.

    The rest of every segment is kept as written, so ``HTTPServer`` and
    ``h_t_t_p_server`` both render as ``HTTPServer``.  With *singular* the
    whole name is singularized first.

    Examples:
        >>> to_pascal_case("user_profiles")
        'UserProfiles'
        >>> to_pascal_case("user_profiles", singular=True)
        'UserProfile'
    """
    if singular:
        name = singularize(name)
    return "".join(segment[:1].upper() + segment[1:] for segment in name.split("_"))


@functools.lru_cache(maxsize=None)
def to_snake_case(name: str) -> str:
    """
    Insert ``_`` before every upper-case letter after the first character,
    then lower-case everything.

    Examples:
        >>> to_snake_case("UserProfile")
        'user_profile'
        >>> to_snake_case("already_snake")
        'already_snake'
    """
    chars: List[str] = []
    for index, char in enumerate(name):
        if char.isupper() and index > 0:
            chars.append("_")
        chars.append(char.lower())
    return "".join(chars)


@functools.lru_cache(maxsize=None)
def strip_id_suffix(column: str) -> str:
    """``author_id`` → ``author``; names without the suffix are returned as-is."""
    if column.endswith("_id") and len(column) > 3:
        return column[:-3]
    return column


@functools.lru_cache(maxsize=None)
def column_to_association_name(column: str, table_name: str, is_plural: bool) -> str:
    """
    Name the association a relationship column points at.

    For the reverse column ``id`` the table name is used, kept plural for
    one-to-many associations and singularized otherwise.  Any other column
    loses its ``_id`` suffix and is pascal-cased.

    Examples:
        >>> column_to_association_name("id", "posts", True)
        'Posts'
        >>> column_to_association_name("id", "profiles", False)
        'Profile'
        >>> column_to_association_name("author_id", "users", False)
        'Author'
    """
    if column == "id":
        return to_pascal_case(table_name, singular=not is_plural)
    return to_pascal_case(strip_id_suffix(column))


@functools.lru_cache(maxsize=None)
def relationship_field_name(column: str, references_table: str, relationship_type: str) -> str:
    """
    Member name under which a relation is embedded in a relation variant.

    - ``one_to_many`` / ``many_to_many``: the referenced table name verbatim.
    - reverse relationships (``column == "id"``): the singularized table name.
    - forward relationships: the column without its ``_id`` suffix.
    """
    if relationship_type in ("one_to_many", "many_to_many"):
        return references_table
    if column == "id":
        return singularize(references_table)
    return strip_id_suffix(column)


def relationship_to_field_name(relationship: RelationshipDef) -> str:
    """Convenience wrapper taking a ``RelationshipDef`` model."""
    return relationship_field_name(
        relationship.column,
        relationship.references_table,
        str(relationship.relationship_type),
    )


@functools.lru_cache(maxsize=None)
def is_identifier(name: str) -> bool:
    """True for names usable both as SQL identifiers and Python names."""
    return bool(_IDENTIFIER_RE.match(name))


@functools.lru_cache(maxsize=None)
def is_python_keyword(name: str) -> bool:
    return keyword.iskeyword(name)


# ---------------------------------------------------------------------------
# Code formatting helpers
# ---------------------------------------------------------------------------


def py_string(value: str) -> str:
    """Render *value* as a double-quoted Python string literal."""
    escaped: str = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_import_block(imports: Dict[str, Set[str]]) -> str:
    """
    Build a sorted, de-duplicated import block from a mapping of
    module → set of names.  An empty name set renders ``import module``.

    Example:
        >>> build_import_block({"typing": {"List", "Optional"}, "uuid": {"UUID"}})
        'from typing import List, Optional\\nfrom uuid import UUID'
    """
    lines: List[str] = []
    for module in sorted(imports.keys()):
        names: List[str] = sorted(imports[module])
        if names:
            lines.append(f"from {module} import {', '.join(names)}")
        else:
            lines.append(f"import {module}")
    return "\n".join(lines)


def merge_import_dicts(*dicts: Dict[str, Set[str]]) -> Dict[str, Set[str]]:
    """Merge multiple import dictionaries into one, unifying sets."""
    result: Dict[str, Set[str]] = {}
    for d in dicts:
        for module, names in d.items():
            result.setdefault(module, set()).update(names)
    return result


# ---------------------------------------------------------------------------
# File I/O helpers
# ---------------------------------------------------------------------------


def ensure_directory(path: Path) -> None:
    """Create directory (and parents) if it doesn't exist."""
    path.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured directory exists: %s", path)


def atomic_write(path: Path, content: str) -> int:
    """
    Write *content* to *path* through a temporary file in the same directory
    followed by ``os.replace``.  Returns the number of bytes written.

    Errors propagate; the temporary file is removed on failure.
    """
    ensure_directory(path.parent)
    encoded: bytes = content.encode("utf-8")

    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(encoded)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise

    logger.debug("Wrote %d bytes to %s", len(encoded), path)
    return len(encoded)


def sha256_hex(content: str) -> str:
    """Return SHA-256 hex digest of a string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def count_lines(content: str) -> int:
    """Count the number of lines in a string."""
    if not content:
        return 0
    return content.count("\n") + (1 if not content.endswith("\n") else 0)


# ---------------------------------------------------------------------------
# Timer context manager
# ---------------------------------------------------------------------------


class Timer:
    """
    Context-manager timer for profiling pipeline steps.

    Usage:
        with Timer("merge") as t:
            ...
        print(t.elapsed)
    """

    __slots__ = ("label", "start_time", "end_time", "elapsed")

    def __init__(self, label: str = "operation") -> None:
        self.label: str = label
        self.start_time: float = 0.0
        self.end_time: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        self.end_time = time.perf_counter()
        self.elapsed = self.end_time - self.start_time
        logger.debug("Timer [%s]: %.4f seconds", self.label, self.elapsed)

    def __repr__(self) -> str:
        return f"<Timer {self.label}: {self.elapsed:.4f}s>"


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "singularize",
    "to_pascal_case",
    "to_snake_case",
    "strip_id_suffix",
    "column_to_association_name",
    "relationship_field_name",
    "relationship_to_field_name",
    "is_identifier",
    "is_python_keyword",
    "py_string",
    "build_import_block",
    "merge_import_dicts",
    "ensure_directory",
    "atomic_write",
    "sha256_hex",
    "count_lines",
    "Timer",
]

logger.debug("fluentorm.utils loaded — %d public symbols.", len(__all__))
