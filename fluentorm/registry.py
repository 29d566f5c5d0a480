# File: fluentorm/registry.py
"""
FluentORM - Schema Registry & Merger
=====================================
Discovers schema fragments, groups them by table name and folds every group
into exactly one canonical ``TableSchema``.

Merge algorithm for one table::

    1. Start from an empty field list.
    2. Apply each fragment's fields, relationships and indexes in
       registration order.  Two fragments declaring the same base field is
       ambiguous and raises ``DuplicateFieldError``.
    3. Fold every alter into the field list by name, keeping the original
       position.  The last alter for a name wins; alters for unknown names
       are ignored with a warning.

The registry is an explicit value threaded through the pipeline.  Iterating
it merges on demand, so the same registry can be consumed any number of
times without side effects.

Fragment files are read non-recursively from one directory in filename
order, which makes numeric prefixes (``01_users.json``,
``07_users_extra.json``) the way to order alters deterministically.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from fluentorm.models import FieldDef, IndexDef, RelationshipDef, SchemaFragment, TableSchema

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.registry")

FRAGMENT_SUFFIXES: tuple = (".json", ".yaml", ".yml")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FragmentError(ValueError):
    """A fragment that could not be read or does not match the input format."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        table_name: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.source: Optional[str] = source
        self.table_name: Optional[str] = table_name
        origin: str = source or "<memory>"
        super().__init__(f"{origin}: {message}")


class DuplicateFieldError(ValueError):
    """Two base contributions declare the same field for one table."""

    def __init__(self, table_name: str, field_name: str, sources: List[str]) -> None:
        self.table_name: str = table_name
        self.field_name: str = field_name
        self.sources: List[str] = sources
        super().__init__(
            f"Table '{table_name}': field '{field_name}' is declared by more than "
            f"one fragment ({', '.join(sources)}). Use 'alters' to override a field."
        )


# ---------------------------------------------------------------------------
# Fragment loading
# ---------------------------------------------------------------------------


def _load_json_file(path: Path) -> Dict[str, Any]:
    """Load and parse a JSON file. Raises FragmentError on parse errors."""
    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise FragmentError(f"Invalid JSON: {exc}", source=path.name) from exc
    if not isinstance(data, dict):
        raise FragmentError(
            f"Expected a JSON object at top level, got {type(data).__name__}.",
            source=path.name,
        )
    return data


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load and parse a YAML file. Raises FragmentError on parse errors."""
    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise FragmentError(f"Invalid YAML: {exc}", source=path.name) from exc
    if not isinstance(data, dict):
        raise FragmentError(
            f"Expected a YAML mapping at top level, got {type(data).__name__}.",
            source=path.name,
        )
    return data


def load_fragment_file(path: Path) -> Dict[str, Any]:
    """
    Load one fragment file (JSON or YAML), dispatching on the extension.

    Raises:
        FragmentError: If the file can't be parsed or isn't a mapping.
    """
    if path.suffix.lower() in (".yaml", ".yml"):
        return _load_yaml_file(path)
    return _load_json_file(path)


def discover_fragment_files(directory: Path) -> List[Path]:
    """
    Fragment files directly inside *directory*, sorted by file name.

    Hidden files and unknown extensions are skipped.

    Raises:
        FileNotFoundError: If *directory* doesn't exist or isn't a directory.
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Schemas directory not found: {directory}")
    files: List[Path] = [
        p
        for p in directory.iterdir()
        if p.is_file()
        and not p.name.startswith(".")
        and p.suffix.lower() in FRAGMENT_SUFFIXES
    ]
    files.sort(key=lambda p: p.name)
    logger.debug("Discovered %d fragment file(s) in %s", len(files), directory)
    return files


def _format_pydantic_error(exc: PydanticValidationError) -> str:
    parts: List[str] = []
    for err in exc.errors():
        loc: str = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_fragment(data: Dict[str, Any], source: Optional[str] = None) -> SchemaFragment:
    """
    Validate a raw mapping into a ``SchemaFragment``.

    Raises:
        FragmentError: Carrying the table name whenever it is readable.
    """
    try:
        fragment: SchemaFragment = SchemaFragment.model_validate(data)
    except PydanticValidationError as exc:
        table_name: Any = data.get("table_name")
        raise FragmentError(
            _format_pydantic_error(exc),
            source=source,
            table_name=table_name if isinstance(table_name, str) and table_name else None,
        ) from exc
    fragment.source = source
    return fragment


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=False, slots=True)
class TableEntry:
    """All contributions registered for one table name, in registration order."""

    table_name: str
    fragments: List[SchemaFragment] = field(default_factory=list)
    errors: List[FragmentError] = field(default_factory=list)

    @property
    def sources(self) -> List[str]:
        return [f.source or "<memory>" for f in self.fragments]


class SchemaRegistry:
    """
    Ordered collection of ``TableEntry`` objects keyed by table name.

    Tables keep the order in which they were first seen.
    """

    __slots__ = ("_entries", "input_errors")

    def __init__(self) -> None:
        self._entries: Dict[str, TableEntry] = {}
        self.input_errors: List[FragmentError] = []

    # -- Construction -------------------------------------------------------

    @classmethod
    def from_fragments(
        cls, fragments: Iterable[Union[SchemaFragment, Dict[str, Any]]]
    ) -> "SchemaRegistry":
        """Build a registry from fragment models or raw mappings."""
        registry = cls()
        for item in fragments:
            if isinstance(item, SchemaFragment):
                registry.register(item)
                continue
            try:
                registry.register(parse_fragment(item))
            except FragmentError as exc:
                registry.register_error(exc)
        return registry

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "SchemaRegistry":
        """
        Build a registry from every fragment file in *directory*.

        Unreadable files are recorded, not raised: against their table when
        its name is readable, otherwise in ``input_errors``.

        Raises:
            FileNotFoundError: If the directory doesn't exist.
        """
        registry = cls()
        for path in discover_fragment_files(Path(directory)):
            try:
                data: Dict[str, Any] = load_fragment_file(path)
            except FragmentError as exc:
                registry.register_error(exc)
                continue
            try:
                registry.register(parse_fragment(data, source=path.name))
            except FragmentError as exc:
                registry.register_error(exc)
        logger.info(
            "Loaded %d table(s) from %s (%d unreadable file(s)).",
            len(registry),
            directory,
            len(registry.input_errors),
        )
        return registry

    def register(self, fragment: SchemaFragment) -> TableEntry:
        """Append *fragment* to the entry for its table, creating it if new."""
        entry: TableEntry = self._entry_for(fragment.table_name)
        entry.fragments.append(fragment)
        logger.debug("Registered %r", fragment)
        return entry

    def register_error(self, error: FragmentError) -> None:
        """Record a malformed fragment against its table, or as an input error."""
        if error.table_name:
            self._entry_for(error.table_name).errors.append(error)
        else:
            self.input_errors.append(error)
        logger.warning("Malformed fragment: %s", error)

    def _entry_for(self, table_name: str) -> TableEntry:
        entry: Optional[TableEntry] = self._entries.get(table_name)
        if entry is None:
            entry = TableEntry(table_name=table_name)
            self._entries[table_name] = entry
        return entry

    # -- Access -------------------------------------------------------------

    @property
    def entries(self) -> List[TableEntry]:
        return list(self._entries.values())

    @property
    def table_names(self) -> List[str]:
        return list(self._entries.keys())

    def get_entry(self, table_name: str) -> Optional[TableEntry]:
        return self._entries.get(table_name)

    def __contains__(self, table_name: object) -> bool:
        return table_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TableSchema]:
        return self.schemas()

    def schemas(self) -> Iterator[TableSchema]:
        """Lazily yield one canonical schema per table, merging on demand."""
        for entry in list(self._entries.values()):
            yield self.merge_table(entry)

    # -- Merging ------------------------------------------------------------

    def merge_table(self, entry: Union[TableEntry, str]) -> TableSchema:
        """
        Fold all contributions for one table into a canonical ``TableSchema``.

        Raises:
            FragmentError: If a fragment for this table was malformed.
            DuplicateFieldError: If two base contributions share a field name.
            KeyError: If *entry* names an unknown table.
        """
        if isinstance(entry, str):
            entry = self._entries[entry]
        if entry.errors:
            raise entry.errors[0]

        fields: List[FieldDef] = []
        positions: Dict[str, int] = {}
        owners: Dict[str, str] = {}
        relationships: List[RelationshipDef] = []
        indexes: List[IndexDef] = []
        alters: List[FieldDef] = []
        struct_name: Optional[str] = None

        for fragment in entry.fragments:
            origin: str = fragment.source or "<memory>"
            if struct_name is None and fragment.struct_name:
                struct_name = fragment.struct_name
            for f in fragment.fields:
                if f.name in positions:
                    raise DuplicateFieldError(entry.table_name, f.name, [owners[f.name], origin])
                positions[f.name] = len(fields)
                owners[f.name] = origin
                fields.append(f)
            relationships.extend(fragment.relationships)
            indexes.extend(fragment.indexes)
            alters.extend(fragment.alters)

        applied: List[FieldDef] = []
        for alter in alters:
            position: Optional[int] = positions.get(alter.name)
            if position is None:
                logger.warning(
                    "Table '%s': ignoring alter for unknown field '%s'.",
                    entry.table_name,
                    alter.name,
                )
                continue
            fields[position] = alter
            applied.append(alter)

        schema = TableSchema(
            name=entry.table_name,
            struct_name=struct_name,
            fields=fields,
            relationships=relationships,
            indexes=indexes,
            alters=applied,
        )
        logger.debug("Merged %r from %d fragment(s)", schema, len(entry.fragments))
        return schema

    def __repr__(self) -> str:
        return (
            f"<SchemaRegistry {len(self._entries)} tables, "
            f"{len(self.input_errors)} input errors>"
        )


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "FRAGMENT_SUFFIXES",
    "FragmentError",
    "DuplicateFieldError",
    "load_fragment_file",
    "discover_fragment_files",
    "parse_fragment",
    "TableEntry",
    "SchemaRegistry",
]

logger.debug("fluentorm.registry loaded — %d public symbols.", len(__all__))
