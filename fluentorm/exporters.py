# File: fluentorm/exporters.py
"""
FluentORM - Package Exporter
============================

Responsible for:
    1. Creating the output package directory.
    2. Writing generated modules atomically (write-to-temp then rename).
    3. Removing stale generated modules when ``clean_output`` is set.
    4. Producing ``manifest.json`` with sizes, line counts and checksums.

The manifest carries no timestamps and no absolute paths, so exporting the
same input twice leaves every byte of the output unchanged.

Unlike validation problems, I/O failures are not collected: the first
``OSError`` aborts the export and propagates to the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fluentorm.models import GeneratedFile, GenerationConfig
from fluentorm.templates import GENERATED_NOTE
from fluentorm.utils import Timer, atomic_write, ensure_directory

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.exporters")

MANIFEST_NAME: str = "manifest.json"


# ---------------------------------------------------------------------------
# Data classes for export results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FileRecord:
    """Immutable record of a single exported file."""

    relative_path: str
    size_bytes: int
    line_count: int
    sha256: str


@dataclass(frozen=False, slots=True)
class ExportManifest:
    """Deterministic manifest of every exported module."""

    generator_version: str = ""
    runtime_package: str = ""
    tables: List[str] = field(default_factory=list)
    total_files: int = 0
    total_bytes: int = 0
    total_lines: int = 0
    files: List[FileRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generator_version": self.generator_version,
            "runtime_package": self.runtime_package,
            "tables": list(self.tables),
            "total_files": self.total_files,
            "total_bytes": self.total_bytes,
            "total_lines": self.total_lines,
            "files": [
                {
                    "relative_path": f.relative_path,
                    "size_bytes": f.size_bytes,
                    "line_count": f.line_count,
                    "sha256": f.sha256,
                }
                for f in self.files
            ],
        }

    def to_json(self, indent_size: int = 2) -> str:
        """Serialise with sorted keys and a trailing newline."""
        return json.dumps(self.to_dict(), indent=indent_size, sort_keys=True, ensure_ascii=False) + "\n"


@dataclass(frozen=True, slots=True)
class ExportResult:
    """Outcome of ``PackageExporter.export()``."""

    output_dir: str
    manifest: ExportManifest
    changed: Tuple[str, ...]
    unchanged: Tuple[str, ...]
    removed: Tuple[str, ...]
    elapsed_seconds: float


# ---------------------------------------------------------------------------
# PackageExporter class
# ---------------------------------------------------------------------------


class PackageExporter:
    """
    Writes generated files into the output package directory.

    Usage::

        exporter = PackageExporter(config)
        result = exporter.export(files, tables=["users", "posts"])
        print(result.manifest.to_json())
    """

    def __init__(self, config: GenerationConfig, output_dir: Optional[Path] = None) -> None:
        self._config: GenerationConfig = config
        self._output_dir: Path = Path(output_dir if output_dir is not None else config.output_dir)
        logger.debug("PackageExporter initialised: output_dir=%s.", self._output_dir)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def export(
        self,
        files: Sequence[GeneratedFile],
        tables: Sequence[str] = (),
    ) -> ExportResult:
        """
        Write *files* below the output directory.

        Every file is rewritten; ``unchanged`` in the result lists the files
        whose previous content was already identical.

        Raises:
            OSError: On the first failed directory creation, write or removal.
        """
        changed: List[str] = []
        unchanged: List[str] = []
        removed: List[str] = []

        with Timer("export") as timer:
            ensure_directory(self._output_dir)
            if self._config.clean_output:
                removed = self._remove_stale({f.path for f in files})

            for generated in files:
                if self._write_file(generated):
                    changed.append(generated.path)
                else:
                    unchanged.append(generated.path)

            manifest: ExportManifest = self.build_manifest(files, tables)
            if self._config.write_manifest:
                target: Path = self._output_dir / MANIFEST_NAME
                content: str = manifest.to_json()
                atomic_write(target, content)

        logger.info(
            "Export finished: %d file(s) written (%d changed, %d unchanged), %d removed in %.3fs.",
            len(files),
            len(changed),
            len(unchanged),
            len(removed),
            timer.elapsed,
        )
        return ExportResult(
            output_dir=str(self._output_dir),
            manifest=manifest,
            changed=tuple(changed),
            unchanged=tuple(unchanged),
            removed=tuple(removed),
            elapsed_seconds=timer.elapsed,
        )

    def build_manifest(
        self, files: Sequence[GeneratedFile], tables: Sequence[str] = ()
    ) -> ExportManifest:
        import fluentorm

        records: List[FileRecord] = [
            FileRecord(
                relative_path=f.path,
                size_bytes=f.size_bytes,
                line_count=f.line_count,
                sha256=f.checksum,
            )
            for f in sorted(files, key=lambda item: item.path)
        ]
        return ExportManifest(
            generator_version=fluentorm.__version__,
            runtime_package=self._config.runtime_package,
            tables=list(tables),
            total_files=len(records),
            total_bytes=sum(r.size_bytes for r in records),
            total_lines=sum(r.line_count for r in records),
            files=records,
        )

    # -----------------------------------------------------------------
    # Internal: file writing
    # -----------------------------------------------------------------

    @staticmethod
    def _read_existing(path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return None

    def _write_file(self, generated: GeneratedFile) -> bool:
        """Write one file; ``False`` when identical content was already present."""
        target: Path = self._output_dir / generated.path
        changed: bool = self._read_existing(target) != generated.content
        atomic_write(target, generated.content)
        logger.debug(
            "Wrote file: %s (%d bytes, %d lines).",
            generated.path,
            generated.size_bytes,
            generated.line_count,
        )
        return changed

    def _remove_stale(self, keep: set) -> List[str]:
        """Delete generated modules of the output directory that are not in *keep*."""
        removed: List[str] = []
        for item in sorted(self._output_dir.glob("*.py")):
            if item.name in keep:
                continue
            content: Optional[str] = self._read_existing(item)
            if content is None or GENERATED_NOTE not in content:
                continue
            item.unlink()
            removed.append(item.name)
            logger.info("Removed stale module: %s", item.name)
        return removed


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "PackageExporter",
    "ExportManifest",
    "ExportResult",
    "FileRecord",
    "MANIFEST_NAME",
]

logger.debug("fluentorm.exporters loaded — %d public symbols.", len(__all__))
