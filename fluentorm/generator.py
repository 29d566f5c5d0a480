# File: fluentorm/generator.py
"""
FluentORM - Generation Pipeline (Orchestrator)
==============================================

Connects every phase together:

    Fragment files → Registry/Merge → Validation → Template Generation → Export

Workflow::

    1. Discover and load fragment files into a ``SchemaRegistry``.
    2. Merge and validate every table (``validate_registry``).
    3. Generate one module per accepted table, plus registry and ``__init__``.
    4. Hand the files to ``PackageExporter``.
    5. Return a ``GenerationReport`` with per-table results and step metrics.

Error handling strategy:
    - A rejected table writes no file; sibling tables are still generated.
    - Any rejected table or unreadable input makes the run unsuccessful.
    - Generation errors abort the export so no partial package is written.
    - Export I/O errors are recorded on the report.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from fluentorm.exporters import ExportManifest, ExportResult, PackageExporter
from fluentorm.models import GeneratedFile, GenerationConfig, TableSchema
from fluentorm.registry import SchemaRegistry
from fluentorm.templates import TemplateGenerator
from fluentorm.utils import Timer
from fluentorm.validators import RegistryValidation, ValidationResult, validate_registry

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("fluentorm.generator")


# ---------------------------------------------------------------------------
# Generation report
# ---------------------------------------------------------------------------


@dataclass(frozen=False, slots=True)
class GenerationStepMetric:
    """Timing and outcome for a single pipeline step."""

    step_name: str = ""
    success: bool = True
    elapsed_seconds: float = 0.0
    detail: str = ""


@dataclass(frozen=False, slots=True)
class GenerationReport:
    """
    Report produced by ``Generator.generate()``.

    ``table_results`` holds the validation result of every table seen,
    accepted or not, keyed by table name in discovery order.
    """

    success: bool = False
    schemas_directory: str = ""
    output_directory: str = ""

    accepted_tables: List[str] = field(default_factory=list)
    rejected_tables: List[str] = field(default_factory=list)
    table_results: Dict[str, ValidationResult] = field(default_factory=dict)

    input_errors: List[str] = field(default_factory=list)
    generation_errors: List[str] = field(default_factory=list)
    export_errors: List[str] = field(default_factory=list)

    total_files: int = 0
    total_bytes: int = 0
    total_lines: int = 0
    total_elapsed_seconds: float = 0.0

    step_metrics: List[GenerationStepMetric] = field(default_factory=list)
    files: List[GeneratedFile] = field(default_factory=list)
    manifest: Optional[ExportManifest] = None

    @property
    def validation_warnings(self) -> List[str]:
        return [
            f"{name}: {item}"
            for name, result in self.table_results.items()
            for item in result.warnings
        ]

    def summary(self) -> str:
        """Return a human-readable summary string."""
        lines: List[str] = []
        status: str = "✅ SUCCESS" if self.success else "❌ FAILED"
        lines.append(f"{'='*60}")
        lines.append("  FluentORM — Generation Report")
        lines.append(f"{'='*60}")
        lines.append(f"  Status:           {status}")
        lines.append(f"  Schemas:          {self.schemas_directory}")
        lines.append(f"  Output:           {self.output_directory}")
        lines.append(f"  Tables accepted:  {len(self.accepted_tables)}")
        lines.append(f"  Tables rejected:  {len(self.rejected_tables)}")
        lines.append(f"  Files generated:  {self.total_files}")
        lines.append(f"  Total lines:      {self.total_lines:,}")
        lines.append(f"  Total time:       {self.total_elapsed_seconds:.3f}s")
        lines.append(f"{'─'*60}")

        if self.step_metrics:
            lines.append("  Pipeline Steps:")
            for step in self.step_metrics:
                icon: str = "✓" if step.success else "✗"
                lines.append(
                    f"    {icon} {step.step_name:<28s} "
                    f"{step.elapsed_seconds:>7.3f}s  "
                    f"{step.detail}"
                )

        for title, items, icon in (
            ("Input Errors", self.input_errors, "✗"),
            ("Generation Errors", self.generation_errors, "✗"),
            ("Export Errors", self.export_errors, "✗"),
            ("Validation Warnings", self.validation_warnings, "⚠"),
        ):
            if items:
                lines.append(f"{'─'*60}")
                lines.append(f"  {title} ({len(items)}):")
                for item in items:
                    lines.append(f"    {icon} {item}")

        if self.rejected_tables:
            lines.append(f"{'─'*60}")
            lines.append(f"  Rejected Tables ({len(self.rejected_tables)}):")
            for name in self.rejected_tables:
                lines.append(f"    ⊘ {name}")
                for err in self.table_results[name].errors:
                    lines.append(f"        [{err.code}] {err.message}")

        lines.append(f"{'='*60}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Generator: pipeline orchestrator
# ---------------------------------------------------------------------------


class Generator:
    """
    Pipeline orchestrator.

    Usage::

        generator = Generator(GenerationConfig(output_dir="./app/db"))
        report = generator.generate_from_directory(Path("./schemas"))
        print(report.summary())

    The generator is reusable; every call starts from a fresh registry.
    """

    def __init__(self, config: Optional[GenerationConfig] = None) -> None:
        self._config: GenerationConfig = config if config is not None else GenerationConfig()
        self._templates: TemplateGenerator = TemplateGenerator(self._config)

    @property
    def config(self) -> GenerationConfig:
        return self._config

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def generate_from_directory(
        self,
        schemas_dir: Union[str, Path],
        output_dir: Optional[Union[str, Path]] = None,
    ) -> GenerationReport:
        """Full pipeline: discover → merge → validate → generate → export."""
        pipeline_start: float = time.perf_counter()
        report: GenerationReport = GenerationReport(schemas_directory=str(schemas_dir))

        with Timer("load_fragments") as t_load:
            try:
                registry: SchemaRegistry = SchemaRegistry.from_directory(schemas_dir)
            except (FileNotFoundError, NotADirectoryError) as exc:
                report.input_errors.append(str(exc))
                logger.error("Cannot read schemas: %s", exc)
                registry = SchemaRegistry()

        report.step_metrics.append(GenerationStepMetric(
            step_name="Load Fragments",
            success=not report.input_errors,
            elapsed_seconds=t_load.elapsed,
            detail=f"{len(registry)} table(s)",
        ))
        if report.input_errors:
            return self._finalise_report(report, time.perf_counter() - pipeline_start)

        return self._run_pipeline(registry, output_dir, report, pipeline_start)

    def generate(
        self,
        registry: SchemaRegistry,
        output_dir: Optional[Union[str, Path]] = None,
    ) -> GenerationReport:
        """Pipeline from an already populated registry."""
        return self._run_pipeline(registry, output_dir, GenerationReport(), time.perf_counter())

    def render(self, registry: SchemaRegistry) -> Tuple[RegistryValidation, List[GeneratedFile]]:
        """Validate and generate in memory without touching the filesystem."""
        validation: RegistryValidation = validate_registry(registry)
        return validation, self._render_files(validation)

    # -----------------------------------------------------------------
    # Internal: master pipeline
    # -----------------------------------------------------------------

    def _run_pipeline(
        self,
        registry: SchemaRegistry,
        output_dir: Optional[Union[str, Path]],
        report: GenerationReport,
        pipeline_start: float,
    ) -> GenerationReport:
        target: Path = Path(output_dir if output_dir is not None else self._config.output_dir)
        report.output_directory = str(target)

        for error in registry.input_errors:
            report.input_errors.append(str(error))
            logger.error("Unreadable fragment: %s", error)

        # --- Step: Validation ---
        with Timer("validation") as t_val:
            validation: RegistryValidation = validate_registry(registry)
        report.table_results = dict(validation.results)
        report.accepted_tables = list(validation.accepted)
        report.rejected_tables = list(validation.rejected)
        for name in validation.rejected:
            logger.error("Table '%s' rejected:\n%s", name, validation.results[name].format_report())
        report.step_metrics.append(GenerationStepMetric(
            step_name="Validate Tables",
            success=validation.is_valid,
            elapsed_seconds=t_val.elapsed,
            detail=f"{len(validation.accepted)} accepted, {len(validation.rejected)} rejected",
        ))

        # --- Step: Code generation ---
        with Timer("code_generation") as t_gen:
            try:
                files: List[GeneratedFile] = self._render_files(validation)
            except (KeyError, ValueError) as exc:
                error_msg: str = f"Generation failed: {type(exc).__name__}: {exc}"
                report.generation_errors.append(error_msg)
                logger.error(error_msg, exc_info=True)
                files = []
        report.files = files
        report.step_metrics.append(GenerationStepMetric(
            step_name="Code Generation",
            success=not report.generation_errors,
            elapsed_seconds=t_gen.elapsed,
            detail=f"{len(files)} file(s)",
        ))
        if report.generation_errors:
            return self._finalise_report(report, time.perf_counter() - pipeline_start)

        # --- Step: Export ---
        self._step_export(files, validation.accepted, target, report)
        return self._finalise_report(report, time.perf_counter() - pipeline_start)

    def _render_files(self, validation: RegistryValidation) -> List[GeneratedFile]:
        accepted: List[TableSchema] = validation.accepted_schemas()
        known: Dict[str, TableSchema] = {s.name: s for s in accepted}
        files: List[GeneratedFile] = [
            GeneratedFile(
                path=f"{schema.name}.py",
                content=self._templates.generate_table_module(schema, known),
                table_name=schema.name,
            )
            for schema in accepted
        ]
        if self._config.generate_registry:
            files.append(GeneratedFile(
                path="registry.py", content=self._templates.generate_registry(accepted)
            ))
        files.append(GeneratedFile(
            path="__init__.py", content=self._templates.generate_init(accepted)
        ))
        logger.info("Code generation complete: %d file(s) for %d table(s).", len(files), len(accepted))
        return files

    def _step_export(
        self,
        files: List[GeneratedFile],
        tables: List[str],
        output_dir: Path,
        report: GenerationReport,
    ) -> None:
        """Write all generated files to the filesystem."""
        exporter: PackageExporter = PackageExporter(self._config, output_dir)
        with Timer("export") as t:
            try:
                result: Optional[ExportResult] = exporter.export(files, tables)
            except OSError as exc:
                error_msg: str = f"Export failed: {type(exc).__name__}: {exc}"
                report.export_errors.append(error_msg)
                logger.error(error_msg)
                result = None

        if result is not None:
            report.manifest = result.manifest
            report.total_files = result.manifest.total_files
            report.total_bytes = result.manifest.total_bytes
            report.total_lines = result.manifest.total_lines
        report.step_metrics.append(GenerationStepMetric(
            step_name="Export to Filesystem",
            success=result is not None,
            elapsed_seconds=t.elapsed,
            detail=(
                f"{len(result.changed)} changed, {len(result.unchanged)} unchanged"
                if result is not None
                else "aborted"
            ),
        ))

    @staticmethod
    def _finalise_report(report: GenerationReport, total_elapsed: float) -> GenerationReport:
        report.total_elapsed_seconds = total_elapsed
        report.success = not (
            report.input_errors
            or report.rejected_tables
            or report.generation_errors
            or report.export_errors
        )
        return report


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "Generator",
    "GenerationReport",
    "GenerationStepMetric",
]

logger.debug("fluentorm.generator loaded — %d public symbols.", len(__all__))
