"""Run orchestration: catalog, export pool, aggregation, report."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from apiconform.catalog.client import PublisherClient
from apiconform.catalog.fetcher import CatalogFetcher
from apiconform.config import Settings
from apiconform.constants import ReportFormat, StageProgress
from apiconform.export.extractor import ArchiveExtractor
from apiconform.export.pool import ExportWorkerPool
from apiconform.report.writer import ReportWriter
from apiconform.resilience.errors import SetupError
from apiconform.schemas import (
    CatalogResult,
    EntryResult,
    EntrySelector,
    Report,
)
from apiconform.services.events import ProgressCallback, StageEvent
from apiconform.validation.aggregator import ValidationAggregator
from apiconform.validation.evaluator import RuleEvaluator, SpectralCliEvaluator
from apiconform.validation.rulesets import load_ruleset_bindings

logger = logging.getLogger(__name__)

ALL_FORMATS: tuple[ReportFormat, ...] = tuple(ReportFormat)


@dataclass
class ValidationRun:
    """Full result of one validation run."""

    report: Report
    catalog: CatalogResult
    artifacts: list[Path] = field(default_factory=lambda: list[Path]())
    no_match: bool = False
    total_duration_ms: float = 0.0


def _emit(
    on_progress: ProgressCallback | None, event: StageEvent
) -> None:
    if on_progress:
        on_progress(event)


async def run_validation(
    settings: Settings,
    selector: EntrySelector | None = None,
    *,
    formats: Iterable[ReportFormat] = ALL_FORMATS,
    evaluator: RuleEvaluator | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    on_progress: ProgressCallback | None = None,
) -> ValidationRun:
    """Validate the selected catalog entries and write the report.

    Phases:
      1. Setup: credential check, ruleset bindings (fatal on error)
      2. Catalog: paginated fetch, partial result on mid-way errors
      3. Export: bounded pool of download → extract → evaluate tasks
      4. Report: ordered by entry identity, written once

    Raises ``SetupError`` only; every other failure ends up in the
    report as data.
    """
    start = time.monotonic()

    if not settings.token.strip():
        msg = "no bearer token configured (use --token or APICONFORM_TOKEN)"
        raise SetupError(msg)

    _emit(on_progress, StageEvent("rulesets", StageProgress.RUNNING))
    bindings = load_ruleset_bindings(
        settings.ruleset_dir, settings.ruleset_files
    )
    _emit(on_progress, StageEvent("rulesets", StageProgress.DONE))

    evaluator = evaluator or SpectralCliEvaluator(
        settings.spectral_command, settings.evaluator_timeout_seconds
    )
    aggregator = ValidationAggregator()

    async with PublisherClient(settings, transport=transport) as client:
        _emit(on_progress, StageEvent("catalog", StageProgress.RUNNING))
        catalog = await CatalogFetcher(client, settings.page_size).fetch(
            selector
        )
        _emit(
            on_progress,
            StageEvent(
                "catalog",
                StageProgress.ERROR if catalog.degraded else StageProgress.DONE,
                message=catalog.error or f"{len(catalog.entries)} entries",
            ),
        )

        if selector is not None and not catalog.entries:
            logger.warning(
                "event=no_matching_entry selector=%s degraded=%s",
                selector.slug,
                catalog.degraded,
            )
            report = await aggregator.build_report(
                catalog_degraded=catalog.degraded,
                catalog_error=catalog.error,
                selector=selector,
            )
            return ValidationRun(
                report=report,
                catalog=catalog,
                no_match=True,
                total_duration_ms=(time.monotonic() - start) * 1000,
            )

        def _on_entry_done(result: EntryResult, done: int, total: int) -> None:
            _emit(
                on_progress,
                StageEvent(
                    "export",
                    StageProgress.RUNNING,
                    message=result.entry.label,
                    duration_ms=result.duration_ms,
                    completed=done,
                    total=total,
                ),
            )

        pool = ExportWorkerPool(
            source=client,
            extractor=ArchiveExtractor(
                settings.extract_dir, settings.document_paths
            ),
            evaluator=evaluator,
            bindings=bindings,
            aggregator=aggregator,
            export_dir=settings.export_dir,
            max_concurrency=settings.max_concurrency,
            timeout=settings.run_timeout_seconds or None,
            keep_artifacts=settings.keep_artifacts,
            on_entry_done=_on_entry_done,
        )
        await pool.run(catalog.entries)
        _emit(on_progress, StageEvent("export", StageProgress.DONE))

    report = await aggregator.build_report(
        catalog_degraded=catalog.degraded,
        catalog_error=catalog.error,
        selector=selector,
    )

    _emit(on_progress, StageEvent("report", StageProgress.RUNNING))
    artifacts = ReportWriter(settings.output_dir).write(report, formats)
    _emit(on_progress, StageEvent("report", StageProgress.DONE))

    elapsed = (time.monotonic() - start) * 1000
    logger.info(
        "event=run_complete entries=%d violations=%d failed=%d "
        "degraded=%s duration_ms=%.0f",
        len(report.results),
        report.violation_count,
        report.failed_count,
        report.catalog_degraded,
        elapsed,
    )
    return ValidationRun(
        report=report,
        catalog=catalog,
        artifacts=artifacts,
        total_duration_ms=elapsed,
    )
