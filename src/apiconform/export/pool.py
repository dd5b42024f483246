"""Bounded-concurrency export, extraction and validation per entry."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import httpx

from apiconform.constants import FailureKind
from apiconform.export.extractor import ArchiveExtractor
from apiconform.resilience.errors import (
    ArchiveError,
    DownloadError,
    ErrorClass,
    NoDocumentsError,
    classify_error,
)
from apiconform.schemas import (
    ArtifactBundle,
    CatalogEntry,
    EntryFailure,
    EntryResult,
    RulesetBinding,
)
from apiconform.validation.aggregator import (
    ValidationAggregator,
    evaluate_documents,
)
from apiconform.validation.evaluator import RuleEvaluator

logger = logging.getLogger(__name__)

type EntryCallback = Callable[[EntryResult, int, int], None]


class ExportSource(Protocol):
    async def download_export(
        self, entry: CatalogEntry, destination: Path
    ) -> int: ...


def failure_from_exception(exc: Exception) -> EntryFailure:
    """Map a per-entry exception onto a report failure marker."""
    message = str(exc) or type(exc).__name__
    if classify_error(exc) == ErrorClass.TIMEOUT:
        kind = FailureKind.TIMEOUT
    elif isinstance(exc, (DownloadError, httpx.HTTPError)):
        kind = FailureKind.DOWNLOAD
    elif isinstance(exc, NoDocumentsError):
        kind = FailureKind.NO_DOCUMENTS
    elif isinstance(exc, ArchiveError):
        kind = FailureKind.ARCHIVE
    else:
        kind = FailureKind.UNEXPECTED
    return EntryFailure(kind=kind, message=message)


class ExportWorkerPool:
    """Runs one export-and-validate task per entry, at most N at a time.

    Every task runs to success or isolated failure; failed tasks do
    not cancel siblings. ``request_stop()`` (or the optional deadline)
    lets in-flight tasks finish and records tasks that never started
    as ``not_started`` failures, so every entry reaches the report.
    ``done`` is set once all tasks have settled.
    """

    def __init__(
        self,
        *,
        source: ExportSource,
        extractor: ArchiveExtractor,
        evaluator: RuleEvaluator,
        bindings: list[RulesetBinding],
        aggregator: ValidationAggregator,
        export_dir: Path,
        max_concurrency: int = 4,
        timeout: float | None = None,
        keep_artifacts: bool = False,
        on_entry_done: EntryCallback | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._source = source
        self._extractor = extractor
        self._evaluator = evaluator
        self._bindings = bindings
        self._aggregator = aggregator
        self._export_dir = export_dir
        self._max_concurrency = max_concurrency
        self._timeout = timeout
        self._keep_artifacts = keep_artifacts
        self._on_entry_done = on_entry_done

        self._stop = asyncio.Event()
        self.done = asyncio.Event()
        self._in_flight = 0
        self._completed = 0
        self.peak_in_flight = 0

    def request_stop(self) -> None:
        """Stop dispatching; tasks already running are not interrupted."""
        if not self._stop.is_set():
            logger.warning(
                "event=pool_stop_requested in_flight=%d", self._in_flight
            )
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run(self, entries: list[CatalogEntry]) -> list[EntryResult]:
        """Process every entry; returns results in completion order."""
        self.done.clear()
        semaphore = asyncio.Semaphore(self._max_concurrency)
        total = len(entries)
        results: list[EntryResult] = []

        async def _guarded(entry: CatalogEntry) -> None:
            async with semaphore:
                if self._stop.is_set():
                    result = await self._aggregator.record_failure(
                        entry,
                        EntryFailure(
                            kind=FailureKind.NOT_STARTED,
                            message="pool stopped before this entry started",
                        ),
                    )
                else:
                    self._in_flight += 1
                    self.peak_in_flight = max(
                        self.peak_in_flight, self._in_flight
                    )
                    try:
                        result = await self._process(entry)
                    finally:
                        self._in_flight -= 1
            results.append(result)
            self._completed += 1
            if self._on_entry_done:
                self._on_entry_done(result, self._completed, total)

        watchdog = (
            asyncio.create_task(self._deadline(self._timeout))
            if self._timeout
            else None
        )
        try:
            settled = await asyncio.gather(
                *(_guarded(e) for e in entries), return_exceptions=True
            )
        finally:
            if watchdog is not None:
                watchdog.cancel()

        for entry, outcome in zip(entries, settled, strict=True):
            if isinstance(outcome, Exception):
                logger.error(
                    "event=task_crashed api_id=%s error=%s", entry.id, outcome
                )
                if not self._aggregator.has(entry):
                    results.append(
                        await self._aggregator.record_failure(
                            entry, failure_from_exception(outcome)
                        )
                    )

        self.done.set()
        logger.info(
            "event=pool_done entries=%d peak_in_flight=%d stopped=%s",
            total,
            self.peak_in_flight,
            self._stop.is_set(),
        )
        return results

    async def _deadline(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        logger.error("event=pool_deadline timeout_s=%.1f", seconds)
        self.request_stop()

    async def _process(self, entry: CatalogEntry) -> EntryResult:
        start = time.monotonic()
        archive = self._export_dir / f"{entry.workspace_name}.zip"
        try:
            size = await self._source.download_export(entry, archive)
            bundle = ArtifactBundle(
                entry=entry, archive_path=archive, size_bytes=size
            )
            documents = await asyncio.to_thread(
                self._extractor.extract, bundle.archive_path, entry
            )
            outcomes = await evaluate_documents(
                entry, documents, self._bindings, self._evaluator
            )
        except Exception as exc:  # noqa: BLE001
            elapsed = (time.monotonic() - start) * 1000
            failure = failure_from_exception(exc)
            logger.warning(
                "event=entry_failed api_id=%s kind=%s error=%s",
                entry.id,
                failure.kind,
                failure.message,
            )
            return await self._aggregator.record_failure(
                entry, failure, elapsed
            )
        finally:
            if not self._keep_artifacts:
                archive.unlink(missing_ok=True)
                self._extractor.cleanup(entry)

        elapsed = (time.monotonic() - start) * 1000
        logger.debug(
            "event=entry_validated api_id=%s documents=%d duration_ms=%.0f",
            entry.id,
            len(documents),
            elapsed,
        )
        return await self._aggregator.record(entry, outcomes, elapsed)
