"""Tests for the bounded export worker pool."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest

from apiconform.constants import DEFAULT_DOCUMENT_PATHS, DocumentRole, FailureKind
from apiconform.export.extractor import ArchiveExtractor
from apiconform.export.pool import ExportWorkerPool, failure_from_exception
from apiconform.resilience.errors import (
    ArchiveError,
    DownloadError,
    NoDocumentsError,
)
from apiconform.schemas import CatalogEntry, EntryResult, RulesetBinding, Violation
from apiconform.validation.aggregator import ValidationAggregator
from tests.fakes import (
    FakeEvaluator,
    FakeExportSource,
    make_entry,
    make_export_zip,
)


def _bindings(tmp_path: Path) -> list[RulesetBinding]:
    return [
        RulesetBinding(
            name=f"{role}.yaml",
            ruleset_path=tmp_path / f"{role}.yaml",
            document_role=role,
        )
        for role in DocumentRole
    ]


def _entries(n: int) -> list[CatalogEntry]:
    return [
        make_entry(api_id=f"e{i:03d}-id", name=f"Api{i:03d}", provider=f"p{i % 3}")
        for i in range(n)
    ]


def _pool(
    tmp_path: Path,
    source: FakeExportSource,
    evaluator: FakeEvaluator,
    aggregator: ValidationAggregator,
    **kwargs: object,
) -> ExportWorkerPool:
    return ExportWorkerPool(
        source=source,
        extractor=ArchiveExtractor(tmp_path / "extracted", DEFAULT_DOCUMENT_PATHS),
        evaluator=evaluator,
        bindings=_bindings(tmp_path),
        aggregator=aggregator,
        export_dir=tmp_path / "exports",
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.mark.parametrize("limit", [1, 2, 3, 8])
async def test_never_exceeds_concurrency_limit(tmp_path: Path, limit: int) -> None:
    entries = _entries(10)
    source = FakeExportSource(
        {e.id: make_export_zip(e) for e in entries}, delay=0.01
    )
    aggregator = ValidationAggregator()
    pool = _pool(
        tmp_path, source, FakeEvaluator(), aggregator, max_concurrency=limit
    )

    results = await pool.run(entries)

    assert len(results) == 10
    assert len(aggregator) == 10
    assert source.max_seen <= limit
    assert pool.peak_in_flight <= limit
    assert pool.done.is_set()


async def test_failure_isolated_from_siblings(tmp_path: Path) -> None:
    entries = _entries(4)
    archives: dict[str, bytes | Exception] = {
        e.id: make_export_zip(e) for e in entries
    }
    archives[entries[1].id] = DownloadError("HTTP 500", status_code=500)
    archives[entries[2].id] = b"garbage"
    source = FakeExportSource(archives)
    violation = Violation(code="info-contact", message="missing contact")
    aggregator = ValidationAggregator()
    pool = _pool(
        tmp_path,
        source,
        FakeEvaluator({DocumentRole.API: [violation]}),
        aggregator,
        max_concurrency=4,
    )

    await pool.run(entries)
    report = await aggregator.build_report()

    by_id = {r.entry.id: r for r in report.results}
    assert by_id[entries[0].id].ok
    assert by_id[entries[0].id].violations_for(DocumentRole.API) == (violation,)
    assert by_id[entries[1].id].failure is not None
    assert by_id[entries[1].id].failure.kind == FailureKind.DOWNLOAD
    assert by_id[entries[2].id].failure is not None
    assert by_id[entries[2].id].failure.kind == FailureKind.ARCHIVE
    assert by_id[entries[3].id].ok


async def test_evaluator_crash_keeps_other_roles(tmp_path: Path) -> None:
    entry = make_entry()
    source = FakeExportSource({entry.id: make_export_zip(entry)})
    violation = Violation(code="info-contact", message="missing contact")
    evaluator = FakeEvaluator(
        {DocumentRole.API: [violation]},
        crashes={DocumentRole.DEFINITION: RuntimeError("evaluator blew up")},
    )
    aggregator = ValidationAggregator()

    await _pool(tmp_path, source, evaluator, aggregator).run([entry])
    report = await aggregator.build_report()

    (result,) = report.results
    assert result.ok
    assert result.violations_for(DocumentRole.API) == (violation,)
    by_role = {o.role: o for o in result.outcomes}
    assert by_role[DocumentRole.DEFINITION].error == "evaluator blew up"


async def test_ids_sharing_a_prefix_get_separate_workspaces(
    tmp_path: Path,
) -> None:
    first = make_entry(api_id="abcdefgh-0001")
    second = make_entry(api_id="abcdefgh-0002")
    source = FakeExportSource(
        {
            first.id: make_export_zip(first),
            second.id: make_export_zip(second),
        },
        delay=0.01,
    )
    per_entry = {
        first.id: {DocumentRole.API: [Violation(code="first", message="m")]},
        second.id: {DocumentRole.API: [Violation(code="second", message="m")]},
    }
    aggregator = ValidationAggregator()
    pool = _pool(
        tmp_path,
        source,
        FakeEvaluator(per_entry=per_entry),
        aggregator,
        max_concurrency=2,
        keep_artifacts=True,
    )

    await pool.run([first, second])
    report = await aggregator.build_report()

    assert first.workspace_name != second.workspace_name
    assert source.max_seen == 2
    by_id = {r.entry.id: r for r in report.results}
    assert by_id[first.id].ok
    assert by_id[second.id].ok
    assert [v.code for v in by_id[first.id].violations_for(DocumentRole.API)] == [
        "first"
    ]
    assert [v.code for v in by_id[second.id].violations_for(DocumentRole.API)] == [
        "second"
    ]
    assert len(list((tmp_path / "exports").glob("*.zip"))) == 2
    assert len(list((tmp_path / "extracted").iterdir())) == 2


async def test_artifacts_removed_by_default(tmp_path: Path) -> None:
    entries = _entries(2)
    source = FakeExportSource({e.id: make_export_zip(e) for e in entries})
    pool = _pool(tmp_path, source, FakeEvaluator(), ValidationAggregator())

    await pool.run(entries)

    assert list((tmp_path / "exports").glob("*.zip")) == []
    assert list((tmp_path / "extracted").iterdir()) == []


async def test_keep_artifacts_leaves_files(tmp_path: Path) -> None:
    entries = _entries(2)
    source = FakeExportSource({e.id: make_export_zip(e) for e in entries})
    pool = _pool(
        tmp_path,
        source,
        FakeEvaluator(),
        ValidationAggregator(),
        keep_artifacts=True,
    )

    await pool.run(entries)

    assert len(list((tmp_path / "exports").glob("*.zip"))) == 2
    assert len(list((tmp_path / "extracted").iterdir())) == 2


async def test_same_report_for_any_concurrency(tmp_path: Path) -> None:
    entries = _entries(12)
    per_entry = {
        e.id: {
            DocumentRole.API: [
                Violation(code=f"rule-{i}", message=f"m{i}", path=("info",))
                for i in range(idx % 4)
            ]
        }
        for idx, e in enumerate(entries)
    }
    stamp = datetime(2026, 1, 1, tzinfo=UTC)

    async def _report(limit: int, workdir: Path) -> list[EntryResult]:
        archives: dict[str, bytes | Exception] = {
            e.id: make_export_zip(e) for e in entries
        }
        archives[entries[5].id] = httpx.ConnectError("refused")
        aggregator = ValidationAggregator()
        pool = _pool(
            workdir,
            FakeExportSource(archives, delay=0.001 * (limit % 3)),
            FakeEvaluator(per_entry=per_entry),
            aggregator,
            max_concurrency=limit,
        )
        await pool.run(entries)
        report = await aggregator.build_report(generated_at=stamp)
        return [r.model_copy(update={"duration_ms": 0.0}) for r in report.results]

    serial = await _report(1, tmp_path / "n1")
    parallel = await _report(8, tmp_path / "n8")

    assert serial == parallel
    assert len(serial) == 12
    assert [r.entry.sort_key for r in serial] == sorted(
        r.entry.sort_key for r in serial
    )


async def test_request_stop_lets_in_flight_finish(tmp_path: Path) -> None:
    entries = _entries(6)
    source = FakeExportSource(
        {e.id: make_export_zip(e) for e in entries}, delay=0.05
    )
    aggregator = ValidationAggregator()
    pool = _pool(
        tmp_path, source, FakeEvaluator(), aggregator, max_concurrency=2
    )

    async def _stop_soon() -> None:
        await asyncio.sleep(0.01)
        pool.request_stop()

    results, _ = await asyncio.gather(pool.run(entries), _stop_soon())

    assert len(results) == 6
    started = [r for r in results if r.ok]
    not_started = [
        r
        for r in results
        if r.failure is not None and r.failure.kind == FailureKind.NOT_STARTED
    ]
    assert len(started) == 2
    assert len(not_started) == 4
    assert len(source.calls) == 2


async def test_deadline_triggers_stop(tmp_path: Path) -> None:
    entries = _entries(4)
    source = FakeExportSource(
        {e.id: make_export_zip(e) for e in entries}, delay=0.05
    )
    pool = _pool(
        tmp_path,
        source,
        FakeEvaluator(),
        ValidationAggregator(),
        max_concurrency=1,
        timeout=0.02,
    )

    results = await pool.run(entries)

    assert pool.stopped
    assert len(results) == 4
    assert results[0].ok
    assert all(
        r.failure is not None and r.failure.kind == FailureKind.NOT_STARTED
        for r in results[1:]
    )


async def test_progress_callback_counts(tmp_path: Path) -> None:
    entries = _entries(3)
    seen: list[tuple[int, int]] = []
    pool = _pool(
        tmp_path,
        FakeExportSource({e.id: make_export_zip(e) for e in entries}),
        FakeEvaluator(),
        ValidationAggregator(),
        on_entry_done=lambda _r, done, total: seen.append((done, total)),
    )

    await pool.run(entries)

    assert seen == [(1, 3), (2, 3), (3, 3)]


def test_invalid_concurrency(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="max_concurrency"):
        _pool(
            tmp_path,
            FakeExportSource({}),
            FakeEvaluator(),
            ValidationAggregator(),
            max_concurrency=0,
        )


class TestFailureMapping:
    def test_timeout(self) -> None:
        failure = failure_from_exception(httpx.ReadTimeout("slow"))
        assert failure.kind == FailureKind.TIMEOUT

    def test_download(self) -> None:
        failure = failure_from_exception(DownloadError("HTTP 404", 404))
        assert failure.kind == FailureKind.DOWNLOAD
        assert failure.message == "HTTP 404"

    def test_transport_error_is_download(self) -> None:
        failure = failure_from_exception(httpx.ConnectError("refused"))
        assert failure.kind == FailureKind.DOWNLOAD

    def test_archive(self) -> None:
        assert (
            failure_from_exception(ArchiveError("bad")).kind
            == FailureKind.ARCHIVE
        )

    def test_no_documents(self) -> None:
        assert (
            failure_from_exception(NoDocumentsError("empty")).kind
            == FailureKind.NO_DOCUMENTS
        )

    def test_unexpected_uses_type_name_when_blank(self) -> None:
        failure = failure_from_exception(RuntimeError())
        assert failure.kind == FailureKind.UNEXPECTED
        assert failure.message == "RuntimeError"
