"""Tests for report rendering and artifact naming."""

from __future__ import annotations

import csv
import io
import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from apiconform.constants import (
    REPORT_HEADER,
    DocumentRole,
    FailureKind,
    ReportFormat,
)
from apiconform.report.writer import (
    ReportWriter,
    render_csv,
    render_json,
    render_log,
)
from apiconform.schemas import (
    EntryFailure,
    EntryResult,
    EntrySelector,
    Report,
    RoleOutcome,
    Violation,
)
from tests.fakes import make_entry

STAMP = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def _report(**kwargs: object) -> Report:
    ok = EntryResult(
        entry=make_entry(
            api_id="id-a",
            name="Orders",
            business_owner="Biz, Inc.",
            business_owner_email="biz@example.com",
        ),
        outcomes=(
            RoleOutcome(
                role=DocumentRole.API,
                violations=(
                    Violation(
                        code="info-description",
                        message='Says "hello", then\nbreaks the line',
                        path=("info", "description"),
                    ),
                ),
            ),
            RoleOutcome(role=DocumentRole.DEFINITION),
        ),
        duration_ms=12.34,
    )
    failed = EntryResult(
        entry=make_entry(api_id="id-b", name="Payments"),
        failure=EntryFailure(kind=FailureKind.DOWNLOAD, message="HTTP 500"),
    )
    return Report(results=[ok, failed], generated_at=STAMP, **kwargs)  # type: ignore[arg-type]


class TestCsv:
    def test_round_trips_through_csv_reader(self) -> None:
        rows = list(csv.reader(io.StringIO(render_csv(_report()))))

        assert tuple(rows[0]) == REPORT_HEADER
        assert len(rows) == 3
        violation = dict(zip(REPORT_HEADER, rows[1], strict=True))
        assert violation["business_owner"] == "Biz, Inc."
        assert violation["message"] == 'Says "hello", then\nbreaks the line'
        assert violation["path"] == "info.description"
        assert violation["category"] == "api"
        assert violation["status"] == "violation"

    def test_failed_entry_row(self) -> None:
        rows = list(csv.reader(io.StringIO(render_csv(_report()))))
        failed = dict(zip(REPORT_HEADER, rows[2], strict=True))
        assert failed["status"] == "failed"
        assert failed["rule_code"] == "download"
        assert failed["business_owner"] == ""

    def test_empty_report_has_header_only(self) -> None:
        text = render_csv(Report(generated_at=STAMP))
        assert list(csv.reader(io.StringIO(text))) == [list(REPORT_HEADER)]


class TestLog:
    def test_groups_by_entry(self) -> None:
        text = render_log(_report())

        assert "entries=2 violations=1 failed=1" in text
        orders = text.index("== admin/Orders:1.0.0 (id-a)")
        payments = text.index("== admin/Payments:1.0.0 (id-b)")
        assert orders < payments
        assert "[api] validation failed: 1 violation(s)" in text
        assert "[definition] validation successful" in text
        assert "FAILED (download): HTTP 500" in text
        assert "  info-description: Says" in text

    def test_degraded_catalog_warning(self) -> None:
        text = render_log(
            _report(catalog_degraded=True, catalog_error="page 3 timed out")
        )
        assert "WARNING: catalog incomplete: page 3 timed out" in text

    def test_role_error_line(self) -> None:
        report = Report(
            results=[
                EntryResult(
                    entry=make_entry(),
                    outcomes=(
                        RoleOutcome(role=DocumentRole.DOCS, error="exit 2"),
                    ),
                )
            ],
            generated_at=STAMP,
        )
        assert "[docs] ruleset error: exit 2" in render_log(report)


class TestJson:
    def test_summary_envelope(self) -> None:
        data = json.loads(render_json(_report()))

        assert data["entry_count"] == 2
        assert data["violation_count"] == 1
        assert data["failed_count"] == 1
        assert data["catalog_degraded"] is False
        assert data["selector"] is None
        first, second = data["entries"]
        assert first["violations"] == {"api": 1, "definition": 0}
        assert first["duration_ms"] == 12.3
        assert second["status"] == "failed"
        assert second["failure"] == {"kind": "download", "message": "HTTP 500"}

    def test_selector_included(self) -> None:
        data = json.loads(
            render_json(_report(selector=EntrySelector(api_id="id-a")))
        )
        assert data["selector"] == {"api_id": "id-a"}


class TestReportWriter:
    def test_writes_requested_formats(self, tmp_path: Path) -> None:
        writer = ReportWriter(tmp_path / "out")
        paths = writer.write(
            _report(), [ReportFormat.CSV, ReportFormat.LOG, ReportFormat.JSON]
        )

        assert [p.name for p in paths] == [
            "violations_20260301T120000Z.csv",
            "violations_20260301T120000Z.log",
            "summary_20260301T120000Z.json",
        ]
        assert all(p.exists() for p in paths)

    def test_csv_file_keeps_embedded_newline(self, tmp_path: Path) -> None:
        (path,) = ReportWriter(tmp_path).write(_report(), [ReportFormat.CSV])
        with path.open(encoding="utf-8", newline="") as fh:
            rows = list(csv.reader(fh))
        assert len(rows) == 3
        assert rows[1][-1] == 'Says "hello", then\nbreaks the line'

    @pytest.mark.parametrize(
        ("selector", "expected"),
        [
            (
                EntrySelector(name="Pet Store", version="1.0"),
                "violations_Pet-Store_1.0_20260301T120000Z.csv",
            ),
            (
                EntrySelector(api_id="abc-123"),
                "violations_abc-123_20260301T120000Z.csv",
            ),
        ],
    )
    def test_selector_in_file_name(
        self, tmp_path: Path, selector: EntrySelector, expected: str
    ) -> None:
        writer = ReportWriter(tmp_path)
        path = writer.path_for(_report(selector=selector), ReportFormat.CSV)
        assert path.name == expected

    def test_existing_file_not_overwritten(self, tmp_path: Path) -> None:
        writer = ReportWriter(tmp_path)
        first = writer.write(_report(), [ReportFormat.CSV])[0]
        second = writer.write(_report(), [ReportFormat.CSV])[0]

        assert first != second
        assert second.name == "violations_20260301T120000Z-1.csv"
