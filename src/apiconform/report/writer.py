"""Report artifacts: CSV table, grouped text log and JSON summary."""

from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from apiconform.constants import (
    REPORT_HEADER,
    REPORT_TIMESTAMP_FORMAT,
    ReportFormat,
)
from apiconform.schemas import EntryResult, Report

logger = logging.getLogger(__name__)


def render_csv(report: Report) -> str:
    """One row per violation, role error or failed entry.

    The ``csv`` module quotes fields containing the delimiter, quotes
    or line breaks, so messages survive a round-trip unchanged.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(REPORT_HEADER)
    for row in report.rows():
        data = row.model_dump()
        writer.writerow([str(data[col]) for col in REPORT_HEADER])
    return buf.getvalue()


def _entry_block(result: EntryResult) -> list[str]:
    lines = [f"== {result.entry.label}"]
    if result.failure is not None:
        lines.append(
            f"FAILED ({result.failure.kind}): {result.failure.message}"
        )
        return lines
    if not result.outcomes:
        lines.append("no rulesets applied")
        return lines
    for outcome in result.outcomes:
        if outcome.error is not None:
            lines.append(f"[{outcome.role}] ruleset error: {outcome.error}")
            continue
        if not outcome.violations:
            lines.append(f"[{outcome.role}] validation successful")
            continue
        lines.append(
            f"[{outcome.role}] validation failed: "
            f"{len(outcome.violations)} violation(s)"
        )
        for v in outcome.violations:
            where = f" at {v.path_text}" if v.path else ""
            lines.append(f"  {v.code}: {v.message}{where}")
    return lines


def render_log(report: Report) -> str:
    """Human-readable log, violations grouped under an entry header."""
    lines = [
        f"API conformance report generated {report.generated_at.isoformat()}",
        f"entries={len(report.results)} "
        f"violations={report.violation_count} "
        f"failed={report.failed_count}",
    ]
    if report.catalog_degraded:
        lines.append(
            f"WARNING: catalog incomplete: {report.catalog_error or 'unknown error'}"
        )
    for result in report.results:
        lines.append("")
        lines.extend(_entry_block(result))
    return "\n".join(lines) + "\n"


def render_json(report: Report) -> str:
    """Structured summary envelope with per-entry totals."""
    payload: dict[str, Any] = {
        "generated_at": report.generated_at.isoformat(),
        "catalog_degraded": report.catalog_degraded,
        "catalog_error": report.catalog_error,
        "selector": (
            report.selector.model_dump(exclude_none=True)
            if report.selector
            else None
        ),
        "entry_count": len(report.results),
        "violation_count": report.violation_count,
        "failed_count": report.failed_count,
        "entries": [_result_to_dict(r) for r in report.results],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _result_to_dict(result: EntryResult) -> dict[str, Any]:
    return {
        "api_id": result.entry.id,
        "provider": result.entry.provider,
        "name": result.entry.name,
        "version": result.entry.version,
        "status": "failed" if result.failure else "validated",
        "failure": (
            result.failure.model_dump(mode="json") if result.failure else None
        ),
        "violations": {
            o.role.value: len(o.violations) for o in result.outcomes
        },
        "role_errors": {
            o.role.value: o.error
            for o in result.outcomes
            if o.error is not None
        },
        "duration_ms": round(result.duration_ms, 1),
    }


_RENDERERS: dict[ReportFormat, tuple[str, str, Callable[[Report], str]]] = {
    ReportFormat.CSV: ("violations", "csv", render_csv),
    ReportFormat.LOG: ("violations", "log", render_log),
    ReportFormat.JSON: ("summary", "json", render_json),
}


class ReportWriter:
    """Writes report artifacts named by generation time.

    With a single-entry selector the selector's identity is part of
    the name, e.g. ``violations_PetStore_1.0.0_20260101T120000Z.csv``.
    """

    def __init__(self, output_dir: Path) -> None:
        self._output_dir = output_dir

    def path_for(self, report: Report, fmt: ReportFormat) -> Path:
        prefix, ext, _ = _RENDERERS[fmt]
        stamp = report.generated_at.strftime(REPORT_TIMESTAMP_FORMAT)
        parts = [prefix]
        if report.selector is not None:
            parts.append(report.selector.slug)
        parts.append(stamp)
        return _unique(self._output_dir / f"{'_'.join(parts)}.{ext}")

    def write(
        self, report: Report, formats: Iterable[ReportFormat]
    ) -> list[Path]:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for fmt in formats:
            _, _, render = _RENDERERS[fmt]
            path = self.path_for(report, fmt)
            # newline="" keeps the csv module's own line endings
            with path.open("w", encoding="utf-8", newline="") as fh:
                fh.write(render(report))
            logger.info("event=report_written format=%s path=%s", fmt, path)
            written.append(path)
        return written


def _unique(path: Path) -> Path:
    if not path.exists():
        return path
    n = 1
    while True:
        candidate = path.with_name(f"{path.stem}-{n}{path.suffix}")
        if not candidate.exists():
            return candidate
        n += 1
