"""Report rendering and artifact writing."""

from apiconform.report.writer import (
    ReportWriter,
    render_csv,
    render_json,
    render_log,
)

__all__ = ["ReportWriter", "render_csv", "render_json", "render_log"]
