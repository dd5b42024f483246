"""Shared constants: single source of truth for cross-module values.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so downstream code (CSV rows,
JSON summaries, log lines) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class DocumentRole(StrEnum):
    """Kinds of document expected inside an export archive."""

    API = "api"  # api.yaml, primary specification
    DEFINITION = "definition"  # Definitions/swagger.yaml, alternate definition
    DOCS = "docs"  # derived documentation manifest


class Severity(StrEnum):
    """Violation severities, in Spectral's numeric order."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


class FailureKind(StrEnum):
    """Why an entry could not be validated."""

    DOWNLOAD = "download"
    ARCHIVE = "archive"
    NO_DOCUMENTS = "no_documents"
    TIMEOUT = "timeout"
    NOT_STARTED = "not_started"
    UNEXPECTED = "unexpected"


class RowStatus(StrEnum):
    """Value of the ``status`` column in the tabular report."""

    VIOLATION = "violation"
    ROLE_ERROR = "role_error"
    FAILED = "failed"


class ReportFormat(StrEnum):
    """Report artifacts the writer can emit."""

    CSV = "csv"
    LOG = "log"
    JSON = "json"


class StageProgress(StrEnum):
    """Progress status for pipeline stage events."""

    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


# Spectral reports severity as 0..3
SPECTRAL_SEVERITIES: tuple[Severity, ...] = (
    Severity.ERROR,
    Severity.WARNING,
    Severity.INFO,
    Severity.HINT,
)

# ── Publisher API ────────────────────────────────────────

DEFAULT_BASE_URL = "https://127.0.0.1:9443/api/am/publisher/v4"
DEFAULT_PAGE_SIZE = 25
DEFAULT_EXPORT_FORMAT = "YAML"
DOWNLOAD_CHUNK_BYTES = 64 * 1024

# ── Documents & Rulesets ─────────────────────────────────

DEFAULT_DOCUMENT_PATHS: dict[str, str] = {
    DocumentRole.API: "api.yaml",
    DocumentRole.DEFINITION: "Definitions/swagger.yaml",
    DocumentRole.DOCS: "Docs",
}

DEFAULT_RULESET_FILES: dict[str, str] = {
    DocumentRole.API: ".spectral.yaml",
    DocumentRole.DEFINITION: ".spectral-definition.yaml",
    DocumentRole.DOCS: ".spectral-docs.yaml",
}

DOCS_MANIFEST_NAME = "docs-manifest.yaml"

# ── Retry Strategy ───────────────────────────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_WAIT = 1
RETRY_MAX_WAIT = 10

# ── Report ───────────────────────────────────────────────

REPORT_HEADER: tuple[str, ...] = (
    "provider",
    "name",
    "version",
    "api_id",
    "business_owner",
    "business_owner_email",
    "technical_owner",
    "technical_owner_email",
    "status",
    "category",
    "rule_code",
    "severity",
    "path",
    "message",
)

REPORT_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"
FAILURE_CATEGORY = "entry"
ROLE_ERROR_CODE = "ruleset-error"

# ── Misc ─────────────────────────────────────────────────

# Appended to ids that path sanitizing altered
ID_DIGEST_LENGTH = 8
ERROR_TRUNCATION_CHARS = 200

# ── Stage Labels (user-facing) ─────────────────────────

STAGE_LABELS: dict[str, str] = {
    "rulesets": "Loading rulesets",
    "catalog": "Fetching API catalog",
    "export": "Exporting and validating APIs",
    "report": "Writing report",
}
