"""Pydantic models for the export, extract and validate data flow."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from apiconform.constants import (
    FAILURE_CATEGORY,
    ID_DIGEST_LENGTH,
    ROLE_ERROR_CODE,
    DocumentRole,
    FailureKind,
    RowStatus,
    Severity,
)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_name(value: str) -> str:
    """Make a string usable as a single path component."""
    cleaned = _UNSAFE_CHARS.sub("-", value).strip("-.")
    return cleaned or "unnamed"


class CatalogEntry(BaseModel):
    """One API definition in the publisher catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    version: str
    provider: str = ""
    context: str | None = None
    lifecycle_status: str | None = None
    business_owner: str | None = None
    business_owner_email: str | None = None
    technical_owner: str | None = None
    technical_owner_email: str | None = None

    @property
    def sort_key(self) -> tuple[str, str, str, str]:
        return (
            self.provider.lower(),
            self.name.lower(),
            self.version,
            self.id,
        )

    @property
    def slug(self) -> str:
        """Filesystem-safe ``name_version``."""
        return f"{safe_name(self.name)}_{safe_name(self.version)}"

    @property
    def workspace_name(self) -> str:
        """Per-entry directory/file stem; distinct ids never share one.

        The full id is kept. If sanitizing changed it, a digest of the
        raw id is appended so ids differing only in unsafe characters
        still map apart.
        """
        component = safe_name(self.id)
        if component != self.id:
            digest = hashlib.sha256(self.id.encode()).hexdigest()
            component = f"{component}-{digest[:ID_DIGEST_LENGTH]}"
        return f"{self.slug}_{component}"

    @property
    def label(self) -> str:
        return f"{self.provider}/{self.name}:{self.version} ({self.id})"


class EntrySelector(BaseModel):
    """Single-entry selector: either an API id or name + version."""

    model_config = ConfigDict(frozen=True)

    api_id: str | None = None
    name: str | None = None
    version: str | None = None

    @model_validator(mode="after")
    def _one_form(self) -> EntrySelector:
        if self.api_id:
            return self
        if self.name and self.version:
            return self
        raise ValueError("selector needs api_id, or both name and version")

    def matches(self, entry: CatalogEntry) -> bool:
        if self.api_id:
            return entry.id == self.api_id
        return entry.name == self.name and entry.version == self.version

    @property
    def slug(self) -> str:
        if self.api_id:
            return safe_name(self.api_id)
        return f"{safe_name(self.name or '')}_{safe_name(self.version or '')}"


class CatalogResult(BaseModel):
    """Output of the catalog fetcher, with a degraded-result indicator."""

    entries: list[CatalogEntry] = Field(
        default_factory=lambda: list[CatalogEntry]()
    )
    degraded: bool = False
    error: str | None = None
    pages_fetched: int = 0


class ArtifactBundle(BaseModel):
    """A downloaded export archive owned by one entry's task."""

    entry: CatalogEntry
    archive_path: Path
    size_bytes: int = 0


class DocumentRef(BaseModel):
    """An extracted (or derived) document bound to its role."""

    model_config = ConfigDict(frozen=True)

    role: DocumentRole
    path: Path
    derived: bool = False


class RulesetBinding(BaseModel):
    """A ruleset file bound to the document role it validates."""

    model_config = ConfigDict(frozen=True)

    name: str
    ruleset_path: Path
    document_role: DocumentRole


class Violation(BaseModel):
    """One rule failure reported by the evaluator."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    path: tuple[str, ...] = ()
    severity: Severity = Severity.ERROR

    @property
    def path_text(self) -> str:
        return ".".join(self.path)


class RoleOutcome(BaseModel):
    """Violations for one document role, or the error evaluating it."""

    model_config = ConfigDict(frozen=True)

    role: DocumentRole
    violations: tuple[Violation, ...] = ()
    error: str | None = None


class EntryFailure(BaseModel):
    """Marker for an entry that could not be validated."""

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    message: str


class EntryResult(BaseModel):
    """All outcomes for one catalog entry, written once by its task."""

    model_config = ConfigDict(frozen=True)

    entry: CatalogEntry
    outcomes: tuple[RoleOutcome, ...] = ()
    failure: EntryFailure | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def violation_count(self) -> int:
        return sum(len(o.violations) for o in self.outcomes)

    def violations_for(self, role: DocumentRole) -> tuple[Violation, ...]:
        for outcome in self.outcomes:
            if outcome.role == role:
                return outcome.violations
        return ()


class ReportRow(BaseModel):
    """One line of the tabular report."""

    provider: str
    name: str
    version: str
    api_id: str
    business_owner: str = ""
    business_owner_email: str = ""
    technical_owner: str = ""
    technical_owner_email: str = ""
    status: RowStatus
    category: str
    rule_code: str = ""
    severity: str = ""
    path: str = ""
    message: str = ""


def _entry_columns(entry: CatalogEntry) -> dict[str, str]:
    return {
        "provider": entry.provider,
        "name": entry.name,
        "version": entry.version,
        "api_id": entry.id,
        "business_owner": entry.business_owner or "",
        "business_owner_email": entry.business_owner_email or "",
        "technical_owner": entry.technical_owner or "",
        "technical_owner_email": entry.technical_owner_email or "",
    }


class Report(BaseModel):
    """Ordered collection of entry results for one run."""

    results: list[EntryResult] = Field(
        default_factory=lambda: list[EntryResult]()
    )
    generated_at: datetime
    catalog_degraded: bool = False
    catalog_error: str | None = None
    selector: EntrySelector | None = None

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def violation_count(self) -> int:
        return sum(r.violation_count for r in self.results)

    def rows(self) -> list[ReportRow]:
        """Flatten to one row per violation, role error or failure."""
        rows: list[ReportRow] = []
        for result in self.results:
            columns = _entry_columns(result.entry)
            if result.failure is not None:
                rows.append(
                    ReportRow(
                        **columns,
                        status=RowStatus.FAILED,
                        category=FAILURE_CATEGORY,
                        rule_code=result.failure.kind,
                        message=result.failure.message,
                    )
                )
                continue
            for outcome in result.outcomes:
                if outcome.error is not None:
                    rows.append(
                        ReportRow(
                            **columns,
                            status=RowStatus.ROLE_ERROR,
                            category=outcome.role,
                            rule_code=ROLE_ERROR_CODE,
                            message=outcome.error,
                        )
                    )
                for v in outcome.violations:
                    rows.append(
                        ReportRow(
                            **columns,
                            status=RowStatus.VIOLATION,
                            category=outcome.role,
                            rule_code=v.code,
                            severity=v.severity,
                            path=v.path_text,
                            message=v.message,
                        )
                    )
        return rows
