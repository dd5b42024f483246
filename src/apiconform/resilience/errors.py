"""Exception hierarchy and error classification.

Classifies exceptions by category to enable:
- Retry of transient download failures (only transient/server/timeout)
- Structured logging (which errors are transient vs permanent)
- Mapping per-entry failures onto a report failure kind
"""

from __future__ import annotations

import asyncio
from enum import Enum

import httpx


class ConformanceError(Exception):
    """Base class for all pipeline errors."""


class SetupError(ConformanceError):
    """Fatal: missing credential, unreadable ruleset, rejected token."""


class CatalogError(ConformanceError):
    """Catalog listing or lookup could not be completed."""


class ExportError(ConformanceError):
    """Per-entry failure while exporting or unpacking an API."""


class DownloadError(ExportError):
    """The export request failed or returned a non-archive response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ArchiveError(ExportError):
    """The downloaded archive is corrupt or has an unsafe layout."""


class NoDocumentsError(ExportError):
    """The archive contains none of the configured documents."""


class RulesetEvaluationError(ConformanceError):
    """The rule evaluator failed for one (entry, role) pair."""


class ErrorClass(Enum):
    TRANSIENT = "transient"  # 429, connection errors, retryable
    SERVER = "server"  # 500, 502, 503, retryable
    TIMEOUT = "timeout"  # deadline exceeded, retryable with backoff
    CLIENT = "client"  # 400, 401, 403, 404, do NOT retry
    UNKNOWN = "unknown"  # unclassified, do NOT retry


def _status_code(error: Exception) -> int | None:
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def classify_error(error: Exception) -> ErrorClass:
    """Classify an error to determine handling strategy.

    Checks status codes first (our errors and ``httpx.HTTPStatusError``),
    then httpx/asyncio exception types.
    """
    status_code = _status_code(error)
    if status_code is not None:
        if status_code == 429:
            return ErrorClass.TRANSIENT
        if 400 <= status_code < 500:
            return ErrorClass.CLIENT
        if 500 <= status_code < 600:
            return ErrorClass.SERVER

    if isinstance(
        error, (httpx.TimeoutException, TimeoutError, asyncio.TimeoutError)
    ):
        return ErrorClass.TIMEOUT
    if isinstance(error, httpx.TransportError):
        return ErrorClass.TRANSIENT

    return ErrorClass.UNKNOWN


_RETRYABLE = frozenset({
    ErrorClass.TRANSIENT,
    ErrorClass.SERVER,
    ErrorClass.TIMEOUT,
})


def is_retryable(error: BaseException) -> bool:
    """Return True if the error category supports retry."""
    if not isinstance(error, Exception):
        return False
    return classify_error(error) in _RETRYABLE


def is_auth_error(error: Exception) -> bool:
    """Return True for 401/403 responses (rejected credential)."""
    return _status_code(error) in (401, 403)
