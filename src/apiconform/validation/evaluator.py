"""Rule evaluation seam and the Spectral CLI adapter."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Protocol

from apiconform.constants import (
    ERROR_TRUNCATION_CHARS,
    SPECTRAL_SEVERITIES,
    Severity,
)
from apiconform.resilience.errors import RulesetEvaluationError
from apiconform.schemas import DocumentRef, RulesetBinding, Violation

logger = logging.getLogger(__name__)

# spectral exit codes: 0 = clean, 1 = findings at fail-severity,
# anything else = the run itself failed (bad ruleset, unreadable input)
_SPECTRAL_OK_CODES = (0, 1)


class RuleEvaluator(Protocol):
    """Scores one document against one ruleset.

    Implementations raise ``RulesetEvaluationError`` when the
    evaluation itself fails; violations are returned, not raised.
    """

    async def evaluate(
        self, binding: RulesetBinding, document: DocumentRef
    ) -> list[Violation]: ...


class SpectralCliEvaluator:
    """Runs ``spectral lint`` as a subprocess and parses its JSON output."""

    def __init__(
        self, command: list[str], timeout: float = 120.0
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self._command = list(command)
        self._timeout = timeout

    def build_args(
        self, binding: RulesetBinding, document: DocumentRef
    ) -> list[str]:
        return [
            *self._command,
            "lint",
            str(document.path),
            "--ruleset",
            str(binding.ruleset_path),
            "--format",
            "json",
            "--fail-severity",
            "error",
            "--quiet",
        ]

    async def evaluate(
        self, binding: RulesetBinding, document: DocumentRef
    ) -> list[Violation]:
        args = self.build_args(binding, document)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"cannot run {self._command[0]!r}: {exc}"
            raise RulesetEvaluationError(msg) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout
            )
        except TimeoutError:
            msg = (
                f"ruleset {binding.name!r} timed out after "
                f"{self._timeout:.0f}s on {document.path.name}"
            )
            raise RulesetEvaluationError(msg) from None
        finally:
            # Also reached on cancellation; never leave the child running
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        if proc.returncode not in _SPECTRAL_OK_CODES:
            detail = stderr.decode(errors="replace").strip()
            msg = (
                f"ruleset {binding.name!r} failed "
                f"(exit {proc.returncode}): "
                f"{detail[:ERROR_TRUNCATION_CHARS]}"
            )
            raise RulesetEvaluationError(msg)

        return parse_spectral_output(stdout.decode(errors="replace"))


def parse_spectral_output(raw: str) -> list[Violation]:
    """Convert spectral's JSON result array into violations."""
    text = raw.strip()
    if not text:
        return []
    try:
        results: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"unparseable evaluator output: {text[:ERROR_TRUNCATION_CHARS]}"
        raise RulesetEvaluationError(msg) from exc
    if not isinstance(results, list):
        msg = "evaluator output is not a JSON array"
        raise RulesetEvaluationError(msg)

    violations: list[Violation] = []
    for item in results:
        if not isinstance(item, dict):
            continue
        violations.append(
            Violation(
                code=str(item.get("code", "")),
                message=str(item.get("message", "")),
                path=_path(item.get("path")),
                severity=_severity(item.get("severity")),
            )
        )
    return violations


def _path(value: Any) -> tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(p) for p in value)
    return (str(value),)


def _severity(value: Any) -> Severity:
    if isinstance(value, int) and 0 <= value < len(SPECTRAL_SEVERITIES):
        return SPECTRAL_SEVERITIES[value]
    if isinstance(value, str):
        try:
            return Severity(value.lower())
        except ValueError:
            logger.debug("Unknown severity %r, using error", value)
    return Severity.ERROR
