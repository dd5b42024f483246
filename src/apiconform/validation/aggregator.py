"""Per-entry rule evaluation and race-free aggregation into one report."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from apiconform.resilience.errors import RulesetEvaluationError
from apiconform.schemas import (
    CatalogEntry,
    DocumentRef,
    EntryFailure,
    EntryResult,
    EntrySelector,
    Report,
    RoleOutcome,
    RulesetBinding,
)
from apiconform.validation.evaluator import RuleEvaluator

logger = logging.getLogger(__name__)


async def evaluate_documents(
    entry: CatalogEntry,
    documents: list[DocumentRef],
    bindings: list[RulesetBinding],
    evaluator: RuleEvaluator,
) -> list[RoleOutcome]:
    """Run each document through the rulesets bound to its role.

    Documents are independent and evaluated concurrently. A role with
    no binding is skipped. Any evaluator exception becomes a
    ``RoleOutcome`` carrying the error, so siblings are unaffected and
    every evaluation has settled when this returns.
    The role tag comes from the submitted document, never from the
    rule codes in the evaluator output.
    """
    pairs = [
        (binding, doc)
        for doc in documents
        for binding in bindings
        if binding.document_role == doc.role
    ]

    async def _one(binding: RulesetBinding, doc: DocumentRef) -> RoleOutcome:
        try:
            violations = await evaluator.evaluate(binding, doc)
        except RulesetEvaluationError as exc:
            logger.warning(
                "event=ruleset_failed api_id=%s role=%s error=%s",
                entry.id,
                doc.role,
                exc,
            )
            return RoleOutcome(role=doc.role, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "event=evaluator_crashed api_id=%s role=%s error=%s",
                entry.id,
                doc.role,
                exc,
            )
            return RoleOutcome(
                role=doc.role, error=str(exc) or type(exc).__name__
            )
        return RoleOutcome(role=doc.role, violations=tuple(violations))

    return list(await asyncio.gather(*(_one(b, d) for b, d in pairs)))


class ValidationAggregator:
    """Owns the shared result collection for one run.

    Every write goes through ``_lock``; each entry may be recorded
    exactly once. ``build_report()`` orders results by entry identity,
    so completion order never leaks into the output.
    """

    def __init__(self) -> None:
        self._results: dict[str, EntryResult] = {}
        self._lock = asyncio.Lock()

    async def record(
        self,
        entry: CatalogEntry,
        outcomes: list[RoleOutcome],
        duration_ms: float = 0.0,
    ) -> EntryResult:
        """Merge one entry's role outcomes and append them."""
        result = EntryResult(
            entry=entry,
            outcomes=tuple(sorted(outcomes, key=lambda o: o.role)),
            duration_ms=duration_ms,
        )
        await self._append(result)
        return result

    async def record_failure(
        self,
        entry: CatalogEntry,
        failure: EntryFailure,
        duration_ms: float = 0.0,
    ) -> EntryResult:
        """Append a failure marker for an entry that could not be validated."""
        result = EntryResult(
            entry=entry, failure=failure, duration_ms=duration_ms
        )
        await self._append(result)
        return result

    async def _append(self, result: EntryResult) -> None:
        async with self._lock:
            if result.entry.id in self._results:
                msg = f"entry {result.entry.id} already recorded"
                raise ValueError(msg)
            self._results[result.entry.id] = result

    def __len__(self) -> int:
        return len(self._results)

    def has(self, entry: CatalogEntry) -> bool:
        return entry.id in self._results

    async def build_report(
        self,
        *,
        catalog_degraded: bool = False,
        catalog_error: str | None = None,
        selector: EntrySelector | None = None,
        generated_at: datetime | None = None,
    ) -> Report:
        async with self._lock:
            results = sorted(
                self._results.values(), key=lambda r: r.entry.sort_key
            )
        return Report(
            results=results,
            generated_at=generated_at or datetime.now(UTC),
            catalog_degraded=catalog_degraded,
            catalog_error=catalog_error,
            selector=selector,
        )
