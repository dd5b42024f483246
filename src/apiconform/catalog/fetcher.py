"""Paginated retrieval of catalog entries."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from apiconform.resilience.errors import CatalogError, SetupError, is_auth_error
from apiconform.schemas import CatalogEntry, CatalogResult, EntrySelector

logger = logging.getLogger(__name__)

# Errors that end pagination with a partial (degraded) result
_CATALOG_ERRORS = (
    CatalogError,
    httpx.HTTPError,
    json.JSONDecodeError,
    ValueError,
    KeyError,
    TypeError,
)


class CatalogSource(Protocol):
    async def list_apis(self, *, limit: int, offset: int) -> dict[str, Any]: ...
    async def get_api(self, api_id: str) -> dict[str, Any] | None: ...


def entry_from_list_item(item: dict[str, Any]) -> CatalogEntry:
    """Normalize an item of the listing response (flat owner fields)."""
    return CatalogEntry(
        id=str(item["id"]),
        name=str(item["name"]),
        version=str(item["version"]),
        provider=str(item.get("provider") or ""),
        context=item.get("context"),
        lifecycle_status=item.get("lifeCycleStatus"),
        business_owner=item.get("businessOwner"),
        business_owner_email=item.get("businessOwnerEmail"),
        technical_owner=item.get("technicalOwner"),
        technical_owner_email=item.get("technicalOwnerEmail"),
    )


def entry_from_detail(detail: dict[str, Any]) -> CatalogEntry:
    """Normalize a single-API detail response (nested owner block)."""
    business: dict[str, Any] = detail.get("businessInformation") or {}
    return CatalogEntry(
        id=str(detail["id"]),
        name=str(detail["name"]),
        version=str(detail["version"]),
        provider=str(detail.get("provider") or ""),
        context=detail.get("context"),
        lifecycle_status=detail.get("lifeCycleStatus"),
        business_owner=business.get("businessOwner"),
        business_owner_email=business.get("businessOwnerEmail"),
        technical_owner=business.get("technicalOwner"),
        technical_owner_email=business.get("technicalOwnerEmail"),
    )


class CatalogFetcher:
    """Produces the set of catalog entries to validate.

    Pagination stops at the first page shorter than ``page_size``.
    A transport or parse error mid-way returns what was accumulated
    so far, flagged as degraded. A rejected credential (401/403) is a
    setup failure and is raised.
    """

    def __init__(self, source: CatalogSource, page_size: int) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._source = source
        self._page_size = page_size

    async def fetch(
        self, selector: EntrySelector | None = None
    ) -> CatalogResult:
        if selector is not None and selector.api_id:
            return await self._fetch_one(selector.api_id)

        result = await self._fetch_all()
        if selector is not None:
            result.entries = [e for e in result.entries if selector.matches(e)]
        return result

    async def _fetch_one(self, api_id: str) -> CatalogResult:
        try:
            detail = await self._source.get_api(api_id)
            if detail is None:
                logger.info("event=catalog_no_match api_id=%s", api_id)
                return CatalogResult(pages_fetched=1)
            entry = entry_from_detail(detail)
        except _CATALOG_ERRORS as exc:
            self._raise_if_auth(exc)
            logger.warning(
                "event=catalog_lookup_failed api_id=%s error=%s", api_id, exc
            )
            return CatalogResult(degraded=True, error=str(exc))
        return CatalogResult(entries=[entry], pages_fetched=1)

    async def _fetch_all(self) -> CatalogResult:
        entries: list[CatalogEntry] = []
        seen: set[str] = set()
        offset = 0
        pages = 0

        while True:
            try:
                page = await self._source.list_apis(
                    limit=self._page_size, offset=offset
                )
                items = page.get("list")
                if not isinstance(items, list):
                    msg = "catalog page has no 'list' array"
                    raise CatalogError(msg)
                parsed = [entry_from_list_item(item) for item in items]
            except _CATALOG_ERRORS as exc:
                self._raise_if_auth(exc)
                logger.warning(
                    "event=catalog_partial pages=%d entries=%d error=%s",
                    pages,
                    len(entries),
                    exc,
                )
                return CatalogResult(
                    entries=entries,
                    degraded=True,
                    error=str(exc) or type(exc).__name__,
                    pages_fetched=pages,
                )

            pages += 1
            for entry in parsed:
                if entry.id in seen:
                    logger.debug("event=catalog_duplicate api_id=%s", entry.id)
                    continue
                seen.add(entry.id)
                entries.append(entry)

            if len(items) < self._page_size:
                break
            offset += self._page_size

        logger.info(
            "event=catalog_fetched pages=%d entries=%d", pages, len(entries)
        )
        return CatalogResult(entries=entries, pages_fetched=pages)

    @staticmethod
    def _raise_if_auth(exc: Exception) -> None:
        if is_auth_error(exc):
            msg = f"publisher rejected the credential: {exc}"
            raise SetupError(msg) from exc
