"""Authenticated HTTP client for the API publisher REST interface."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from apiconform.config import Settings
from apiconform.constants import (
    DOWNLOAD_CHUNK_BYTES,
    RETRY_INITIAL_WAIT,
    RETRY_MAX_WAIT,
)
from apiconform.resilience.errors import DownloadError, is_retryable
from apiconform.schemas import CatalogEntry

logger = logging.getLogger(__name__)

_ARCHIVE_CONTENT_TYPES = ("application/zip", "application/octet-stream")


class PublisherClient:
    """Thin wrapper over ``httpx.AsyncClient``.

    Attaches the bearer token to every request and applies the
    configured timeout. Use as an async context manager::

        async with PublisherClient(settings) as client:
            page = await client.list_apis(limit=25, offset=0)
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers={"Authorization": f"Bearer {settings.token}"},
            timeout=httpx.Timeout(settings.request_timeout_seconds),
            verify=settings.verify_tls,
            transport=transport,
        )

    async def __aenter__(self) -> PublisherClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_apis(self, *, limit: int, offset: int) -> dict[str, Any]:
        """Fetch one page of the catalog listing."""
        response = await self._client.get(
            "/apis", params={"limit": limit, "offset": offset}
        )
        response.raise_for_status()
        return _json_object(response)

    async def get_api(self, api_id: str) -> dict[str, Any] | None:
        """Fetch a single API's detail; None if it does not exist."""
        response = await self._client.get(f"/apis/{api_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return _json_object(response)

    async def download_export(
        self, entry: CatalogEntry, destination: Path
    ) -> int:
        """Stream an API's export archive to ``destination``.

        Retries transient, server and timeout errors with jittered
        exponential backoff. Returns the number of bytes written.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential_jitter(
                initial=RETRY_INITIAL_WAIT, max=RETRY_MAX_WAIT
            ),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._stream_export(entry, destination)
        raise DownloadError("unreachable: retry loop exited")  # pragma: no cover

    async def _stream_export(
        self, entry: CatalogEntry, destination: Path
    ) -> int:
        params = {
            "apiId": entry.id,
            "name": entry.name,
            "version": entry.version,
            "provider": entry.provider,
            "format": self._settings.export_format,
        }
        destination.parent.mkdir(parents=True, exist_ok=True)
        async with self._client.stream(
            "GET", "/apis/export", params=params
        ) as response:
            if response.status_code != 200:
                await response.aread()
                msg = (
                    f"export of {entry.label} failed: "
                    f"HTTP {response.status_code}"
                )
                raise DownloadError(msg, status_code=response.status_code)
            content_type = response.headers.get("content-type", "")
            if content_type and not content_type.startswith(
                _ARCHIVE_CONTENT_TYPES
            ):
                msg = (
                    f"export of {entry.label} returned "
                    f"unexpected content type {content_type!r}"
                )
                raise DownloadError(msg, status_code=response.status_code)

            written = 0
            with destination.open("wb") as fh:
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_BYTES):
                    fh.write(chunk)
                    written += len(chunk)

        logger.debug(
            "event=export_downloaded api_id=%s bytes=%d path=%s",
            entry.id,
            written,
            destination,
        )
        return written


def _json_object(response: httpx.Response) -> dict[str, Any]:
    data = response.json()
    if not isinstance(data, dict):
        msg = f"expected JSON object from {response.url}, got {type(data).__name__}"
        raise ValueError(msg)
    return data
