"""Catalog retrieval: publisher client and paginated fetcher."""

from apiconform.catalog.client import PublisherClient
from apiconform.catalog.fetcher import (
    CatalogFetcher,
    entry_from_detail,
    entry_from_list_item,
)

__all__ = [
    "CatalogFetcher",
    "PublisherClient",
    "entry_from_detail",
    "entry_from_list_item",
]
