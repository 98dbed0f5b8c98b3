"""
Subscriber storage access used by segment resolution and delivery.

SupabaseSubscriberRepository reads the ``subscribers`` table. Any object with
the same three methods can stand in for it (tests use an in-memory version).
"""

from typing import Any, Protocol

from models.subscriber import Subscriber
from models.types import SiteID, SubscriberID
from segments.query_splitter import StorageFilter
from shared.db import get_supabase_client

SUBSCRIBER_COLUMNS = (
    "id, site_id, endpoint, p256dh_key, auth_key, browser, os, country, "
    "tags, metadata, is_active, subscribed_at, last_seen_at"
)

# Supabase caps a single select at 1000 rows
PAGE_SIZE = 1000


class SubscriberRepository(Protocol):
    def find_by_site_with_filter(
        self, site_id: SiteID, storage_filter: StorageFilter
    ) -> list[Subscriber]: ...

    def count_by_site_with_filter(
        self, site_id: SiteID, storage_filter: StorageFilter
    ) -> int: ...

    def set_active(self, subscriber_id: SubscriberID, is_active: bool) -> None: ...


def apply_storage_filter(query: Any, storage_filter: StorageFilter) -> Any:
    """Chain a StorageFilter's predicates onto a Supabase query builder."""
    for predicate in storage_filter.predicates:
        if predicate.op == "eq":
            query = query.eq(predicate.column, predicate.value)
        else:
            query = query.in_(predicate.column, predicate.value)

    if storage_filter.subscribed_before is not None:
        query = query.lte("subscribed_at", storage_filter.subscribed_before.isoformat())

    return query


class SupabaseSubscriberRepository:
    """Subscriber repository backed by the Supabase ``subscribers`` table."""

    def __init__(self, client: Any = None, page_size: int = PAGE_SIZE):
        self._client = client
        self.page_size = page_size

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def find_by_site_with_filter(
        self, site_id: SiteID, storage_filter: StorageFilter
    ) -> list[Subscriber]:
        """
        Fetch every subscriber of a site that satisfies the storage filter.

        Reads page by page so audiences larger than one select are complete.
        """
        subscribers: list[Subscriber] = []
        start = 0

        while True:
            query = (
                self.client.table("subscribers")
                .select(SUBSCRIBER_COLUMNS)
                .eq("site_id", site_id)
            )
            query = apply_storage_filter(query, storage_filter)
            response = (
                query.order("id", desc=False)
                .range(start, start + self.page_size - 1)
                .execute()
            )

            rows = response.data or []
            subscribers.extend(Subscriber(**row) for row in rows)

            if len(rows) < self.page_size:
                break
            start += self.page_size

        return subscribers

    def count_by_site_with_filter(
        self, site_id: SiteID, storage_filter: StorageFilter
    ) -> int:
        query = (
            self.client.table("subscribers")
            .select("id", count="exact")
            .eq("site_id", site_id)
        )
        response = apply_storage_filter(query, storage_filter).limit(1).execute()
        return response.count or 0

    def set_active(self, subscriber_id: SubscriberID, is_active: bool) -> None:
        self.client.table("subscribers").update({"is_active": is_active}).eq(
            "id", subscriber_id
        ).execute()
