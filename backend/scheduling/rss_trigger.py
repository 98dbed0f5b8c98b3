"""
RSS-triggered notifications.

The feed-polling collaborator hands over a feed's current items (newest
first). RssTrigger keeps only items newer than the feed's last-seen GUID,
applies the per-day push limit (counted from stored RSS notifications, so
it holds across processes), creates one notification per item,
dispatches the ones that are not drafts, and advances the feed marker.
"""

from concurrent.futures import Future
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from models.notification import (
    ActionButton,
    Notification,
    NotificationCreate,
    NotificationStatus,
    NotificationType,
)
from models.rss import RssFeed, RssItem
from models.types import FeedID, NotificationID
from notifications.store import NotificationStore
from shared.utils import parse_timestamp, utc_now

MESSAGE_MAX_LENGTH = 500


class RssProcessResult(BaseModel):
    """What one feed check produced."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    feed_id: FeedID
    created: list[Notification] = Field(default_factory=list)
    dispatched: list[Future] = Field(default_factory=list)
    skipped_by_limit: int = 0
    last_item_guid: str | None = None


def unseen_items(feed: RssFeed, items: list[RssItem]) -> list[RssItem]:
    """Items newer than the feed marker, newest first, without duplicate GUIDs."""
    fresh: list[RssItem] = []
    seen: set[str] = set()
    for item in items:
        if feed.last_item_guid is not None and item.guid == feed.last_item_guid:
            break
        if item.guid in seen:
            continue
        seen.add(item.guid)
        fresh.append(item)
    return fresh


def build_rss_notification(
    feed: RssFeed, item: RssItem, now: datetime, message_max_length: int = MESSAGE_MAX_LENGTH
) -> NotificationCreate:
    """Notification-creation request for one feed item."""
    message = (item.description or "").strip()[:message_max_length] or item.title

    action_buttons = []
    if feed.show_action_buttons:
        action_buttons.append(ActionButton(action="view", title="Read More"))

    return NotificationCreate(
        site_id=feed.site_id,
        type=NotificationType.RSS,
        status=NotificationStatus.DRAFT if feed.create_draft else NotificationStatus.SCHEDULED,
        title=item.title,
        message=message,
        icon_url=feed.icon_url or item.image,
        image_url=item.image,
        destination_url=item.link or None,
        # UTM values are merged into the link when the push payload is built
        utm_params=feed.utm_params,
        action_buttons=action_buttons,
        segment_id=feed.segment_id,
        scheduled_at=now,
    )


class RssTrigger:
    """Turns new feed items into notifications within each feed's daily limit."""

    def __init__(
        self,
        store: NotificationStore,
        dispatch: Callable[[NotificationID], Future | object],
        message_max_length: int = MESSAGE_MAX_LENGTH,
    ):
        self.store = store
        self.dispatch = dispatch
        self.message_max_length = message_max_length

    def pushes_today(self, feed: RssFeed, now: datetime) -> int:
        """RSS notifications already created for the feed's site since midnight UTC."""
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.store.count_notifications_since(
            feed.site_id, NotificationType.RSS, day_start
        )

    def process(
        self, feed: RssFeed, items: list[RssItem], now: datetime | None = None
    ) -> RssProcessResult:
        """
        Create notifications for a feed's new items.

        A limit of None or 0 on max_pushes_per_day means unlimited. The limit
        counts every RSS notification created today for the feed's site. When
        it is already used up, nothing is created and the marker stays put so
        the items are reconsidered on a later check.
        """
        now = parse_timestamp(now) or utc_now()
        result = RssProcessResult(feed_id=feed.id)

        fresh = unseen_items(feed, items)
        if not fresh:
            print(f"No new items for feed: {feed.name}")
            self.store.update_feed_marker(feed.id, None, now)
            return result

        print(f"Found {len(fresh)} new items for feed: {feed.name}")

        if feed.max_pushes_per_day:
            remaining = feed.max_pushes_per_day - self.pushes_today(feed, now)
            if remaining <= 0:
                print(f"  ⊘ Max pushes per day reached for feed: {feed.name}")
                result.skipped_by_limit = len(fresh)
                return result
            if len(fresh) > remaining:
                result.skipped_by_limit = len(fresh) - remaining
                fresh = fresh[:remaining]
                print(f"  Limited to {len(fresh)} items due to daily limit")

        for item in fresh:
            notification = self.store.create_notification(
                build_rss_notification(feed, item, now, self.message_max_length)
            )
            result.created.append(notification)
            print(f"  ✓ Created notification {notification.id} for RSS item: {item.title}")

            if notification.status != NotificationStatus.DRAFT:
                future = self.dispatch(notification.id)
                if isinstance(future, Future):
                    result.dispatched.append(future)

        result.last_item_guid = fresh[0].guid
        self.store.update_feed_marker(feed.id, result.last_item_guid, now)
        return result
