"""
Supabase persistence for the dispatch pipeline.

Covers the tables the pipeline reads and writes: notifications, segments,
delivery_logs, recurring_schedules and rss_feeds.
"""

from datetime import datetime
from typing import Any, Protocol

from models.notification import (
    DeliveryOutcome,
    Notification,
    NotificationCreate,
    NotificationStatus,
    NotificationType,
    RecurrenceDescriptor,
)
from models.segment import Segment
from models.types import FeedID, NotificationID, SegmentID, SiteID
from shared.db import get_supabase_client

# Rows per insert when writing delivery logs
LOG_BATCH_SIZE = 500


class NotificationStore(Protocol):
    def get_notification(self, notification_id: NotificationID) -> Notification | None: ...

    def get_segment(self, segment_id: SegmentID) -> Segment | None: ...

    def update_segment_estimate(self, segment: Segment) -> None: ...

    def update_status(
        self,
        notification_id: NotificationID,
        status: NotificationStatus,
        sent_at: datetime | None = None,
        error_message: str | None = None,
    ) -> None: ...

    def transition_status(
        self,
        notification_id: NotificationID,
        expected: NotificationStatus,
        status: NotificationStatus,
        sent_at: datetime | None = None,
    ) -> bool: ...

    def insert_delivery_logs(self, outcomes: list[DeliveryOutcome]) -> int: ...

    def create_notification(self, notification: NotificationCreate) -> Notification: ...

    def count_notifications_since(
        self, site_id: SiteID, notification_type: NotificationType, since: datetime
    ) -> int: ...

    def list_active_recurrences(self) -> list[RecurrenceDescriptor]: ...

    def update_recurrence(
        self,
        descriptor: RecurrenceDescriptor,
        expected_next_run_at: datetime | None = None,
    ) -> bool: ...

    def update_feed_marker(
        self, feed_id: FeedID, last_item_guid: str | None, fetched_at: datetime
    ) -> None: ...


def _notification_from_row(row: dict[str, Any]) -> Notification:
    data = dict(row)
    # JSON columns may come back as null
    if data.get("utm_params") is None:
        data.pop("utm_params", None)
    if data.get("action_buttons") is None:
        data.pop("action_buttons", None)
    return Notification(**data)


class SupabaseNotificationStore:
    """NotificationStore backed by Supabase tables."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def get_notification(self, notification_id: NotificationID) -> Notification | None:
        response = (
            self.client.table("notifications")
            .select("*")
            .eq("id", notification_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _notification_from_row(response.data[0])

    def get_segment(self, segment_id: SegmentID) -> Segment | None:
        response = (
            self.client.table("segments")
            .select("id, site_id, name, rules, estimated_count")
            .eq("id", segment_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return Segment(**response.data[0])

    def update_segment_estimate(self, segment: Segment) -> None:
        self.client.table("segments").update(
            {"estimated_count": segment.estimated_count}
        ).eq("id", segment.id).execute()

    def update_status(
        self,
        notification_id: NotificationID,
        status: NotificationStatus,
        sent_at: datetime | None = None,
        error_message: str | None = None,
    ) -> None:
        update: dict[str, Any] = {"status": status.value}
        if sent_at is not None:
            update["sent_at"] = sent_at.isoformat()
        if error_message is not None:
            update["error_message"] = error_message

        self.client.table("notifications").update(update).eq(
            "id", notification_id
        ).execute()

    def transition_status(
        self,
        notification_id: NotificationID,
        expected: NotificationStatus,
        status: NotificationStatus,
        sent_at: datetime | None = None,
    ) -> bool:
        """
        Move a notification from ``expected`` to ``status`` in one conditional update.

        Returns:
            False when the row no longer has the expected status
        """
        update: dict[str, Any] = {"status": status.value}
        if sent_at is not None:
            update["sent_at"] = sent_at.isoformat()

        response = (
            self.client.table("notifications")
            .update(update)
            .eq("id", notification_id)
            .eq("status", expected.value)
            .execute()
        )
        return bool(response.data)

    def insert_delivery_logs(self, outcomes: list[DeliveryOutcome]) -> int:
        """Append one delivery_logs row per outcome. Returns rows written."""
        rows = [outcome.to_log_row() for outcome in outcomes]
        for start in range(0, len(rows), LOG_BATCH_SIZE):
            self.client.table("delivery_logs").insert(
                rows[start : start + LOG_BATCH_SIZE], returning="minimal"
            ).execute()
        return len(rows)

    def create_notification(self, notification: NotificationCreate) -> Notification:
        response = (
            self.client.table("notifications")
            .insert(notification.model_dump(mode="json"))
            .execute()
        )
        return _notification_from_row(response.data[0])

    def count_notifications_since(
        self, site_id: SiteID, notification_type: NotificationType, since: datetime
    ) -> int:
        response = (
            self.client.table("notifications")
            .select("id", count="exact")
            .eq("site_id", site_id)
            .eq("type", notification_type.value)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return response.count or 0

    def list_active_recurrences(self) -> list[RecurrenceDescriptor]:
        response = (
            self.client.table("recurring_schedules")
            .select("*")
            .eq("is_active", True)
            .order("next_run_at", desc=False)
            .execute()
        )
        return [RecurrenceDescriptor(**row) for row in response.data or []]

    def update_recurrence(
        self,
        descriptor: RecurrenceDescriptor,
        expected_next_run_at: datetime | None = None,
    ) -> bool:
        """
        Save next_run_at and is_active.

        With ``expected_next_run_at`` the row is only updated while it still
        holds that slot, so one of two overlapping ticks wins.

        Returns:
            False when the conditional update matched no row
        """
        query = (
            self.client.table("recurring_schedules")
            .update(
                {
                    "next_run_at": descriptor.next_run_at.isoformat(),
                    "is_active": descriptor.is_active,
                }
            )
            .eq("id", descriptor.id)
        )
        if expected_next_run_at is not None:
            query = query.eq("next_run_at", expected_next_run_at.isoformat())
        response = query.execute()
        return expected_next_run_at is None or bool(response.data)

    def update_feed_marker(
        self, feed_id: FeedID, last_item_guid: str | None, fetched_at: datetime
    ) -> None:
        update: dict[str, Any] = {"last_fetched_at": fetched_at.isoformat()}
        if last_item_guid is not None:
            update["last_item_guid"] = last_item_guid
        self.client.table("rss_feeds").update(update).eq("id", feed_id).execute()
