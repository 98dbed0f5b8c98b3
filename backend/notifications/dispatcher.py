"""
Notification sending: resolve the audience, plan jobs, deliver, record.

NotificationDispatcher owns the status machine of a single send:

    DRAFT/SCHEDULED -> SENDING -> COMPLETED | FAILED

Batch-wide precondition failures (missing segment, missing signing
credentials, storage errors while loading either) propagate to the caller
after the notification has been marked FAILED. A notification that is
unknown, or that another send already moved to SENDING, is left untouched.
Per-subscriber failures only show up in the delivery outcomes.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime

from pydantic import BaseModel, Field

from models.notification import (
    DeliveryOutcome,
    Notification,
    NotificationStatus,
    can_transition,
)
from models.types import NotificationID
from notifications.credentials import CredentialsProvider
from notifications.error_logger import log_notification_error
from notifications.executor import DeliveryExecutor, SendFn, summarize_outcomes
from notifications.planner import plan
from notifications.store import NotificationStore
from segments.segment_resolver import SegmentResolver
from shared.config import PipelineSettings
from shared.errors import (
    CredentialsError,
    InvalidStatusTransitionError,
    NotificationNotFoundError,
    SegmentNotFoundError,
)
from shared.utils import utc_now


class SendReport(BaseModel):
    """What one send produced: final status plus the delivery-log records."""

    notification_id: NotificationID
    status: NotificationStatus
    audience_size: int = 0
    stats: dict[str, int] = Field(default_factory=dict)
    outcomes: list[DeliveryOutcome] = Field(default_factory=list)
    error_message: str | None = None
    dry_run: bool = False


def final_status(sent: int, total: int, min_success_ratio: float = 0.0) -> NotificationStatus:
    """
    Notification status after delivery.

    An empty audience completes. Otherwise at least one delivery must succeed
    and the success ratio must reach ``min_success_ratio``.
    """
    if total == 0:
        return NotificationStatus.COMPLETED
    if sent == 0:
        return NotificationStatus.FAILED
    if sent / total >= min_success_ratio:
        return NotificationStatus.COMPLETED
    return NotificationStatus.FAILED


def _precondition_error_type(error: Exception) -> str:
    if isinstance(error, SegmentNotFoundError):
        return "segment"
    if isinstance(error, CredentialsError):
        return "credentials"
    return "precondition"


class NotificationDispatcher:
    """Runs notification sends end to end."""

    def __init__(
        self,
        store: NotificationStore,
        resolver: SegmentResolver,
        credentials_provider: CredentialsProvider,
        sender: SendFn,
        settings: PipelineSettings | None = None,
        executor: DeliveryExecutor | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.credentials_provider = credentials_provider
        self.sender = sender
        self.settings = settings or PipelineSettings()
        self.executor = executor or DeliveryExecutor(
            concurrency_limit=self.settings.concurrency_limit,
            max_jobs_per_window=self.settings.rate_limit_max_jobs,
            window_seconds=self.settings.rate_limit_window_seconds,
            on_gone=self._deactivate_subscriber,
        )
        self._background: ThreadPoolExecutor | None = None
        self._background_lock = threading.Lock()

    def _deactivate_subscriber(self, subscriber_id) -> None:
        self.resolver.repository.set_active(subscriber_id, False)

    def _load(self, notification_id: NotificationID) -> Notification:
        notification = self.store.get_notification(notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        if not can_transition(notification.status, NotificationStatus.SENDING):
            raise InvalidStatusTransitionError(
                notification_id, notification.status.value, NotificationStatus.SENDING.value
            )
        return notification

    def _claim(self, notification: Notification, started_at: datetime) -> None:
        """Move the notification to SENDING unless another send got there first."""
        claimed = self.store.transition_status(
            notification.id,
            notification.status,
            NotificationStatus.SENDING,
            sent_at=started_at,
        )
        if not claimed:
            current = self.store.get_notification(notification.id)
            raise InvalidStatusTransitionError(
                notification.id,
                current.status.value if current else "a deleted notification",
                NotificationStatus.SENDING.value,
            )

    def _segment_rules(self, notification: Notification):
        if notification.segment_id is None:
            return None
        segment = self.store.get_segment(notification.segment_id)
        if segment is None:
            raise SegmentNotFoundError(notification.segment_id)
        return segment.rule_tree()

    def _fail(self, notification: Notification, error_type: str, error: Exception) -> None:
        """Mark the notification FAILED and write an error report."""
        message = str(error)
        self.store.update_status(
            notification.id, NotificationStatus.FAILED, error_message=message
        )
        error_file = log_notification_error(
            error_type=error_type,
            error_message=message,
            context={
                "notification_id": notification.id,
                "site_id": notification.site_id,
                "segment_id": notification.segment_id,
            },
        )
        print(f"  ✗ Notification {notification.id} failed: {message}")
        print(f"    Error details logged to: {error_file}")

    def send(
        self,
        notification_id: NotificationID,
        now: datetime | None = None,
        dry_run: bool = False,
    ) -> SendReport:
        """
        Send a notification to its audience.

        Args:
            notification_id: Notification in DRAFT or SCHEDULED status
            now: Reference time for segment date rules and sent_at
            dry_run: Resolve and plan only; no status changes, no pushes

        Returns:
            SendReport with final status and one outcome per subscriber

        Raises:
            NotificationNotFoundError: If the notification does not exist
            InvalidStatusTransitionError: If it is not DRAFT or SCHEDULED, or a
                concurrent send claimed it first
            SegmentNotFoundError: If its segment no longer exists
            CredentialsError: If the site's signing keys cannot be loaded
        """
        started_at = now or utc_now()
        notification = self._load(notification_id)
        print(f"Sending notification {notification_id} ({notification.title})")

        if dry_run:
            rules = self._segment_rules(notification)
            credentials = self.credentials_provider.get_credentials(notification.site_id)
            subscribers = self.resolver.resolve(notification.site_id, rules, started_at)
            jobs = plan(notification, subscribers, credentials, self.settings.click_tracking_base_url)
            print(f"  [DRY RUN] Would send to {len(jobs)} subscribers")
            return SendReport(
                notification_id=notification_id,
                status=notification.status,
                audience_size=len(jobs),
                dry_run=True,
            )

        self._claim(notification, started_at)

        try:
            rules = self._segment_rules(notification)
            credentials = self.credentials_provider.get_credentials(notification.site_id)
        except Exception as e:
            self._fail(notification, _precondition_error_type(e), e)
            raise

        try:
            subscribers = self.resolver.resolve(notification.site_id, rules, started_at)
            jobs = plan(
                notification,
                subscribers,
                credentials,
                self.settings.click_tracking_base_url,
            )

            if not jobs:
                print("  No matching subscribers; marking completed.")
                self.store.update_status(notification_id, NotificationStatus.COMPLETED)
                return SendReport(
                    notification_id=notification_id,
                    status=NotificationStatus.COMPLETED,
                    stats=summarize_outcomes([]),
                )

            print(f"  Delivering to {len(jobs)} subscribers...")
            outcomes = self.executor.execute(
                jobs,
                self.sender,
                deadline_seconds=self.settings.batch_deadline_seconds(len(jobs)),
            )
            self.store.insert_delivery_logs(outcomes)
        except Exception as e:
            self._fail(notification, "sending", e)
            raise

        stats = summarize_outcomes(outcomes)
        status = final_status(
            stats["sent"], stats["total"], self.settings.completion_min_success_ratio
        )
        error_message = None
        if status == NotificationStatus.FAILED:
            error_message = f"{stats['failed']} of {stats['total']} deliveries failed"
        self.store.update_status(notification_id, status, error_message=error_message)

        marker = "✓" if status == NotificationStatus.COMPLETED else "✗"
        print(
            f"  {marker} {status.value}: {stats['sent']} sent, {stats['failed']} failed, "
            f"{stats['deactivated']} deactivated, {stats['abandoned']} abandoned"
        )

        return SendReport(
            notification_id=notification_id,
            status=status,
            audience_size=len(jobs),
            stats=stats,
            outcomes=outcomes,
            error_message=error_message,
        )

    def submit(self, notification_id: NotificationID) -> Future:
        """
        Start a send in the background.

        The returned future carries the SendReport or the raised error; a
        failure is also written to an error report even if nobody waits on it.
        """
        with self._background_lock:
            if self._background is None:
                self._background = ThreadPoolExecutor(
                    max_workers=2, thread_name_prefix="send"
                )
            future = self._background.submit(self.send, notification_id)

        def _report_failure(done: Future) -> None:
            error = done.exception()
            if error is None:
                return
            error_file = log_notification_error(
                error_type="background_send",
                error_message=str(error),
                context={
                    "notification_id": notification_id,
                    "error_class": type(error).__name__,
                },
            )
            print(f"  ⚠️  Background send of {notification_id} failed. Details logged to: {error_file}")

        future.add_done_callback(_report_failure)
        return future

    def shutdown(self, wait: bool = True) -> None:
        with self._background_lock:
            if self._background is not None:
                self._background.shutdown(wait=wait)
                self._background = None
