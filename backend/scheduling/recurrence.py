"""
Recurrence clock for RECURRING notifications.

Each RecurrenceDescriptor moves through

    PENDING -> DUE -> (run triggered, next_run_at advanced) -> PENDING
                   \\-> EXPIRED once next_run_at passes end_date

Missed ticks are skipped, not replayed: when a descriptor is found due, one
run is triggered and next_run_at jumps to the first slot after ``now``.
Slots are always computed from start_date, so monthly schedules anchored on
the 31st clamp to shorter months without drifting.
"""

import threading
from concurrent.futures import Future
from datetime import datetime
from enum import Enum
from typing import Callable

from dateutil.relativedelta import relativedelta

from models.notification import (
    IntervalType,
    NotificationCreate,
    NotificationStatus,
    NotificationType,
    RecurrenceDescriptor,
)
from models.types import NotificationID
from notifications.error_logger import log_notification_error
from notifications.store import NotificationStore
from shared.utils import parse_timestamp, utc_now


class RecurrenceState(str, Enum):
    PENDING = "PENDING"
    DUE = "DUE"
    EXPIRED = "EXPIRED"


def occurrence(
    start: datetime, interval_type: IntervalType, interval_value: int, k: int
) -> datetime:
    """The k-th scheduled slot (k = 0 is the start date itself)."""
    steps = interval_value * k
    if interval_type == IntervalType.DAILY:
        return start + relativedelta(days=steps)
    if interval_type == IntervalType.WEEKLY:
        return start + relativedelta(weeks=steps)
    return start + relativedelta(months=steps)


def _estimate_index(descriptor: RecurrenceDescriptor, start: datetime, now: datetime) -> int:
    if now <= start:
        return 0
    if descriptor.interval_type == IntervalType.MONTHLY:
        months = (now.year - start.year) * 12 + (now.month - start.month)
        return max(months // descriptor.interval_value, 0)
    days_per_step = 7 if descriptor.interval_type == IntervalType.WEEKLY else 1
    elapsed_days = (now - start).days
    return max(elapsed_days // (days_per_step * descriptor.interval_value), 0)


def next_slot_after(descriptor: RecurrenceDescriptor, now: datetime) -> datetime:
    """First scheduled slot strictly after ``now``."""
    start = parse_timestamp(descriptor.start_date)
    now = parse_timestamp(now)

    def slot(k: int) -> datetime:
        return occurrence(start, descriptor.interval_type, descriptor.interval_value, k)

    k = _estimate_index(descriptor, start, now)
    while k > 0 and slot(k - 1) > now:
        k -= 1
    while slot(k) <= now:
        k += 1
    return slot(k)


def state(descriptor: RecurrenceDescriptor, now: datetime | None = None) -> RecurrenceState:
    now = parse_timestamp(now) or utc_now()
    next_run_at = parse_timestamp(descriptor.next_run_at)
    end_date = parse_timestamp(descriptor.end_date)

    if not descriptor.is_active:
        return RecurrenceState.EXPIRED
    if end_date is not None and next_run_at > end_date:
        return RecurrenceState.EXPIRED
    if now >= next_run_at:
        return RecurrenceState.DUE
    return RecurrenceState.PENDING


def advance(descriptor: RecurrenceDescriptor, now: datetime | None = None) -> RecurrenceDescriptor:
    """
    Move next_run_at to the first slot after ``now``.

    The descriptor is deactivated when that slot lies past end_date.
    """
    now = parse_timestamp(now) or utc_now()
    next_run_at = next_slot_after(descriptor, now)
    end_date = parse_timestamp(descriptor.end_date)

    is_active = descriptor.is_active
    if end_date is not None and next_run_at > end_date:
        is_active = False

    return descriptor.model_copy(update={"next_run_at": next_run_at, "is_active": is_active})


class RecurrenceClock:
    """Evaluates recurring schedules on each scheduler tick."""

    def __init__(
        self,
        store: NotificationStore,
        dispatch: Callable[[NotificationID], Future | object],
    ):
        """
        Args:
            store: Notification store holding schedules and notifications
            dispatch: Starts a send for a notification id, typically
                NotificationDispatcher.submit
        """
        self.store = store
        self.dispatch = dispatch
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, descriptor_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(descriptor_id, threading.Lock())

    def tick(self, now: datetime | None = None) -> dict[str, int]:
        """
        Evaluate every active schedule once.

        Returns:
            Counts per outcome: triggered, pending, expired, busy, failed
        """
        now = parse_timestamp(now) or utc_now()
        stats = {"triggered": 0, "pending": 0, "expired": 0, "busy": 0, "failed": 0}

        for descriptor in self.store.list_active_recurrences():
            stats[self.process(descriptor, now)] += 1

        return stats

    def process(self, descriptor: RecurrenceDescriptor, now: datetime | None = None) -> str:
        """
        Evaluate one schedule. Overlapping evaluations of it are skipped.

        Within a process a per-schedule lock skips overlapping calls; across
        processes the conditional next_run_at update lets only one tick fire.
        """
        lock = self._lock_for(descriptor.id)
        if not lock.acquire(blocking=False):
            return "busy"

        try:
            return self._process_locked(descriptor, parse_timestamp(now) or utc_now())
        except Exception as e:
            error_file = log_notification_error(
                error_type="tick",
                error_message=str(e),
                context={
                    "recurrence_id": descriptor.id,
                    "notification_id": descriptor.notification_id,
                },
            )
            print(f"  ⚠️  Recurring schedule {descriptor.id} failed. Details logged to: {error_file}")
            return "failed"
        finally:
            lock.release()

    def _process_locked(self, descriptor: RecurrenceDescriptor, now: datetime) -> str:
        current = state(descriptor, now)

        if current == RecurrenceState.EXPIRED:
            self.store.update_recurrence(descriptor.model_copy(update={"is_active": False}))
            return "expired"
        if current == RecurrenceState.PENDING:
            return "pending"

        parent = self.store.get_notification(descriptor.notification_id)
        if parent is None or parent.status == NotificationStatus.CANCELLED:
            self.store.update_recurrence(descriptor.model_copy(update={"is_active": False}))
            return "expired"

        # Persist the new slot before triggering so a retry cannot fire twice.
        # The update is conditional on the slot we saw; losing it means another
        # tick already took this run.
        advanced = advance(descriptor, now)
        if not self.store.update_recurrence(
            advanced, expected_next_run_at=descriptor.next_run_at
        ):
            print(f"  ⊘ Recurring schedule {descriptor.id} already advanced by another tick")
            return "busy"

        run = self.store.create_notification(
            NotificationCreate(
                site_id=parent.site_id,
                type=NotificationType.RECURRING,
                status=NotificationStatus.SCHEDULED,
                title=parent.title,
                message=parent.message,
                icon_url=parent.icon_url,
                image_url=parent.image_url,
                destination_url=parent.destination_url,
                utm_params=parent.utm_params,
                action_buttons=parent.action_buttons,
                segment_id=parent.segment_id,
                scheduled_at=now,
                parent_id=parent.id,
            )
        )
        self.dispatch(run.id)

        print(
            f"  ✓ Triggered run {run.id} of recurring notification {parent.id}; "
            f"next run {advanced.next_run_at.isoformat() if advanced.is_active else 'none (expired)'}"
        )
        return "triggered"
