"""
Delivery execution: fan delivery jobs out to the push sender.

Jobs run on a bounded thread pool and pass through a sliding-window rate
limiter, so at most ``concurrency_limit`` sends are in flight and at most
``max_jobs_per_window`` sends start per window. Jobs over the limit wait in
the queue; none are dropped.

Every job produces exactly one DeliveryOutcome, in job order, whatever
happens inside the send.
"""

import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from models.notification import (
    DeliveryJob,
    DeliveryOutcome,
    DeliveryStatus,
    PushPayload,
    PushResult,
    SigningCredentials,
)
from models.subscriber import SubscriptionTarget
from models.types import SubscriberID
from notifications.error_logger import log_notification_error
from shared.utils import utc_now

SendFn = Callable[[SubscriptionTarget, PushPayload, SigningCredentials], PushResult]
OnGone = Callable[[SubscriberID], None]

ABANDONED_MESSAGE = "Abandoned: batch deadline exceeded"


class SlidingWindowRateLimiter:
    """Allow at most ``max_events`` acquisitions in any ``window_seconds`` span."""

    def __init__(
        self,
        max_events: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.max_events = max_events
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._events: deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self, deadline: float | None = None) -> bool:
        """
        Block until a slot is free.

        Args:
            deadline: Clock value after which to give up waiting

        Returns:
            True when a slot was taken, False if the deadline passed first
        """
        while True:
            with self._lock:
                now = self._clock()
                while self._events and self._events[0] <= now - self.window_seconds:
                    self._events.popleft()

                if len(self._events) < self.max_events:
                    self._events.append(now)
                    return True

                wait = self._events[0] + self.window_seconds - now

            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return False
                wait = min(wait, remaining)

            self._sleep(max(wait, 0.001))


class DeliveryExecutor:
    """Runs delivery jobs with bounded concurrency and per-job failure isolation."""

    def __init__(
        self,
        concurrency_limit: int = 10,
        max_jobs_per_window: int = 100,
        window_seconds: float = 1.0,
        on_gone: OnGone | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        self.concurrency_limit = concurrency_limit
        self.on_gone = on_gone
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            max_jobs_per_window, window_seconds, clock=clock
        )
        self._clock = clock

    def execute(
        self,
        jobs: list[DeliveryJob],
        send_fn: SendFn,
        deadline_seconds: float | None = None,
    ) -> list[DeliveryOutcome]:
        """
        Send every job and collect one outcome per job.

        Args:
            jobs: Delivery jobs from the dispatch planner
            send_fn: Push-sender capability, called once per job
            deadline_seconds: Optional bound on the whole batch; jobs not
                started in time are not sent and are recorded as FAILED

        Returns:
            Outcomes in the same order as ``jobs``
        """
        if not jobs:
            return []

        deadline = None
        if deadline_seconds is not None:
            deadline = self._clock() + deadline_seconds

        workers = min(self.concurrency_limit, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="push") as pool:
            futures = [pool.submit(self._run_job, job, send_fn, deadline) for job in jobs]
            return [future.result() for future in futures]

    def _run_job(
        self, job: DeliveryJob, send_fn: SendFn, deadline: float | None
    ) -> DeliveryOutcome:
        if deadline is not None and self._clock() >= deadline:
            return _abandoned(job)
        if not self.rate_limiter.acquire(deadline):
            return _abandoned(job)

        try:
            result = send_fn(job.target, job.payload, job.credentials)
            success, is_gone = bool(result.success), bool(result.is_gone)
            message = result.message or f"Push service returned status {result.status_code}"
        except Exception as e:
            message = str(e) or type(e).__name__
            print(f"  ✗ Push to subscriber {job.subscriber_id} raised: {message}")
            return _failed(job, message)

        if success:
            return DeliveryOutcome(
                notification_id=job.notification_id,
                subscriber_id=job.subscriber_id,
                status=DeliveryStatus.SENT,
                delivered_at=utc_now(),
            )

        print(f"  ✗ Push to subscriber {job.subscriber_id} failed: {message}")

        if is_gone:
            outcome = _failed(job, message)
            outcome.deactivated = self._deactivate(job)
            return outcome

        return _failed(job, message)

    def _deactivate(self, job: DeliveryJob) -> bool:
        """Mark a gone subscriber inactive. Failures are reported, not raised."""
        if self.on_gone is None:
            return False

        try:
            self.on_gone(job.subscriber_id)
        except Exception as e:
            error_file = log_notification_error(
                error_type="deactivation",
                error_message=str(e),
                context={
                    "notification_id": job.notification_id,
                    "subscriber_id": job.subscriber_id,
                },
            )
            print(f"  ⚠️  Could not deactivate subscriber {job.subscriber_id}. Details logged to: {error_file}")
            return False

        print(f"  ⊘ Subscriber {job.subscriber_id} marked inactive (endpoint gone)")
        return True


def _failed(job: DeliveryJob, message: str) -> DeliveryOutcome:
    return DeliveryOutcome(
        notification_id=job.notification_id,
        subscriber_id=job.subscriber_id,
        status=DeliveryStatus.FAILED,
        error_message=message,
    )


def _abandoned(job: DeliveryJob) -> DeliveryOutcome:
    outcome = _failed(job, ABANDONED_MESSAGE)
    outcome.abandoned = True
    return outcome


def summarize_outcomes(outcomes: list[DeliveryOutcome]) -> dict[str, int]:
    """Counts of sent, failed, deactivated and abandoned deliveries."""
    stats = {"sent": 0, "failed": 0, "deactivated": 0, "abandoned": 0}
    for outcome in outcomes:
        if outcome.status == DeliveryStatus.FAILED:
            stats["failed"] += 1
        else:
            stats["sent"] += 1
        if outcome.deactivated:
            stats["deactivated"] += 1
        if outcome.abandoned:
            stats["abandoned"] += 1
    stats["total"] = len(outcomes)
    return stats
