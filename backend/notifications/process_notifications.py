"""
CLI script for sending notifications, ticking recurring schedules and
turning new RSS items into notifications.

Usage:
    # Send one notification now
    uv run python -m notifications.process_notifications --send <notification-id>

    # Preview the audience without sending
    uv run python -m notifications.process_notifications --send <notification-id> --dry-run

    # Evaluate recurring schedules (run from cron, e.g. every minute)
    uv run python -m notifications.process_notifications --tick-recurring

    # Turn new feed items into notifications (JSON list of {"feed", "items"}
    # written by the feed poller, e.g. every 15 minutes)
    uv run python -m notifications.process_notifications --process-rss <checks.json>

    # Recompute a segment's estimated audience size
    uv run python -m notifications.process_notifications --estimate <segment-id>
"""

import argparse
import json
import sys

from models.rss import RssCheck
from notifications.credentials import SupabaseCredentialsProvider
from notifications.dispatcher import NotificationDispatcher
from notifications.error_logger import log_notification_error
from notifications.push_sender import WebPushSender
from notifications.store import SupabaseNotificationStore
from scheduling.recurrence import RecurrenceClock
from scheduling.rss_trigger import RssTrigger
from segments.repository import SupabaseSubscriberRepository
from segments.segment_resolver import SegmentResolver
from shared.config import PipelineSettings, load_settings
from shared.db import get_supabase_client
from shared.errors import (
    CredentialsError,
    InvalidStatusTransitionError,
    NotificationNotFoundError,
    SegmentNotFoundError,
)
from shared.utils import print_summary


def build_dispatcher(settings: PipelineSettings) -> NotificationDispatcher:
    """Wire the pipeline against Supabase and pywebpush."""
    client = get_supabase_client()
    return NotificationDispatcher(
        store=SupabaseNotificationStore(client),
        resolver=SegmentResolver(SupabaseSubscriberRepository(client)),
        credentials_provider=SupabaseCredentialsProvider(
            client, subject=settings.vapid_subject
        ),
        sender=WebPushSender(ttl=settings.push_ttl_seconds),
        settings=settings,
    )


def send_notification(
    dispatcher: NotificationDispatcher, notification_id: str, dry_run: bool = False
) -> int:
    """Send one notification. Returns a process exit code."""
    try:
        report = dispatcher.send(notification_id, dry_run=dry_run)
    except (NotificationNotFoundError, InvalidStatusTransitionError) as e:
        print(f"✗ {e}")
        return 1
    except (SegmentNotFoundError, CredentialsError) as e:
        print(f"✗ Send aborted: {e}")
        return 1

    if report.dry_run:
        print_summary("Dry Run Complete", {"audience": report.audience_size})
        return 0

    print_summary(f"Notification {report.status.value}", report.stats)
    return 0


def tick_recurring(dispatcher: NotificationDispatcher) -> int:
    clock = RecurrenceClock(dispatcher.store, dispatcher.submit)
    stats = clock.tick()
    dispatcher.shutdown(wait=True)
    print_summary("Recurring Schedules Processed", stats)
    return 1 if stats["failed"] else 0


def load_rss_checks(path: str) -> list[RssCheck]:
    with open(path, encoding="utf-8") as f:
        return [RssCheck.model_validate(entry) for entry in json.load(f)]


def process_rss(dispatcher: NotificationDispatcher, checks: list[RssCheck]) -> int:
    """Create and dispatch notifications for new feed items."""
    trigger = RssTrigger(dispatcher.store, dispatcher.submit)
    stats = {"feeds": 0, "created": 0, "skipped_by_limit": 0, "failed": 0}

    for check in checks:
        if not check.feed.is_active:
            continue
        stats["feeds"] += 1
        try:
            result = trigger.process(check.feed, check.items)
        except Exception as e:
            error_file = log_notification_error(
                error_type="rss",
                error_message=str(e),
                context={"feed_id": check.feed.id, "site_id": check.feed.site_id},
            )
            print(f"  ⚠️  Feed {check.feed.name} failed. Details logged to: {error_file}")
            stats["failed"] += 1
            continue
        stats["created"] += len(result.created)
        stats["skipped_by_limit"] += result.skipped_by_limit

    dispatcher.shutdown(wait=True)
    print_summary("RSS Feeds Processed", stats)
    return 1 if stats["failed"] else 0


def estimate_segment(dispatcher: NotificationDispatcher, segment_id: str) -> int:
    store = dispatcher.store
    segment = store.get_segment(segment_id)
    if segment is None:
        print(f"✗ Segment {segment_id} not found")
        return 1

    refreshed = dispatcher.resolver.refresh_estimate(segment)
    store.update_segment_estimate(refreshed)
    print(f"✓ Segment '{refreshed.name}' matches about {refreshed.estimated_count} subscribers")
    return 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Send push notifications and process recurring schedules"
    )

    parser.add_argument("--send", metavar="NOTIFICATION_ID", help="Send a notification")

    parser.add_argument(
        "--tick-recurring",
        action="store_true",
        help="Trigger recurring notifications that are due",
    )

    parser.add_argument(
        "--process-rss",
        metavar="CHECKS_FILE",
        help="Create notifications for new RSS items listed in a JSON file",
    )

    parser.add_argument(
        "--estimate", metavar="SEGMENT_ID", help="Recompute a segment's estimated count"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode (resolve the audience but don't send)",
    )

    args = parser.parse_args()

    if not (args.send or args.tick_recurring or args.process_rss or args.estimate):
        parser.error("Must specify --send, --tick-recurring, --process-rss or --estimate")

    settings = load_settings()
    dispatcher = build_dispatcher(settings)

    exit_code = 0
    if args.send:
        exit_code |= send_notification(dispatcher, args.send, dry_run=args.dry_run)
    if args.tick_recurring:
        exit_code |= tick_recurring(dispatcher)
    if args.process_rss:
        exit_code |= process_rss(dispatcher, load_rss_checks(args.process_rss))
    if args.estimate:
        exit_code |= estimate_segment(dispatcher, args.estimate)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
