"""
Unit tests for notifications/dispatcher.py

Tests the send status machine, batch-wide precondition failures, dry runs,
completion thresholds, and background submission.
"""

import unittest
from unittest.mock import Mock, patch

from models.notification import NotificationStatus, PushResult
from notifications.dispatcher import NotificationDispatcher, final_status
from segments.segment_resolver import SegmentResolver
from shared.config import PipelineSettings
from shared.errors import (
    CredentialsError,
    InvalidStatusTransitionError,
    NotificationNotFoundError,
    SegmentNotFoundError,
)
from tests.fixtures.mock_helpers import (
    FakePushSender,
    InMemoryNotificationStore,
    InMemorySubscriberRepository,
)
from tests.fixtures.push_factory import (
    FIXED_NOW,
    create_test_credentials,
    create_test_notification,
    create_test_segment,
    create_test_subscriber,
)


def build(notifications, subscribers, segments=None, sender=None, settings=None):
    store = InMemoryNotificationStore(notifications, segments)
    repository = InMemorySubscriberRepository(subscribers)
    credentials_provider = Mock()
    credentials_provider.get_credentials.return_value = create_test_credentials()
    sender = sender or FakePushSender()
    dispatcher = NotificationDispatcher(
        store=store,
        resolver=SegmentResolver(repository),
        credentials_provider=credentials_provider,
        sender=sender,
        settings=settings,
    )
    return dispatcher, store, repository, sender


class TestFinalStatus(unittest.TestCase):
    """Tests for final_status()"""

    def test_empty_audience_completes(self):
        self.assertEqual(final_status(0, 0), NotificationStatus.COMPLETED)

    def test_all_failed(self):
        self.assertEqual(final_status(0, 5), NotificationStatus.FAILED)

    def test_partial_success_completes_by_default(self):
        self.assertEqual(final_status(1, 100), NotificationStatus.COMPLETED)

    def test_min_success_ratio(self):
        self.assertEqual(final_status(49, 100, 0.5), NotificationStatus.FAILED)
        self.assertEqual(final_status(50, 100, 0.5), NotificationStatus.COMPLETED)


@patch("notifications.dispatcher.log_notification_error", return_value="/tmp/report.txt")
class TestSend(unittest.TestCase):
    """Tests for NotificationDispatcher.send()"""

    def test_successful_send(self, mock_log_error):
        notification = create_test_notification("n-1")
        subscribers = [create_test_subscriber(f"s{i}") for i in range(3)]
        dispatcher, store, _, sender = build([notification], subscribers)

        report = dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(report.status, NotificationStatus.COMPLETED)
        self.assertEqual(report.stats["sent"], 3)
        self.assertEqual(len(store.delivery_logs), 3)
        self.assertEqual(len(sender.calls), 3)
        self.assertEqual(
            store.statuses_for("n-1"),
            [NotificationStatus.SENDING, NotificationStatus.COMPLETED],
        )
        self.assertEqual(store.notifications["n-1"].sent_at, FIXED_NOW)
        mock_log_error.assert_not_called()

    def test_segment_targeting(self, mock_log_error):
        segment = create_test_segment(
            "seg-1", rules={"field": "country", "operator": "equals", "value": "DE"}
        )
        notification = create_test_notification("n-1", segment_id="seg-1")
        subscribers = [
            create_test_subscriber("us", country="US"),
            create_test_subscriber("de", country="DE"),
        ]
        dispatcher, store, _, _ = build([notification], subscribers, [segment])

        report = dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual([o.subscriber_id for o in report.outcomes], ["de"])

    def test_empty_audience_completes_without_logs(self, mock_log_error):
        dispatcher, store, _, sender = build([create_test_notification("n-1")], [])

        report = dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(report.status, NotificationStatus.COMPLETED)
        self.assertEqual(store.delivery_logs, [])
        self.assertEqual(sender.calls, [])

    def test_all_deliveries_failed(self, mock_log_error):
        subscribers = [create_test_subscriber("a"), create_test_subscriber("b")]
        sender = FakePushSender(
            results={s.endpoint: PushResult(success=False, status_code=500) for s in subscribers}
        )
        dispatcher, store, _, _ = build([create_test_notification("n-1")], subscribers, sender=sender)

        report = dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(report.status, NotificationStatus.FAILED)
        self.assertEqual(report.error_message, "2 of 2 deliveries failed")
        self.assertEqual(store.notifications["n-1"].error_message, "2 of 2 deliveries failed")
        self.assertEqual(len(store.delivery_logs), 2)

    def test_completion_ratio_setting(self, mock_log_error):
        subscribers = [create_test_subscriber(f"s{i}") for i in range(4)]
        sender = FakePushSender(
            results={s.endpoint: PushResult(success=False) for s in subscribers[:3]}
        )
        settings = PipelineSettings(completion_min_success_ratio=0.5)
        dispatcher, _, _, _ = build(
            [create_test_notification("n-1")], subscribers, sender=sender, settings=settings
        )

        report = dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(report.status, NotificationStatus.FAILED)

    def test_gone_subscriber_deactivated_through_repository(self, mock_log_error):
        subscribers = [create_test_subscriber("a"), create_test_subscriber("b")]
        sender = FakePushSender(
            results={subscribers[0].endpoint: PushResult(success=False, is_gone=True, status_code=410)}
        )
        dispatcher, _, repository, _ = build([create_test_notification("n-1")], subscribers, sender=sender)

        report = dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(repository.deactivated, ["a"])
        self.assertFalse(repository.subscribers["a"].is_active)
        self.assertEqual(report.status, NotificationStatus.COMPLETED)

    def test_unknown_notification(self, mock_log_error):
        dispatcher, _, _, _ = build([], [])

        with self.assertRaises(NotificationNotFoundError):
            dispatcher.send("missing")

    def test_cannot_resend_completed(self, mock_log_error):
        notification = create_test_notification("n-1", status=NotificationStatus.COMPLETED)
        dispatcher, store, _, _ = build([notification], [create_test_subscriber("a")])

        with self.assertRaises(InvalidStatusTransitionError):
            dispatcher.send("n-1")

        self.assertEqual(store.status_history, [])

    def test_missing_segment_fails_notification(self, mock_log_error):
        notification = create_test_notification("n-1", segment_id="deleted-seg")
        dispatcher, store, _, sender = build([notification], [create_test_subscriber("a")])

        with self.assertRaises(SegmentNotFoundError):
            dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(store.notifications["n-1"].status, NotificationStatus.FAILED)
        self.assertEqual(sender.calls, [])
        self.assertEqual(mock_log_error.call_args.kwargs["error_type"], "segment")

    def test_missing_credentials_fails_without_delivery_logs(self, mock_log_error):
        dispatcher, store, _, sender = build(
            [create_test_notification("n-1")], [create_test_subscriber("a")]
        )
        dispatcher.credentials_provider.get_credentials.side_effect = CredentialsError(
            "site-1", "VAPID keys are not configured"
        )

        with self.assertRaises(CredentialsError):
            dispatcher.send("n-1", now=FIXED_NOW)

        failed = store.notifications["n-1"]
        self.assertEqual(failed.status, NotificationStatus.FAILED)
        self.assertIn("VAPID keys are not configured", failed.error_message)
        self.assertEqual(store.delivery_logs, [])
        self.assertEqual(sender.calls, [])

    def test_segment_lookup_error_marks_failed(self, mock_log_error):
        notification = create_test_notification("n-1", segment_id="seg-1")
        dispatcher, store, _, sender = build([notification], [create_test_subscriber("a")])
        store.get_segment = Mock(side_effect=RuntimeError("db down"))

        with self.assertRaises(RuntimeError):
            dispatcher.send("n-1", now=FIXED_NOW)

        failed = store.notifications["n-1"]
        self.assertEqual(failed.status, NotificationStatus.FAILED)
        self.assertEqual(failed.error_message, "db down")
        self.assertEqual(sender.calls, [])
        self.assertEqual(mock_log_error.call_args.kwargs["error_type"], "precondition")

    def test_credentials_lookup_error_marks_failed(self, mock_log_error):
        dispatcher, store, _, _ = build(
            [create_test_notification("n-1")], [create_test_subscriber("a")]
        )
        dispatcher.credentials_provider.get_credentials.side_effect = ValueError(
            "Missing Supabase settings: SUPABASE_URL"
        )

        with self.assertRaises(ValueError):
            dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(store.notifications["n-1"].status, NotificationStatus.FAILED)

    def test_send_claimed_by_another_worker_is_skipped(self, mock_log_error):
        dispatcher, store, _, sender = build(
            [create_test_notification("n-1")], [create_test_subscriber("a")]
        )
        claim = store.transition_status

        def claimed_elsewhere_first(*args, **kwargs):
            store.update_status("n-1", NotificationStatus.SENDING)
            return claim(*args, **kwargs)

        store.transition_status = claimed_elsewhere_first

        with self.assertRaises(InvalidStatusTransitionError) as ctx:
            dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(ctx.exception.current, "SENDING")
        self.assertEqual(store.statuses_for("n-1"), [NotificationStatus.SENDING])
        self.assertEqual(sender.calls, [])
        self.assertEqual(store.delivery_logs, [])

    def test_store_failure_during_logging_marks_failed(self, mock_log_error):
        dispatcher, store, _, _ = build([create_test_notification("n-1")], [create_test_subscriber("a")])
        store.insert_delivery_logs = Mock(side_effect=RuntimeError("insert failed"))

        with self.assertRaises(RuntimeError):
            dispatcher.send("n-1", now=FIXED_NOW)

        self.assertEqual(store.notifications["n-1"].status, NotificationStatus.FAILED)
        self.assertEqual(mock_log_error.call_args.kwargs["error_type"], "sending")

    def test_dry_run_changes_nothing(self, mock_log_error):
        dispatcher, store, _, sender = build(
            [create_test_notification("n-1")], [create_test_subscriber("a"), create_test_subscriber("b")]
        )

        report = dispatcher.send("n-1", now=FIXED_NOW, dry_run=True)

        self.assertTrue(report.dry_run)
        self.assertEqual(report.audience_size, 2)
        self.assertEqual(store.status_history, [])
        self.assertEqual(sender.calls, [])


@patch("notifications.dispatcher.log_notification_error", return_value="/tmp/report.txt")
class TestSubmit(unittest.TestCase):
    """Tests for NotificationDispatcher.submit()"""

    def test_background_send(self, mock_log_error):
        dispatcher, store, _, _ = build([create_test_notification("n-1")], [create_test_subscriber("a")])

        future = dispatcher.submit("n-1")
        report = future.result(timeout=10)
        dispatcher.shutdown()

        self.assertEqual(report.status, NotificationStatus.COMPLETED)
        mock_log_error.assert_not_called()

    def test_background_failure_is_reported(self, mock_log_error):
        dispatcher, _, _, _ = build([], [])

        future = dispatcher.submit("missing")
        with self.assertRaises(NotificationNotFoundError):
            future.result(timeout=10)
        dispatcher.shutdown()

        mock_log_error.assert_called_once()
        self.assertEqual(mock_log_error.call_args.kwargs["error_type"], "background_send")


if __name__ == "__main__":
    unittest.main()
