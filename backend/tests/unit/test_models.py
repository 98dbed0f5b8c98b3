"""Unit tests for Pydantic models."""

import unittest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from models import (
    Condition,
    DeliveryOutcome,
    DeliveryStatus,
    Group,
    IntervalType,
    NotificationCreate,
    NotificationStatus,
    RecurrenceDescriptor,
    Segment,
    SigningCredentials,
    parse_rule_tree,
)
from models.notification import can_transition, is_editable
from models.segment import is_universal, rule_tree_to_data


class TestRuleTreeParsing(unittest.TestCase):
    """Tests for parse_rule_tree() and the rule node union."""

    def test_none_and_empty_dict_mean_no_rules(self):
        self.assertIsNone(parse_rule_tree(None))
        self.assertIsNone(parse_rule_tree({}))

    def test_single_condition(self):
        node = parse_rule_tree({"field": "browser", "operator": "equals", "value": "Chrome"})

        self.assertIsInstance(node, Condition)
        self.assertEqual(node.value, "Chrome")

    def test_nested_groups(self):
        node = parse_rule_tree(
            {
                "operator": "and",
                "conditions": [
                    {"field": "country", "operator": "equals", "value": "US"},
                    {
                        "operator": "NOT",
                        "conditions": [{"field": "tags.vip", "operator": "exists"}],
                    },
                ],
            }
        )

        self.assertIsInstance(node, Group)
        self.assertEqual(node.operator, "AND")
        self.assertIsInstance(node.conditions[0], Condition)
        self.assertIsInstance(node.conditions[1], Group)
        self.assertEqual(node.conditions[1].operator, "NOT")

    def test_group_operator_defaults_to_and(self):
        node = parse_rule_tree({"conditions": []})

        self.assertEqual(node.operator, "AND")

    def test_not_requires_exactly_one_child(self):
        with self.assertRaises(ValidationError):
            parse_rule_tree({"operator": "NOT", "conditions": []})

        with self.assertRaises(ValidationError):
            parse_rule_tree(
                {
                    "operator": "NOT",
                    "conditions": [
                        {"field": "os", "operator": "equals", "value": "Linux"},
                        {"field": "os", "operator": "equals", "value": "Android"},
                    ],
                }
            )

    def test_unknown_group_operator_rejected(self):
        with self.assertRaises(ValidationError):
            parse_rule_tree({"operator": "XOR", "conditions": []})

    def test_unknown_condition_operator_is_kept(self):
        """Unknown operators parse; the evaluator treats them as non-matches"""
        node = parse_rule_tree({"field": "os", "operator": "fuzzy", "value": "x"})

        self.assertEqual(node.operator, "fuzzy")

    def test_unrecognized_shape_rejected(self):
        with self.assertRaises(ValueError):
            parse_rule_tree({"color": "blue"})

        with self.assertRaises(ValueError):
            parse_rule_tree(["browser"])

    def test_legacy_flat_rules(self):
        node = parse_rule_tree({"browser": "Chrome", "country": "", "subscribed_days_ago": "7"})

        self.assertEqual(node.operator, "AND")
        self.assertEqual(
            node.conditions,
            [
                Condition(field="browser", operator="equals", value="Chrome"),
                Condition(field="subscribed_days_ago", operator="greater_than_or_equal", value=7),
            ],
        )

    def test_round_trip_to_data(self):
        data = {
            "operator": "OR",
            "conditions": [{"field": "os", "operator": "in", "value": ["Linux", "Android"]}],
        }

        self.assertEqual(rule_tree_to_data(parse_rule_tree(data)), data)

    def test_is_universal(self):
        self.assertTrue(is_universal(None))
        self.assertTrue(is_universal(Group(operator="OR")))
        self.assertFalse(is_universal(Condition(field="os", operator="is_null")))


class TestSegmentModel(unittest.TestCase):
    """Tests for Segment validation."""

    def test_segment_with_rules(self):
        segment = Segment(
            id="seg-1",
            site_id="site-1",
            name="  US Chrome  ",
            rules={"field": "browser", "operator": "equals", "value": "Chrome"},
        )

        self.assertEqual(segment.name, "US Chrome")
        self.assertIsInstance(segment.rule_tree(), Condition)

    def test_segment_rejects_malformed_rules(self):
        with self.assertRaises(ValidationError):
            Segment(id="seg-1", site_id="site-1", name="Bad", rules={"operator": "NOT", "conditions": []})

    def test_negative_estimate_rejected(self):
        with self.assertRaises(ValidationError):
            Segment(id="seg-1", site_id="site-1", name="Bad", estimated_count=-1)


class TestNotificationStatus(unittest.TestCase):
    """Tests for the notification status machine."""

    def test_forward_transitions(self):
        self.assertTrue(can_transition(NotificationStatus.DRAFT, NotificationStatus.SENDING))
        self.assertTrue(can_transition(NotificationStatus.SCHEDULED, NotificationStatus.SENDING))
        self.assertTrue(can_transition(NotificationStatus.SENDING, NotificationStatus.COMPLETED))
        self.assertTrue(can_transition(NotificationStatus.SENDING, NotificationStatus.FAILED))

    def test_no_backward_transitions(self):
        self.assertFalse(can_transition(NotificationStatus.SENDING, NotificationStatus.SCHEDULED))
        self.assertFalse(can_transition(NotificationStatus.COMPLETED, NotificationStatus.SENDING))
        self.assertFalse(can_transition(NotificationStatus.FAILED, NotificationStatus.SENDING))
        self.assertFalse(can_transition(NotificationStatus.CANCELLED, NotificationStatus.SCHEDULED))

    def test_editable_statuses(self):
        self.assertTrue(is_editable(NotificationStatus.DRAFT))
        self.assertTrue(is_editable(NotificationStatus.SCHEDULED))
        self.assertFalse(is_editable(NotificationStatus.SENDING))

    def test_notification_create_defaults(self):
        notification = NotificationCreate(site_id="site-1", title="Hello", message="World")

        self.assertEqual(notification.status, NotificationStatus.DRAFT)
        self.assertEqual(notification.utm_params, {})
        self.assertEqual(notification.action_buttons, [])

    def test_notification_requires_title(self):
        with self.assertRaises(ValidationError):
            NotificationCreate(site_id="site-1", title="   ", message="World")


class TestRecurrenceDescriptor(unittest.TestCase):
    """Tests for RecurrenceDescriptor validation."""

    def test_next_run_before_start_rejected(self):
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)

        with self.assertRaises(ValidationError):
            RecurrenceDescriptor(
                id="rec-1",
                notification_id="n-1",
                interval_type=IntervalType.DAILY,
                start_date=start,
                next_run_at=start - timedelta(days=1),
            )

    def test_interval_value_must_be_positive(self):
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)

        with self.assertRaises(ValidationError):
            RecurrenceDescriptor(
                id="rec-1",
                notification_id="n-1",
                interval_type=IntervalType.WEEKLY,
                interval_value=0,
                start_date=start,
                next_run_at=start,
            )


class TestDeliveryModels(unittest.TestCase):
    """Tests for credentials and delivery records."""

    def test_private_key_hidden_in_repr(self):
        credentials = SigningCredentials(public_key="pub", private_key="very-secret")

        self.assertNotIn("very-secret", repr(credentials))
        self.assertEqual(credentials.private_key.get_secret_value(), "very-secret")

    def test_outcome_log_row(self):
        delivered_at = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
        outcome = DeliveryOutcome(
            notification_id="n-1",
            subscriber_id="s-1",
            status=DeliveryStatus.SENT,
            delivered_at=delivered_at,
            deactivated=False,
        )

        self.assertEqual(
            outcome.to_log_row(),
            {
                "notification_id": "n-1",
                "subscriber_id": "s-1",
                "status": "SENT",
                "error_message": None,
                "delivered_at": delivered_at.isoformat(),
            },
        )


if __name__ == "__main__":
    unittest.main()
