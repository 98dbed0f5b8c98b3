"""Pydantic models for data validation and type checking."""

from models.notification import (
    ActionButton,
    DeliveryJob,
    DeliveryOutcome,
    DeliveryStatus,
    IntervalType,
    Notification,
    NotificationCreate,
    NotificationStatus,
    NotificationType,
    PushPayload,
    PushResult,
    RecurrenceDescriptor,
    SigningCredentials,
)
from models.rss import RssCheck, RssFeed, RssItem
from models.segment import Condition, Group, RuleOperator, Segment, parse_rule_tree
from models.subscriber import Subscriber, SubscriptionTarget

__all__ = [
    "ActionButton",
    "Condition",
    "DeliveryJob",
    "DeliveryOutcome",
    "DeliveryStatus",
    "Group",
    "IntervalType",
    "Notification",
    "NotificationCreate",
    "NotificationStatus",
    "NotificationType",
    "PushPayload",
    "PushResult",
    "RecurrenceDescriptor",
    "RssCheck",
    "RssFeed",
    "RssItem",
    "RuleOperator",
    "Segment",
    "SigningCredentials",
    "Subscriber",
    "SubscriptionTarget",
    "parse_rule_tree",
]
