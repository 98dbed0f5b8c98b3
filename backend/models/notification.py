"""Pydantic models for notifications, recurrence, and delivery records."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from models.subscriber import SubscriptionTarget
from models.types import (
    NotificationID,
    SegmentID,
    SiteID,
    SubscriberID,
    UtmParams,
)


class NotificationType(str, Enum):
    ONE_TIME = "ONE_TIME"
    RECURRING = "RECURRING"
    TRIGGERED = "TRIGGERED"
    RSS = "RSS"


class NotificationStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    SENDING = "SENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset(
    {
        NotificationStatus.COMPLETED,
        NotificationStatus.CANCELLED,
        NotificationStatus.FAILED,
    }
)

# Status moves only forward: DRAFT/SCHEDULED -> SENDING -> terminal
_ALLOWED_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.DRAFT: frozenset(
        {
            NotificationStatus.SCHEDULED,
            NotificationStatus.SENDING,
            NotificationStatus.CANCELLED,
        }
    ),
    NotificationStatus.SCHEDULED: frozenset(
        {NotificationStatus.SENDING, NotificationStatus.CANCELLED}
    ),
    NotificationStatus.SENDING: TERMINAL_STATUSES,
    NotificationStatus.COMPLETED: frozenset(),
    NotificationStatus.CANCELLED: frozenset(),
    NotificationStatus.FAILED: frozenset(),
}


def can_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    """Whether a notification may move from ``current`` to ``target``."""
    return target in _ALLOWED_TRANSITIONS[current]


def is_editable(status: NotificationStatus) -> bool:
    """Only drafts and scheduled notifications accept content edits."""
    return status in (NotificationStatus.DRAFT, NotificationStatus.SCHEDULED)


class ActionButton(BaseModel):
    """Button rendered on the browser notification."""

    action: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    url: str | None = None


class NotificationCreate(BaseModel):
    """Notification data for database insertion (before ID assignment)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    site_id: SiteID
    type: NotificationType = NotificationType.ONE_TIME
    status: NotificationStatus = NotificationStatus.DRAFT
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    icon_url: str | None = None
    image_url: str | None = None
    destination_url: str | None = None
    utm_params: UtmParams = Field(default_factory=dict)
    action_buttons: list[ActionButton] = Field(default_factory=list)
    segment_id: SegmentID | None = None
    scheduled_at: datetime | None = None
    parent_id: NotificationID | None = None


class Notification(NotificationCreate):
    """Complete notification record from database."""

    id: NotificationID
    sent_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class IntervalType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class RecurrenceDescriptor(BaseModel):
    """Schedule attached to a RECURRING notification."""

    id: str
    notification_id: NotificationID
    interval_type: IntervalType
    interval_value: int = Field(1, ge=1)
    start_date: datetime
    end_date: datetime | None = None
    next_run_at: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def _next_run_not_before_start(self) -> "RecurrenceDescriptor":
        if self.next_run_at < self.start_date:
            raise ValueError("next_run_at must not be earlier than start_date")
        return self


class SigningCredentials(BaseModel):
    """VAPID key pair for one site. The private key is never printed."""

    model_config = ConfigDict(frozen=True)

    public_key: str = Field(..., min_length=1)
    private_key: SecretStr
    subject: str = "mailto:admin@example.com"


class PushPayload(BaseModel):
    """JSON body the service worker receives and displays."""

    title: str
    body: str
    icon: str | None = None
    image: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class DeliveryJob(BaseModel):
    """One subscriber's share of a send. Exists only in memory."""

    notification_id: NotificationID
    subscriber_id: SubscriberID
    target: SubscriptionTarget
    payload: PushPayload
    credentials: SigningCredentials


class PushResult(BaseModel):
    """What the push-sender capability reports for one message."""

    success: bool
    is_gone: bool = False
    status_code: int | None = None
    message: str | None = None


class DeliveryStatus(str, Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    CLICKED = "CLICKED"
    DISMISSED = "DISMISSED"
    FAILED = "FAILED"


class DeliveryOutcome(BaseModel):
    """Result of one delivery job, shaped like a delivery_logs row."""

    notification_id: NotificationID
    subscriber_id: SubscriberID
    status: DeliveryStatus
    error_message: str | None = None
    delivered_at: datetime | None = None
    deactivated: bool = False
    abandoned: bool = False

    def to_log_row(self) -> dict[str, Any]:
        """Row for the append-only delivery_logs table."""
        return {
            "notification_id": self.notification_id,
            "subscriber_id": self.subscriber_id,
            "status": self.status.value,
            "error_message": self.error_message,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
        }
