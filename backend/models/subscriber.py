"""Pydantic models for push subscribers."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.types import SiteID, SubscriberID, TagMap


class SubscriptionTarget(BaseModel):
    """Where a push message goes: the endpoint plus its encryption keys."""

    model_config = ConfigDict(frozen=True)

    endpoint: str = Field(..., min_length=1)
    p256dh: str
    auth: str

    def to_subscription_info(self) -> dict:
        """Subscription in the shape browsers and pywebpush use."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class Subscriber(BaseModel):
    """Browser push subscriber record from database."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: SubscriberID
    site_id: SiteID
    endpoint: str = Field(..., min_length=1)
    p256dh_key: str
    auth_key: str
    browser: str | None = None
    os: str | None = None
    country: str | None = None
    tags: TagMap = Field(default_factory=dict)
    metadata: TagMap = Field(default_factory=dict)
    is_active: bool = True
    subscribed_at: datetime | None = None
    last_seen_at: datetime | None = None

    def subscription_target(self) -> SubscriptionTarget:
        return SubscriptionTarget(
            endpoint=self.endpoint, p256dh=self.p256dh_key, auth=self.auth_key
        )
