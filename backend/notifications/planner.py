"""
Dispatch planning: expand one notification send into per-subscriber jobs.

Planning does no I/O. The caller persists the SENDING status before planning
and the final status after the jobs have been executed.
"""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from models.notification import (
    DeliveryJob,
    Notification,
    PushPayload,
    SigningCredentials,
)
from models.subscriber import Subscriber

# Query parameter carrying the notification id for click attribution
TRACKING_PARAM = "nid"


def build_destination_url(notification: Notification) -> str:
    """
    Destination URL with UTM parameters and the notification id merged in.

    Existing query parameters are kept; UTM values override same-named ones.
    """
    url = notification.destination_url or "/"
    scheme, netloc, path, query, fragment = urlsplit(url)

    params = dict(parse_qsl(query, keep_blank_values=True))
    for key, value in (notification.utm_params or {}).items():
        if value:
            params[key] = value
    params[TRACKING_PARAM] = notification.id

    return urlunsplit((scheme, netloc, path, urlencode(params), fragment))


def build_payload(
    notification: Notification, tracking_base_url: str | None = None
) -> PushPayload:
    """Build the service-worker payload for a notification."""
    data = {
        "notificationId": notification.id,
        "url": build_destination_url(notification),
        "actionButtons": [
            button.model_dump(exclude_none=True) for button in notification.action_buttons
        ],
    }
    if tracking_base_url:
        data["clickTrackingUrl"] = (
            f"{tracking_base_url.rstrip('/')}/notifications/{notification.id}/click"
        )

    return PushPayload(
        title=notification.title,
        body=notification.message,
        icon=notification.icon_url,
        image=notification.image_url,
        data=data,
    )


def plan(
    notification: Notification,
    subscribers: list[Subscriber],
    credentials: SigningCredentials,
    tracking_base_url: str | None = None,
) -> list[DeliveryJob]:
    """
    Build one delivery job per subscriber.

    Args:
        notification: Notification being sent
        subscribers: Resolved audience
        credentials: Site signing credentials
        tracking_base_url: Optional base URL for click-tracking links

    Returns:
        Jobs in audience order; empty when the audience is empty
    """
    if not subscribers:
        return []

    payload = build_payload(notification, tracking_base_url)

    return [
        DeliveryJob(
            notification_id=notification.id,
            subscriber_id=subscriber.id,
            target=subscriber.subscription_target(),
            payload=payload.model_copy(deep=True),
            credentials=credentials,
        )
        for subscriber in subscribers
    ]
