"""Errors raised by the dispatch pipeline for batch-wide preconditions.

Per-rule and per-subscriber failures are never raised; they are converted to
data (a false match or a FAILED delivery outcome).
"""


class NotificationNotFoundError(LookupError):
    """Raised when a send is requested for a notification that does not exist."""

    def __init__(self, notification_id: str):
        super().__init__(f"Notification {notification_id} not found")
        self.notification_id = notification_id


class InvalidStatusTransitionError(ValueError):
    """Raised when a notification cannot move to the requested status."""

    def __init__(self, notification_id: str, current: str, target: str):
        super().__init__(
            f"Notification {notification_id} cannot move from {current} to {target}"
        )
        self.notification_id = notification_id
        self.current = current
        self.target = target


class CredentialsError(RuntimeError):
    """Raised when signing credentials for a site cannot be obtained."""

    def __init__(self, site_id: str, reason: str):
        super().__init__(f"Signing credentials unavailable for site {site_id}: {reason}")
        self.site_id = site_id
        self.reason = reason


class SegmentNotFoundError(LookupError):
    """Raised when a notification targets a segment that no longer exists."""

    def __init__(self, segment_id: str):
        super().__init__(f"Segment {segment_id} not found")
        self.segment_id = segment_id
