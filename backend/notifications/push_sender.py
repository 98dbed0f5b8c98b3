"""
Web Push delivery via pywebpush.

WebPushSender is the push-sender capability the delivery executor calls once
per job. It never raises for push-service errors; it reports them as a
PushResult, flagging 404/410 responses as "gone" so the subscriber can be
deactivated.
"""

import requests
from pywebpush import WebPushException, webpush

from models.notification import PushPayload, PushResult, SigningCredentials
from models.subscriber import SubscriptionTarget

# Push services answer 410 (or 404) once a subscription has expired
GONE_STATUS_CODES = frozenset({404, 410})


class WebPushSender:
    """Sends one encrypted, VAPID-signed push message per call."""

    def __init__(self, ttl: int = 86400, timeout: float = 10.0):
        self.ttl = ttl
        self.timeout = timeout

    def __call__(
        self,
        target: SubscriptionTarget,
        payload: PushPayload,
        credentials: SigningCredentials,
    ) -> PushResult:
        return self.send(target, payload, credentials)

    def send(
        self,
        target: SubscriptionTarget,
        payload: PushPayload,
        credentials: SigningCredentials,
    ) -> PushResult:
        try:
            response = webpush(
                subscription_info=target.to_subscription_info(),
                data=payload.model_dump_json(exclude_none=True),
                vapid_private_key=credentials.private_key.get_secret_value(),
                # pywebpush adds aud/exp to the claims dict, so pass a fresh one
                vapid_claims={"sub": credentials.subject},
                ttl=self.ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            return PushResult(
                success=False,
                is_gone=status_code in GONE_STATUS_CODES,
                status_code=status_code,
                message=str(e),
            )
        except requests.RequestException as e:
            return PushResult(success=False, message=f"Push request failed: {e}")

        return PushResult(success=True, status_code=getattr(response, "status_code", None))
