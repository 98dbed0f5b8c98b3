"""
Error reports for the dispatch pipeline.

Writes one timestamped report file per error so failures in background sends,
subscriber deactivation, and scheduler ticks stay observable. Values under
secret-looking keys are redacted before anything is written.
"""

import os
import uuid
from datetime import datetime
from typing import Any

from pydantic import SecretStr

LOG_DIR_ENV = "NOTIFICATION_ERROR_LOG_DIR"

_SECRET_MARKERS = ("private", "secret", "password", "token", "auth_key")


def _redact(key: str, value: Any) -> Any:
    if isinstance(value, SecretStr):
        return "**********"
    if any(marker in key.lower() for marker in _SECRET_MARKERS):
        return "**********"
    if isinstance(value, dict):
        return {k: _redact(str(k), v) for k, v in value.items()}
    return value


def log_notification_error(
    error_type: str, error_message: str, context: dict[str, Any] | None = None
) -> str:
    """
    Write a notification error report to a timestamped file.

    Args:
        error_type: Type of error (e.g., 'credentials', 'sending', 'deactivation', 'tick')
        error_message: The error message
        context: Optional dictionary with additional context (notification_id, site_id, etc.)

    Returns:
        Path to the report file created
    """
    log_dir = os.getenv(LOG_DIR_ENV) or os.path.join(os.path.dirname(__file__), "logs")
    os.makedirs(log_dir, exist_ok=True)

    # Reports can be written from several delivery threads in the same second
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filename = os.path.join(
        log_dir, f"notification_error_{error_type}_{timestamp}_{uuid.uuid4().hex[:8]}.txt"
    )

    with open(filename, "w", encoding="utf-8") as f:
        f.write(f"Notification Error Report - {datetime.now()}\n")
        f.write("=" * 60 + "\n\n")
        f.write(f"Error Type: {error_type}\n")
        f.write(f"Error Message: {error_message}\n\n")

        if context:
            f.write("Context:\n")
            f.write("-" * 60 + "\n")
            for key, value in context.items():
                f.write(f"{key}: {_redact(key, value)}\n")

    return filename
