"""
Runtime configuration for the dispatch pipeline.

Values come from environment variables (optionally loaded from a .env file)
and are validated into a PipelineSettings model.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

load_dotenv()


class PipelineSettings(BaseModel):
    """Tunables for segment resolution, delivery fan-out, and completion."""

    concurrency_limit: int = Field(10, ge=1, le=200)
    rate_limit_max_jobs: int = Field(100, ge=1)
    rate_limit_window_seconds: float = Field(1.0, gt=0)
    batch_timeout_seconds: float = Field(300.0, gt=0)
    batch_timeout_per_job_seconds: float = Field(0.5, ge=0)
    push_ttl_seconds: int = Field(86400, ge=0)
    vapid_subject: str = "mailto:admin@example.com"
    click_tracking_base_url: str | None = None
    completion_min_success_ratio: float = Field(0.0, ge=0, le=1)

    def batch_deadline_seconds(self, job_count: int) -> float:
        """Upper bound for one send batch, proportional to audience size."""
        return self.batch_timeout_seconds + self.batch_timeout_per_job_seconds * job_count


_ENV_FIELDS = {
    "PUSH_CONCURRENCY": "concurrency_limit",
    "PUSH_RATE_LIMIT_MAX": "rate_limit_max_jobs",
    "PUSH_RATE_LIMIT_WINDOW_SECONDS": "rate_limit_window_seconds",
    "PUSH_BATCH_TIMEOUT_SECONDS": "batch_timeout_seconds",
    "PUSH_BATCH_TIMEOUT_PER_JOB_SECONDS": "batch_timeout_per_job_seconds",
    "PUSH_TTL_SECONDS": "push_ttl_seconds",
    "VAPID_SUBJECT": "vapid_subject",
    "CLICK_TRACKING_BASE_URL": "click_tracking_base_url",
    "COMPLETION_MIN_SUCCESS_RATIO": "completion_min_success_ratio",
}


def load_settings() -> PipelineSettings:
    """
    Build settings from environment variables.

    Unset variables fall back to the model defaults.

    Raises:
        ValueError: If any variable holds an invalid value
    """
    values = {}
    for env_name, field_name in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip() != "":
            values[field_name] = raw.strip()

    try:
        return PipelineSettings(**values)
    except ValidationError as e:
        raise ValueError(f"Invalid pipeline configuration: {e}") from e
