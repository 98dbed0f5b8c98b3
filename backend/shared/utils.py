from datetime import datetime, timezone
from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: object) -> datetime | None:
    """Parse a datetime or ISO 8601 string into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        try:
            dt = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def print_summary(title: str, stats: dict[str, int]) -> None:
    """Print a processing summary block."""
    print(f"\n{'=' * 60}")
    print(f"[{datetime.now()}] {title}")
    print(f"{'=' * 60}")
    for key, value in stats.items():
        print(f"{key.capitalize() + ':':<14}{value}")
    print(f"{'=' * 60}\n")
