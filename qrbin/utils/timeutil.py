"""
UTC time helpers.

All timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso8601(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string (``Z`` suffix allowed) into naive UTC, None if blank."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_iso8601(value: datetime) -> str:
    """Render a naive UTC datetime the way JavaScript's toISOString does."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
