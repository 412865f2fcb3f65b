"""Timestamp normalization to ISO 8601 strings."""

from datetime import datetime, timezone


def _format(dt: datetime) -> str:
    # Millisecond precision, always UTC with a Z suffix
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: object) -> str | None:
    """Normalize a raw timestamp value to an ISO 8601 UTC string.

    Accepts ISO 8601 strings (with or without a Z suffix), epoch
    milliseconds as int/float, and datetime objects. Strings or datetimes
    without an offset are taken as UTC.

    Args:
        value: Raw timestamp value from a source

    Returns:
        String like "2026-01-26T00:38:34.590Z", or None when the value is
        missing or cannot be parsed
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    try:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, (int, float)):
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        elif isinstance(value, str):
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            dt = datetime.fromisoformat(text)
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return _format(dt)


def to_unix_seconds(iso_timestamp: str | None) -> int:
    """Convert a normalized ISO timestamp to Unix seconds (0 when absent)."""
    if not iso_timestamp:
        return 0
    try:
        return int(datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00")).timestamp())
    except ValueError:
        return 0
