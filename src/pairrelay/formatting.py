"""Formatting helpers for timestamps and log output."""

from datetime import datetime, timezone


def iso_timestamp(epoch_seconds: float) -> str:
    """Format a Unix timestamp as ISO 8601 UTC with millisecond precision.

    Args:
        epoch_seconds: Seconds since the epoch.

    Returns:
        Timestamp string such as ``"2024-01-01T12:00:00.000Z"``.

    Examples:
        >>> iso_timestamp(0)
        '1970-01-01T00:00:00.000Z'
    """
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def short_id(value: str, length: int = 8) -> str:
    """Shorten an identifier for log output (e.g. ``'0e49b502...'``)."""
    if len(value) <= length:
        return value
    return f"{value[:length]}..."
