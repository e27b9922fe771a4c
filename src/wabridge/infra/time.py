"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def iso_timestamp(value: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp used in outbound webhook bodies (second precision)."""
    moment = value or utc_now()
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def from_unix(value: object) -> datetime | None:
    """Convert a provider unix timestamp (seconds, int/str) to an aware datetime.

    Returns None for missing, non-numeric or out-of-range values
    (millisecond timestamps, infinities).
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
