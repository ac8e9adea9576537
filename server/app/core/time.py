"""UTC datetime utilities.

All timestamps leaving the API are timezone-aware UTC rendered in ISO 8601
with a ``Z`` suffix, matching what the dashboard frontend parses.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as an aware datetime."""
    return datetime.now(UTC)


def isoformat_z(value: datetime) -> str:
    """Render a datetime as ISO 8601 UTC with millisecond precision and ``Z``.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
