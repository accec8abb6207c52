"""UTC helpers.

The database stores **naive** UTC datetimes. Upstream payloads carry a mix of
RFC 3339 timestamps with offsets and bare ``"%Y-%m-%d %H:%M"`` strings; these
helpers normalize both into the naive-UTC form the ORM expects.
"""

from datetime import datetime, timezone

START_TIME_FORMAT = "%Y-%m-%d %H:%M"


def utcnow() -> datetime:
    """Return the current UTC time as a naive (tzinfo=None) datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_start_time(text: str) -> datetime:
    """Parse the minute-precision tournament start time (no zone, UTC)."""
    return datetime.strptime(text.strip(), START_TIME_FORMAT)
