"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def from_timestamp(seconds: int | float) -> datetime:
    """Convert a POSIX timestamp (e.g. a JWT 'exp' claim) to a UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class Clock:
    """
    Injectable time source.

    Services take a Clock instead of calling now_utc() directly so that
    expiry and cooldown comparisons can be driven deterministically in tests.
    """

    def now(self) -> datetime:
        """Current time in UTC."""
        return now_utc()
