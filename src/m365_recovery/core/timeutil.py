"""Time conversions between caller datetimes and the platform's wire formats.

The platform speaks two time dialects: recovery points and progress
timestamps are epoch milliseconds, while operational time filters are
ISO-8601 UTC strings. Display strings use the local time zone.
"""

from datetime import UTC, datetime

# Format used for every timestamp shown to the user
DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def to_epoch_ms(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds.

    Naive datetimes are interpreted as local wall-clock time.
    """
    return int(round(moment.timestamp() * 1000))


def to_wire_time(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision.

    Example: 2024-01-01T00:00:00.000Z
    """
    if moment.tzinfo is None:
        moment = moment.astimezone()
    utc = moment.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def format_epoch_ms(value: int | float | None) -> str | None:
    """Format an epoch-millisecond timestamp as a local-time display string.

    Returns None for absent (None or zero) timestamps.
    """
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000).strftime(DISPLAY_FORMAT)


def format_elapsed(milliseconds: int | float | None) -> str | None:
    """Render an elapsed duration as "D days, H hours, M minutes, S seconds".

    Returns None if the duration is absent.
    """
    if milliseconds is None:
        return None
    total_seconds = max(int(milliseconds // 1000), 0)
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{days} days, {hours} hours, {minutes} minutes, {seconds} seconds"


def parse_user_time(value: str) -> datetime:
    """Parse a user-supplied ISO-8601 timestamp.

    Accepts a trailing "Z" for UTC. Naive values stay naive (local time).

    Raises:
        ValueError: If the string is not ISO-8601
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)
