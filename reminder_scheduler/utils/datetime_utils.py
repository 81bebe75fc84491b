from datetime import datetime, timezone

# Work item and notification log columns hold naive UTC values. Everything
# above the provider works with aware UTC datetimes.


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Normalize ``dt`` to aware UTC.

    A naive value is taken to be UTC already, matching how it was stored.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert ``dt`` to the naive UTC form used in query parameters and inserts.

    Args:
        dt: Aware datetime in any zone, or naive UTC

    Returns:
        datetime: Naive UTC datetime
    """
    return to_utc(dt).replace(tzinfo=None)


def from_naive_utc(dt: datetime) -> datetime:
    """
    Attach UTC to a naive datetime read back from the database.

    Raises:
        ValueError: if ``dt`` already carries a timezone
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc)


def format_reminder_datetime(dt: datetime) -> str:
    """Format a trigger time for reminder messages, e.g. ``Monday, March 04, 2024 at 09:30 AM``."""
    return to_utc(dt).strftime("%A, %B %d, %Y at %I:%M %p")
