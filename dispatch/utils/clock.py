"""
Time helpers.

All timestamps are stored as naive UTC datetimes.
"""
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_between(start: datetime | None, end: datetime) -> int:
    """Whole seconds from start to end, 0 when start is unknown or later."""
    if start is None:
        return 0
    return max(0, int((end - start).total_seconds()))


def local_business_day(now_utc: datetime, tz_name: str) -> date:
    """
    Local calendar day containing now_utc; ticket numbers restart on each one.

    Args:
        now_utc: Naive UTC instant
        tz_name: IANA timezone name (e.g. "America/Argentina/Buenos_Aires")
    """
    return now_utc.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()
