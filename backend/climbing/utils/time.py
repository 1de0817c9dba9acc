from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

DAY_START = time(0, 0)
DAY_END = time(23, 59)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now(tz: ZoneInfo) -> datetime:
    """Wall-clock now in the school's timezone, without tzinfo (slots are stored that way)."""
    return datetime.now(tz).replace(tzinfo=None)


def combine(day: date, at: time | None, *, default: time = DAY_START) -> datetime:
    return datetime.combine(day, at if at is not None else default)
