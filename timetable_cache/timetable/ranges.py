"""
Range normalization: map caller-supplied (start, end) onto a canonical cache key,
either an ISO week (Monday 00:00 to Sunday 23:59:59.999) or whole-day bounds.
Also the YYYYMMDD integer date helpers used on the upstream wire and in enrichment.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from dateutil import parser as dateutil_parser

from timetable_cache.core import errors

WEEK_SNAP_THRESHOLD = timedelta(days=5)


def parse_datetime(value: str) -> datetime:
    """Parse an ISO date/datetime string into a naive local datetime."""
    try:
        parsed = dateutil_parser.isoparse(value.strip())
    except (TypeError, ValueError, OverflowError) as e:
        raise errors.invalid_date(value) from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def start_of_day(d: datetime) -> datetime:
    return datetime.combine(d.date(), time.min)


def end_of_day(d: datetime) -> datetime:
    # 23:59:59.999, millisecond precision like the upstream's own bounds
    return datetime.combine(d.date(), time(23, 59, 59, 999000))


def start_of_iso_week(d: datetime) -> datetime:
    # weekday(): Monday=0 .. Sunday=6, so Sunday shifts back six days
    day = start_of_day(d)
    return day - timedelta(days=day.weekday())


def end_of_iso_week(d: datetime) -> datetime:
    return end_of_day(start_of_iso_week(d) + timedelta(days=6))


def normalize_range(
    start: Optional[str], end: Optional[str]
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Canonical cache bounds for a request.
    Either bound missing -> (None, None).
    Span >= 5 days -> the ISO week containing start (the caller's end is discarded).
    Otherwise -> [start_of_day(start), end_of_day(end)].
    """
    if not start or not end:
        return None, None
    sd = parse_datetime(start)
    ed = parse_datetime(end)
    if ed - sd >= WEEK_SNAP_THRESHOLD:
        return start_of_iso_week(sd), end_of_iso_week(sd)
    return start_of_day(sd), end_of_day(ed)


def day_bounds(
    start: Optional[str], end: Optional[str]
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Per-field day bounds for partially specified requests."""
    sd = start_of_day(parse_datetime(start)) if start else None
    ed = end_of_day(parse_datetime(end)) if end else None
    return sd, ed


def shift_range(
    range_start: datetime, range_end: datetime, days: int
) -> Tuple[datetime, datetime]:
    delta = timedelta(days=days)
    return range_start + delta, range_end + delta


def to_date_int(d) -> int:
    """date/datetime -> YYYYMMDD integer."""
    return d.year * 10000 + d.month * 100 + d.day


def from_date_int(value: int) -> date:
    """YYYYMMDD integer -> date. Raises ValueError for impossible dates."""
    value = int(value)
    return date(value // 10000, (value % 10000) // 100, value % 100)


def date_ints_within(first: int, second: int, day_range: int = 7) -> bool:
    """True if two YYYYMMDD dates are at most day_range calendar days apart."""
    if first == second:
        return True
    try:
        delta = from_date_int(first) - from_date_int(second)
    except (TypeError, ValueError):
        return False
    return abs(delta.days) <= day_range
