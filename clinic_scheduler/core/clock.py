"""Clinic-local date and time arithmetic.

The clinic runs on a fixed UTC+06:30 offset with no daylight saving. Dates
travel through the system as ``YYYY-MM-DD`` keys and times of day as minutes
since local midnight; every conversion to or from an absolute instant goes
through this module.
"""

import re
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, NamedTuple

from clinic_scheduler.core.errors import InvalidRangeError, InvalidTimestampError

LOCAL_OFFSET_MINUTES = 6 * 60 + 30
LOCAL_TZ = timezone(timedelta(minutes=LOCAL_OFFSET_MINUTES))
LOCAL_OFFSET_SUFFIX = '+06:30'
MINUTES_PER_DAY = 24 * 60

DATE_KEY_PATTERN = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')
# A date key followed by a time; the remainder is left to datetime.fromisoformat.
TIMESTAMP_PREFIX_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}')
HHMM_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})$')

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


class LocalMoment(NamedTuple):
    date_key: str
    minute_of_day: int
    instant: datetime


class TimestampKind(str, Enum):
    DATE_ONLY = 'date_only'
    DATE_TIME = 'date_time'
    ZONED = 'zoned'


class ParsedTimestamp(NamedTuple):
    kind: TimestampKind
    date_key: str
    minute_of_day: int
    instant: datetime


class WindowSpan(NamedTuple):
    """A half-open ``[start_min, end_min)`` range of minutes within one local day."""

    start_min: int
    end_min: int


def to_date(date_key: str) -> date:
    if not isinstance(date_key, str):
        raise InvalidTimestampError('Date must be formatted as YYYY-MM-DD.')

    match = DATE_KEY_PATTERN.match(date_key.strip())
    if not match:
        raise InvalidTimestampError('Date must be formatted as YYYY-MM-DD.')

    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise InvalidTimestampError('Invalid calendar date.') from exc


def validate_date_key(date_key: str) -> str:
    return to_date(date_key).isoformat()


def to_date_key(value: date) -> str:
    return value.isoformat()


def add_days(date_key: str, days: int) -> str:
    return to_date_key(to_date(date_key) + timedelta(days=days))


def day_of_week(date_key: str) -> int:
    """Sunday-indexed weekday of a local calendar date."""
    return to_date(date_key).isoweekday() % 7


def to_local_instant(date_key: str, minute_of_day: int) -> datetime:
    day = to_date(date_key)
    midnight_utc = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return midnight_utc + timedelta(minutes=minute_of_day - LOCAL_OFFSET_MINUTES)


def local_moment(instant: datetime) -> LocalMoment:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)

    local = instant.astimezone(LOCAL_TZ)
    return LocalMoment(
        date_key=local.date().isoformat(),
        minute_of_day=local.hour * 60 + local.minute,
        instant=instant,
    )


def today_local(clock: Clock = system_clock) -> LocalMoment:
    return local_moment(clock())


def format_local_iso(date_key: str, minute_of_day: int) -> str:
    if not 0 <= minute_of_day <= MINUTES_PER_DAY:
        raise InvalidTimestampError('Minute of day must be between 0 and 1440.')

    # 1440 is rendered as midnight of the following day.
    local = to_local_instant(date_key, minute_of_day).astimezone(LOCAL_TZ)
    return local.strftime('%Y-%m-%dT%H:%M:00') + LOCAL_OFFSET_SUFFIX


def parse_local_instant(value: str) -> ParsedTimestamp:
    """Parse a date, a local date-time, or a zoned date-time.

    Inputs without an offset are read as clinic-local. The returned
    ``minute_of_day`` is truncated to the minute; ``instant`` keeps the exact
    value that was parsed.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidTimestampError('Timestamp is required.')

    text = value.strip()
    if DATE_KEY_PATTERN.match(text):
        date_key = to_date(text).isoformat()
        return ParsedTimestamp(TimestampKind.DATE_ONLY, date_key, 0, to_local_instant(date_key, 0))

    if not TIMESTAMP_PREFIX_PATTERN.match(text):
        raise InvalidTimestampError(f'Invalid timestamp: {text!r}.')

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidTimestampError(f'Invalid timestamp: {text!r}.') from exc

    if parsed.tzinfo is None:
        kind, parsed = TimestampKind.DATE_TIME, parsed.replace(tzinfo=LOCAL_TZ)
    else:
        kind = TimestampKind.ZONED

    instant = parsed.astimezone(timezone.utc)
    local = local_moment(instant)

    return ParsedTimestamp(kind, local.date_key, local.minute_of_day, instant)


def minutes_until(date_key: str, minute_of_day: int, now: datetime) -> float:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (to_local_instant(date_key, minute_of_day) - now).total_seconds() / 60


def format_minutes(minute_of_day: int) -> str:
    return f'{minute_of_day // 60:02d}:{minute_of_day % 60:02d}'


def parse_minutes(value: str) -> int:
    match = HHMM_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimestampError(f'Time must be formatted as HH:MM, got {value!r}.')

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if minutes > 59 or total > MINUTES_PER_DAY:
        raise InvalidTimestampError(f'Invalid time of day: {value!r}.')

    return total


def parse_window_ranges(value: str) -> list[WindowSpan]:
    """Parse ``"09:00-12:00,13:00-17:00"`` into sorted window spans."""
    spans: list[WindowSpan] = []
    for chunk in value.split(','):
        if not chunk.strip():
            continue
        start_text, separator, end_text = chunk.partition('-')
        if not separator:
            raise InvalidRangeError(f'Window must be formatted as HH:MM-HH:MM, got {chunk.strip()!r}.')

        span = WindowSpan(parse_minutes(start_text), parse_minutes(end_text))
        if span.start_min >= span.end_min:
            raise InvalidRangeError(f'Window {chunk.strip()!r} must end after it starts.')
        spans.append(span)

    return sorted(spans)
