"""Symbolic period tokens resolved to concrete date windows.

All arithmetic happens on naive local wall-clock datetimes. Aware values are
converted to local time before the tzinfo is dropped, so a record stamped
``2024-06-15T21:00:00Z`` is compared against ``now`` in the same frame the
user reads it in. Weeks start on Monday.

Two separate concerns live here:

* :func:`window_for` maps a filter token onto a window used for membership
  tests (inclusive on both ends for calendar windows).
* :func:`date_label` picks a display label for a single date using a fixed
  priority order (today, tomorrow, overdue, this week, absolute date).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Optional, Union

WindowBound = Optional[datetime]


class PeriodToken(str, Enum):
    ALL = "all"
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "thisWeek"
    LAST_WEEK = "lastWeek"
    OVERDUE = "overdue"
    UPCOMING = "upcoming"


_TOKEN_ALIASES = {
    "week": PeriodToken.THIS_WEEK,
    "this_week": PeriodToken.THIS_WEEK,
    "last_week": PeriodToken.LAST_WEEK,
}


def parse_token(raw: Union[str, PeriodToken, None]) -> PeriodToken:
    """Resolve a raw token; anything unrecognized means all time."""
    if isinstance(raw, PeriodToken):
        return raw
    if not raw:
        return PeriodToken.ALL
    if raw in _TOKEN_ALIASES:
        return _TOKEN_ALIASES[raw]
    try:
        return PeriodToken(raw)
    except ValueError:
        return PeriodToken.ALL


def normalize_timestamp(value: Any) -> Any:
    """Coerce ISO strings, dates and aware datetimes to naive local datetimes.

    Values that cannot be interpreted are returned unchanged so that model
    validation reports them.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return value
    else:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _as_datetime(value: Union[date, datetime]) -> datetime:
    normalized = normalize_timestamp(value)
    if not isinstance(normalized, datetime):
        raise TypeError(f"Expected a date or datetime, got {value!r}.")
    return normalized


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min)


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.max)


def start_of_week(value: datetime) -> datetime:
    return start_of_day(value - timedelta(days=value.weekday()))


def end_of_week(value: datetime) -> datetime:
    return end_of_day(value + timedelta(days=6 - value.weekday()))


@dataclass(frozen=True)
class DateWindow:
    """Closed interval ``[start, end]``."""

    start: datetime
    end: datetime

    def contains(self, value: Union[date, datetime, None]) -> bool:
        if value is None:
            return False
        moment = _as_datetime(value)
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class OpenEndedWindow:
    """Half-open comparison against a single instant.

    ``before`` keeps values strictly earlier than the bound, ``after`` keeps
    values strictly later. With neither bound every value passes, which is
    how "all time" is represented.
    """

    before: WindowBound = None
    after: WindowBound = None

    @property
    def is_unbounded(self) -> bool:
        return self.before is None and self.after is None

    def contains(self, value: Union[date, datetime, None]) -> bool:
        if self.is_unbounded:
            return True
        if value is None:
            return False
        moment = _as_datetime(value)
        if self.before is not None and not moment < self.before:
            return False
        if self.after is not None and not moment > self.after:
            return False
        return True


ALL_TIME = OpenEndedWindow()

Window = Union[DateWindow, OpenEndedWindow]


def window_for(token: Union[str, PeriodToken, None], now: datetime) -> Window:
    """Return the window that a filter token selects relative to ``now``."""
    now = _as_datetime(now)
    period = parse_token(token)
    if period is PeriodToken.TODAY:
        return DateWindow(start_of_day(now), end_of_day(now))
    if period is PeriodToken.YESTERDAY:
        yesterday = now - timedelta(days=1)
        return DateWindow(start_of_day(yesterday), end_of_day(yesterday))
    if period is PeriodToken.THIS_WEEK:
        return DateWindow(start_of_week(now), end_of_week(now))
    if period is PeriodToken.LAST_WEEK:
        last_week = now - timedelta(days=7)
        return DateWindow(start_of_week(last_week), end_of_week(last_week))
    if period is PeriodToken.OVERDUE:
        return OpenEndedWindow(before=now)
    if period is PeriodToken.UPCOMING:
        return OpenEndedWindow(after=now)
    return ALL_TIME


def is_today(value: Union[date, datetime], now: datetime) -> bool:
    return _as_datetime(value).date() == _as_datetime(now).date()


def is_tomorrow(value: Union[date, datetime], now: datetime) -> bool:
    return _as_datetime(value).date() == _as_datetime(now).date() + timedelta(days=1)


def is_past(value: Union[date, datetime], now: datetime) -> bool:
    return _as_datetime(value) < _as_datetime(now)


def is_this_week(value: Union[date, datetime], now: datetime) -> bool:
    now = _as_datetime(now)
    return DateWindow(start_of_week(now), end_of_week(now)).contains(value)


@dataclass(frozen=True)
class DateLabel:
    label: str
    variant: str


def format_short(value: Union[date, datetime]) -> str:
    """``Jun 3`` style."""
    return f"{value:%b} {value.day}"


def format_long(value: Union[date, datetime]) -> str:
    """``Jun 3, 2024`` style."""
    return f"{value:%b} {value.day}, {value.year}"


def format_timestamp(value: datetime) -> str:
    """``Jun 3, 2024 at 2:05 PM`` style."""
    hour = value.hour % 12 or 12
    return f"{format_long(value)} at {hour}:{value:%M} {value:%p}"


def date_label(value: Union[date, datetime], now: datetime) -> DateLabel:
    """Label a due date. Order matters: a date due later today is also not past."""
    moment = _as_datetime(value)
    if is_today(moment, now):
        return DateLabel("Today", "warning")
    if is_tomorrow(moment, now):
        return DateLabel("Tomorrow", "info")
    if is_past(moment, now):
        return DateLabel("Overdue", "danger")
    if is_this_week(moment, now):
        return DateLabel("This week", "default")
    return DateLabel(format_short(moment), "default")
