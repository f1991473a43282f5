"""Tests for period tokens, date windows and due-date labels."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from crm_views.date_windows import (
    DateLabel,
    PeriodToken,
    date_label,
    format_long,
    format_short,
    format_timestamp,
    normalize_timestamp,
    parse_token,
    window_for,
)


class TestParseToken:
    def test_known_tokens(self) -> None:
        assert parse_token("today") is PeriodToken.TODAY
        assert parse_token("thisWeek") is PeriodToken.THIS_WEEK
        assert parse_token(PeriodToken.OVERDUE) is PeriodToken.OVERDUE

    def test_aliases(self) -> None:
        assert parse_token("week") is PeriodToken.THIS_WEEK
        assert parse_token("last_week") is PeriodToken.LAST_WEEK

    @pytest.mark.parametrize("raw", [None, "", "fortnight"])
    def test_unrecognized_means_all_time(self, raw) -> None:
        assert parse_token(raw) is PeriodToken.ALL


class TestWindows:
    """Windows are evaluated against the injected ``now``."""

    def test_today_includes_end_of_day_only(self, now: datetime) -> None:
        window = window_for("today", now)
        assert window.contains(datetime(2024, 6, 15, 23, 59))
        assert window.contains(datetime(2024, 6, 15, 0, 0))
        assert not window.contains(datetime(2024, 6, 16, 0, 0, 1))
        assert not window.contains(datetime(2024, 6, 14, 23, 59, 59))

    def test_yesterday(self, now: datetime) -> None:
        window = window_for("yesterday", now)
        assert window.contains(datetime(2024, 6, 14, 16, 0))
        assert not window.contains(datetime(2024, 6, 15, 0, 0))

    def test_this_week_runs_monday_to_sunday(self, now: datetime) -> None:
        window = window_for("thisWeek", now)
        assert window.contains(datetime(2024, 6, 10, 0, 0))
        assert window.contains(datetime(2024, 6, 16, 23, 59, 59))
        assert not window.contains(datetime(2024, 6, 9, 23, 59, 59))
        assert not window.contains(datetime(2024, 6, 17, 0, 0))

    def test_last_week(self, now: datetime) -> None:
        window = window_for("lastWeek", now)
        assert window.contains(datetime(2024, 6, 3, 0, 0))
        assert window.contains(datetime(2024, 6, 9, 23, 0))
        assert not window.contains(datetime(2024, 6, 10, 0, 0))

    def test_overdue_and_upcoming_are_strict(self, now: datetime) -> None:
        overdue = window_for("overdue", now)
        upcoming = window_for("upcoming", now)
        assert overdue.contains(datetime(2024, 6, 15, 9, 59))
        assert not overdue.contains(now)
        assert upcoming.contains(datetime(2024, 6, 15, 10, 1))
        assert not upcoming.contains(now)

    def test_all_time_accepts_everything(self, now: datetime) -> None:
        window = window_for("all", now)
        assert window.contains(datetime(1999, 1, 1))
        assert window.contains(None)

    def test_calendar_window_excludes_missing_dates(self, now: datetime) -> None:
        assert not window_for("today", now).contains(None)

    def test_plain_dates_and_strings_are_accepted(self, now: datetime) -> None:
        window = window_for("today", now)
        assert window.contains(date(2024, 6, 15))
        assert window.contains("2024-06-15T18:30:00")


class TestDateLabel:
    """Label priority is today, tomorrow, overdue, this week, absolute date."""

    def test_today_wins_over_past(self, now: datetime) -> None:
        assert date_label(datetime(2024, 6, 15, 9, 0), now) == DateLabel("Today", "warning")

    def test_tomorrow(self, now: datetime) -> None:
        assert date_label(datetime(2024, 6, 16, 11, 0), now) == DateLabel("Tomorrow", "info")

    def test_overdue_wins_over_this_week(self, now: datetime) -> None:
        assert date_label(datetime(2024, 6, 12, 17, 0), now) == DateLabel("Overdue", "danger")

    def test_this_week_for_future_days(self) -> None:
        monday = datetime(2024, 6, 10, 8, 0)
        assert date_label(datetime(2024, 6, 13, 9, 0), monday) == DateLabel("This week", "default")

    def test_absolute_date_otherwise(self, now: datetime) -> None:
        assert date_label(datetime(2024, 7, 1, 9, 0), now) == DateLabel("Jul 1", "default")


def test_normalize_timestamp_handles_common_shapes() -> None:
    assert normalize_timestamp(None) is None
    assert normalize_timestamp("") is None
    assert normalize_timestamp(date(2024, 6, 15)) == datetime(2024, 6, 15)
    assert normalize_timestamp("2024-06-15T10:00:00") == datetime(2024, 6, 15, 10, 0)
    parsed = normalize_timestamp("2024-06-15T10:00:00Z")
    assert isinstance(parsed, datetime) and parsed.tzinfo is None
    assert normalize_timestamp("next tuesday") == "next tuesday"


def test_formatters() -> None:
    moment = datetime(2024, 6, 3, 14, 5)
    assert format_short(moment) == "Jun 3"
    assert format_long(moment) == "Jun 3, 2024"
    assert format_timestamp(moment) == "Jun 3, 2024 at 2:05 PM"
