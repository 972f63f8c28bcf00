"""Tests for natural-language time resolution."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from knowsys.timeparse import relative_start, resolve_time_expression

NOW = date(2026, 2, 14)  # a Saturday


class TestKeywords:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("yesterday", {"date_after": "2026-02-13"}),
            ("today", {"date_after": "2026-02-14", "date_before": "2026-02-14"}),
            ("last week", {"date_after": "2026-02-07"}),
            ("last month", {"date_after": "2026-01-15"}),
            ("this week", {"date_after": "2026-02-09"}),
            ("this month", {"date_after": "2026-02-01"}),
        ],
    )
    def test_keyword(self, text, expected):
        assert resolve_time_expression(text, NOW) == expected

    def test_embedded_and_case_insensitive(self):
        assert resolve_time_expression("what did I do YESTERDAY?", NOW) == {"date_after": "2026-02-13"}

    def test_first_keyword_in_order_wins(self):
        assert resolve_time_expression("today or yesterday", NOW) == {"date_after": "2026-02-13"}

    def test_keyword_must_be_a_word(self):
        assert resolve_time_expression("todays", NOW) == {}


class TestAgo:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("3 days ago", "2026-02-11"),
            ("1 day ago", "2026-02-13"),
            ("2 weeks ago", "2026-01-31"),
            ("1 month ago", "2026-01-15"),
            ("sessions from 10  days  ago", "2026-02-04"),
        ],
    )
    def test_n_units_ago(self, text, expected):
        assert resolve_time_expression(text, NOW) == {"date_after": expected}


class TestNoMatch:
    @pytest.mark.parametrize("text", ["", None, "the auth refactor", "3 years ago"])
    def test_empty_range(self, text):
        assert resolve_time_expression(text, NOW) == {}


class TestReferenceInstant:
    def test_timezone_aware_now_uses_utc(self):
        now = datetime(2026, 2, 14, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert resolve_time_expression("yesterday", now) == {"date_after": "2026-02-14"}

    def test_default_now_is_today(self):
        today = datetime.now(timezone.utc).date()
        assert resolve_time_expression("today")["date_after"] == today.isoformat()


class TestRelativeStart:
    def test_plural_unit(self):
        assert relative_start(2, "weeks", NOW) == "2026-01-31"

    def test_unknown_unit(self):
        with pytest.raises(ValueError):
            relative_start(1, "year", NOW)

    def test_negative_count(self):
        with pytest.raises(ValueError):
            relative_start(-1, "day", NOW)

    def test_months_are_calendar_months(self):
        assert relative_start(1, "months", NOW) == "2026-01-14"
        assert relative_start(3, "month", NOW) == "2025-11-14"

    def test_month_end_is_clamped(self):
        assert relative_start(1, "month", date(2026, 3, 31)) == "2026-02-28"
        assert relative_start(1, "month", date(2024, 3, 31)) == "2024-02-29"

    def test_phrase_months_stay_thirty_days(self):
        assert resolve_time_expression("1 month ago", NOW) == {"date_after": "2026-01-15"}
