"""Natural-language time phrases -> absolute date filters.

Recognises, case-insensitively and anywhere in free text:
``yesterday``, ``today``, ``this week``, ``this month``, ``last week``,
``last month`` and ``<N> day(s)/week(s)/month(s) ago``.

In phrases a week is 7 days and a month is 30 days. The structured
``relative_start`` ("last 2 months") steps back whole calendar months
instead. Unrecognised text yields an empty range, meaning "no temporal
filter".
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import TypedDict

DAYS_PER_UNIT = {"day": 1, "week": 7, "month": 30}


class TimeRange(TypedDict, total=False):
    date_after: str
    date_before: str


def reference_date(now: datetime | date | None = None) -> date:
    """Calendar date (UTC) of `now`, or of the current instant."""
    if now is None:
        return datetime.now(timezone.utc).date()
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()
    return now


def _start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _months_back(day: date, months: int) -> date:
    """Same day-of-month `months` earlier, clamped to the month's length."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


_KEYWORDS = [
    ("yesterday", lambda d: {"date_after": (d - timedelta(days=1)).isoformat()}),
    ("today", lambda d: {"date_after": d.isoformat(), "date_before": d.isoformat()}),
    ("last week", lambda d: {"date_after": (d - timedelta(days=7)).isoformat()}),
    ("last month", lambda d: {"date_after": (d - timedelta(days=30)).isoformat()}),
    ("this week", lambda d: {"date_after": _start_of_week(d).isoformat()}),
    ("this month", lambda d: {"date_after": d.replace(day=1).isoformat()}),
]

_AGO_RE = re.compile(r"\b(\d+)\s+(day|week|month)s?\s+ago\b")


def resolve_time_expression(text: str | None, now: datetime | date | None = None) -> TimeRange:
    """Return ``{date_after, date_before}`` for the first phrase found in `text`."""
    if not text or not isinstance(text, str):
        return {}
    lowered = " ".join(text.lower().split())
    today = reference_date(now)

    for keyword, handler in _KEYWORDS:
        if re.search(rf"\b{keyword}\b", lowered):
            return handler(today)

    match = _AGO_RE.search(lowered)
    if match:
        days = int(match.group(1)) * DAYS_PER_UNIT[match.group(2)]
        return {"date_after": (today - timedelta(days=days)).isoformat()}
    return {}


def relative_start(count: int, unit: str, now: datetime | date | None = None) -> str:
    """Start date of "the last `count` `unit`s", e.g. ``relative_start(2, "weeks")``.

    Months are calendar months: one month before Mar 31 is Feb 28 (or 29).
    """
    unit = unit.lower().rstrip("s")
    if unit not in DAYS_PER_UNIT:
        raise ValueError(f"unknown time unit: {unit!r}")
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    today = reference_date(now)
    if unit == "month":
        return _months_back(today, count).isoformat()
    return (today - timedelta(days=count * DAYS_PER_UNIT[unit])).isoformat()
