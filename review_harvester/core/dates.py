from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

DATE_FILTER_WINDOWS: dict[str, int | None] = {
    "all": None,
    "week": 7,
    "twoWeeks": 14,
}

_LABEL_PREFIX_RE = re.compile(r"^(방문일|작성일|리뷰일|visited|written|posted)\s*:?\s*", re.IGNORECASE)
_SAME_DAY_RE = re.compile(r"\d+\s*(시간|분|초)\s*전|\d+\s*(hour|minute|second)s?\s+ago|방금", re.IGNORECASE)
_RELATIVE_KO_RE = re.compile(r"(\d+)\s*(일|주|개월|달|년)\s*전")
_RELATIVE_EN_RE = re.compile(r"\b(\d+|an?|one)\s+(day|week|month|year)s?\s+ago", re.IGNORECASE)
_FULL_DATE_RE = re.compile(r"(\d{4})\s*[.\-/년]\s*(\d{1,2})\s*[.\-/월]\s*(\d{1,2})")
_SHORT_YEAR_RE = re.compile(r"^(\d{2})\.(\d{1,2})\.(\d{1,2})\.?$")
_MONTH_DAY_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.?(?:\s*\(?[월화수목금토일]\)?)?$")
_KO_UNITS = {"일": "day", "주": "week", "개월": "month", "달": "month", "년": "year"}


def today_in(tz_name: str, *, now: datetime | None = None) -> date:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(ZoneInfo(tz_name)).date()


def cutoff_date(date_filter: str, *, today: date) -> date | None:
    """Earliest review day still in scope for ``date_filter``.

    Raises ValueError for an unknown filter name.
    """
    if date_filter not in DATE_FILTER_WINDOWS:
        raise ValueError(f"date_filter must be one of: {', '.join(DATE_FILTER_WINDOWS)}")
    window_days = DATE_FILTER_WINDOWS[date_filter]
    if window_days is None:
        return None
    return today - timedelta(days=window_days)


def parse_portal_date(raw: Any, *, today: date) -> date | None:
    """Parse the date label a review portal renders next to a review.

    Handles ISO and dotted absolute dates, year-less ``M.D.`` labels (assumed
    to be the most recent such day not after ``today``) and Korean or English
    relative phrases. Returns None for anything else.
    """
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None

    text = _LABEL_PREFIX_RE.sub("", raw.strip()).strip()
    if not text:
        return None

    lowered = text.lower()
    if "오늘" in text or lowered == "today" or _SAME_DAY_RE.search(text):
        return today
    if "어제" in text or lowered == "yesterday":
        return today - timedelta(days=1)

    relative = _RELATIVE_KO_RE.search(text)
    if relative:
        return _shift(today, int(relative.group(1)), _KO_UNITS[relative.group(2)])

    relative = _RELATIVE_EN_RE.search(text)
    if relative:
        amount_text = relative.group(1).lower()
        amount = 1 if amount_text in {"a", "an", "one"} else int(amount_text)
        return _shift(today, amount, relative.group(2).lower())

    full = _FULL_DATE_RE.search(text)
    if full:
        return _safe_date(int(full.group(1)), int(full.group(2)), int(full.group(3)))

    short_year = _SHORT_YEAR_RE.match(text)
    if short_year:
        return _safe_date(2000 + int(short_year.group(1)), int(short_year.group(2)), int(short_year.group(3)))

    month_day = _MONTH_DAY_RE.match(text)
    if month_day:
        month, day = int(month_day.group(1)), int(month_day.group(2))
        candidate = _safe_date(today.year, month, day)
        if candidate is not None and candidate > today:
            candidate = _safe_date(today.year - 1, month, day)
        return candidate

    return None


def _shift(today: date, amount: int, unit: str) -> date | None:
    try:
        if unit == "day":
            return today - timedelta(days=amount)
        if unit == "week":
            return today - timedelta(weeks=amount)
        if unit == "month":
            return _shift_months(today, amount)
        return _shift_months(today, amount * 12)
    except (ValueError, OverflowError):
        # lands outside the representable calendar
        return None


def _shift_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None
