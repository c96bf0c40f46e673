from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any

# reviews.rating is numeric(3, 2)
RATING_MAX = 9.99
POSITIVE_RATING_THRESHOLD = 4.5
NEGATIVE_RATING_THRESHOLD = 2.5

_ISO_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def clamp_rating(value: Any) -> float | None:
    """Return a rating that fits the storage column, or None.

    Negative, non-numeric and non-finite values become None; anything at or
    above 10 is capped to 9.99.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        rating = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(rating) or rating < 0:
        return None
    return min(round(rating, 2), RATING_MAX)


def normalize_review_date(value: Any) -> date | None:
    """Strict calendar-day normalization; ambiguous input yields None."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if not _ISO_DAY_RE.match(candidate):
        return None
    try:
        return date.fromisoformat(candidate)
    except ValueError:
        return None


def derive_emotion(rating: float | None) -> str:
    if rating is None:
        return "neutral"
    if rating >= POSITIVE_RATING_THRESHOLD:
        return "positive"
    if rating <= NEGATIVE_RATING_THRESHOLD:
        return "negative"
    return "neutral"


def coerce_text(value: Any, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        parts = [str(item).strip() for item in value if str(item).strip()]
        text = ", ".join(parts)
    else:
        text = str(value).strip()
    if not text:
        return None
    if max_length is not None:
        return text[:max_length]
    return text
