from __future__ import annotations

from datetime import date, datetime

import pytest

from review_harvester.services.normalizer import (
    clamp_rating,
    coerce_text,
    derive_emotion,
    normalize_review_date,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (12, 9.99),
        (10, 9.99),
        (9.99, 9.99),
        (7.123, 7.12),
        ("4.5", 4.5),
        (0, 0.0),
        (-3, None),
        (None, None),
        ("five", None),
        (True, None),
        (float("nan"), None),
    ],
)
def test_clamp_rating(raw, expected) -> None:
    assert clamp_rating(raw) == expected


def test_normalize_review_date_accepts_only_calendar_days() -> None:
    assert normalize_review_date("2026-01-15") == date(2026, 1, 15)
    assert normalize_review_date(datetime(2026, 1, 15, 22, 30)) == date(2026, 1, 15)
    assert normalize_review_date(date(2026, 1, 15)) == date(2026, 1, 15)

    assert normalize_review_date("2026-1-5") is None
    assert normalize_review_date("2026.01.15") is None
    assert normalize_review_date("2026-02-30") is None
    assert normalize_review_date(20260115) is None


def test_derive_emotion_thresholds() -> None:
    assert derive_emotion(4.5) == "positive"
    assert derive_emotion(9.99) == "positive"
    assert derive_emotion(3.0) == "neutral"
    assert derive_emotion(2.5) == "negative"
    assert derive_emotion(None) == "neutral"


def test_coerce_text_joins_lists_and_truncates() -> None:
    assert coerce_text(["breakfast", " ", "pool"]) == "breakfast, pool"
    assert coerce_text("  ") is None
    assert coerce_text("abcdef", max_length=3) == "abc"
