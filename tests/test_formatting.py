from datetime import date, datetime, timedelta, timezone

import pytest

from formatting import (DATE_FALLBACK, DEFAULT_COLOR, POSTED_FALLBACK, ZERO_AMOUNT, format_budget,
                        format_currency, format_date, format_relative_time, group_digits, status_color)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("amount", [0, None, float("nan"), "", "not a number", float("inf"), [], True])
def test_zero_representation(amount):
    assert format_currency(amount) == ZERO_AMOUNT == "₹0"


@pytest.mark.parametrize("amount, expected", [
    (25_000_000, "₹2.5 Cr"),
    (10_000_000, "₹1.0 Cr"),
    (500_000, "₹5.0 L"),
    (480_000, "₹4.8 L"),
    (100_000, "₹1.0 L"),
    (99_999, "₹99,999"),
    (45_000, "₹45,000"),
    (950, "₹950"),
    (1234.5, "₹1,234.5"),
    ("75000", "₹75,000"),
])
def test_format_currency_tiers(amount, expected):
    assert format_currency(amount) == expected


def test_group_digits_uses_indian_grouping():
    assert group_digits(1234567) == "12,34,567"
    assert group_digits(-500000) == "-5,00,000"
    assert group_digits(0.1234) == "0.123"


def test_negative_amounts_keep_tiers():
    assert format_currency(-500_000) == "-₹5.0 L"
    assert format_currency(-25_000_000) == "-₹2.5 Cr"
    assert format_currency(-45_000) == "-₹45,000"


def test_format_budget_range():
    assert format_budget(500000) == "₹5.0 L"
    assert format_budget(500000, 500000) == "₹5.0 L"
    assert format_budget(500000, 2_000_000) == "₹5.0 L - ₹20.0 L"
    assert format_budget(None, None) == "₹0"


@pytest.mark.parametrize("posted, expected", [
    (NOW - timedelta(hours=3), "Posted today"),
    (NOW - timedelta(hours=25), "Posted 1 day ago"),
    (NOW - timedelta(days=5), "Posted 5 days ago"),
    (NOW - timedelta(days=30), "Posted 30 days ago"),
    (NOW - timedelta(days=45), "Posted over a month ago"),
    (NOW + timedelta(days=2), "Posted today"),
    ((NOW - timedelta(days=2)).isoformat(), "Posted 2 days ago"),
    ("2026-10-14T12:00:00Z", "Posted 5 days ago"),
    ({"seconds": (NOW - timedelta(days=3)).timestamp(), "nanoseconds": 0}, "Posted 3 days ago"),
    (datetime(2026, 10, 17, 12, 0), "Posted 2 days ago"),
])
def test_format_relative_time(posted, expected):
    assert format_relative_time(posted, now=NOW) == expected


@pytest.mark.parametrize("posted", [None, "", "yesterday-ish", object(), {"nanoseconds": 1}])
def test_format_relative_time_fallback(posted):
    assert format_relative_time(posted, now=NOW) == POSTED_FALLBACK


def test_format_date():
    assert format_date(date(2026, 12, 1)) == "1 Dec 2026"
    assert format_date("2026-03-15") == "15 Mar 2026"
    assert format_date(None) == DATE_FALLBACK
    assert format_date("soon") == DATE_FALLBACK


def test_status_color():
    assert status_color("pending") == "bg-yellow-100 text-yellow-800"
    assert status_color("rejected") == "bg-red-100 text-red-800"
    assert status_color("in_progress") == "bg-blue-100 text-blue-800"
    assert status_color("unknown") == DEFAULT_COLOR
    assert status_color(None) == DEFAULT_COLOR
