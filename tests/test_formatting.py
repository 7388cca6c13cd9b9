from __future__ import annotations

from decimal import Decimal

from trade_logbook.models import ResumeCursor
from trade_logbook.money import format_money, format_number, to_decimal
from trade_logbook.timeutil import days_ago, format_ts, parse_timestamp


def test_to_decimal_keeps_short_float_repr():
    assert to_decimal(10.005) == Decimal("10.005")
    assert to_decimal("1,234.5") == Decimal("1234.5")
    assert to_decimal(float("nan")) is None
    assert to_decimal("abc") is None


def test_format_money_and_number():
    assert format_money(1234.5) == "$1,235"
    assert format_money(-20) == "-$20"
    assert format_money(None) == "—"
    assert format_number(1234.5678, 2) == "1,234.57"
    assert format_number(None) == "—"


def test_parse_timestamp():
    assert parse_timestamp(1700000000) == 1700000000
    assert parse_timestamp("1700000000") == 1700000000
    assert parse_timestamp("2023-11-14T22:13:20Z") == 1700000000
    assert parse_timestamp("2023-11-14") == 1699920000
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_days_ago_and_format_ts():
    assert days_ago(1, now=100_000) == 100_000 - 86_400
    assert format_ts(0, tz_name="UTC") == "1970-01-01 00:00"
    assert format_ts(None) == "—"


def test_resume_cursor_parsing():
    cur = ResumeCursor.from_dict({"from": 1, "to": 9, "cursorTo": 5})
    assert cur == ResumeCursor(1, 9, 5)
    assert cur.matches(1, 9)
    assert not cur.matches(1, 10)
    assert ResumeCursor.from_dict({"from": 1}) is None
    assert ResumeCursor.from_dict({"from": True, "to": 2}) is None
    assert ResumeCursor.from_dict("junk") is None
