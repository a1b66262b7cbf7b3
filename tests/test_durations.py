"""
Tests for duration parsing and formatting.
"""

from datetime import timedelta

import pytest

from cloud_bridge.utils.durations import format_duration, format_minutes, parse_duration


@pytest.mark.parametrize("value,expected", [
    ("500ms", timedelta(milliseconds=500)),
    ("30s", timedelta(seconds=30)),
    ("5m", timedelta(minutes=5)),
    ("1h", timedelta(hours=1)),
    ("1d", timedelta(days=1)),
    ("1.5h", timedelta(minutes=90)),
    (" 10 S ", timedelta(seconds=10)),
    (60000, timedelta(minutes=1)),
    ("60000", timedelta(minutes=1)),
    (timedelta(seconds=7), timedelta(seconds=7)),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


def test_parse_duration_numeric_unit():
    assert parse_duration(5, numeric_unit="m") == timedelta(minutes=5)
    assert parse_duration("5", numeric_unit="m") == timedelta(minutes=5)
    assert parse_duration("30s", numeric_unit="m") == timedelta(seconds=30)


@pytest.mark.parametrize("value", ["not-a-number", "", "5 minutes", None, True, -1, "-5m"])
def test_parse_duration_invalid(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_parse_duration_default():
    assert parse_duration("bogus", default=timedelta(minutes=1)) == timedelta(minutes=1)


def test_parse_duration_unknown_unit():
    with pytest.raises(ValueError, match="Unsupported duration unit"):
        parse_duration(5, numeric_unit="w")


def test_format_minutes():
    assert format_minutes(timedelta(minutes=5)) == 5
    assert format_minutes(timedelta(seconds=90)) == 1
    assert format_minutes(timedelta(seconds=30)) == 0


@pytest.mark.parametrize("duration,expected", [
    (timedelta(days=2), "2d"),
    (timedelta(hours=3), "3h"),
    (timedelta(minutes=5), "5m"),
    (timedelta(seconds=90), "90s"),
    (timedelta(milliseconds=250), "250ms"),
    (timedelta(0), "0ms"),
])
def test_format_duration(duration, expected):
    assert format_duration(duration) == expected
