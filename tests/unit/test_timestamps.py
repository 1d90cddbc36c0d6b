"""Unit tests for wall-clock conversion helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from bidgate.transport.timestamps import (
    TimestampError,
    assert_within_skew,
    format_timestamp,
    load_zone,
    local_to_utc,
    parse_timestamp,
)


def test_mexico_city_wall_clock_converts_to_utc():
    result = local_to_utc("2026-06-03 11:00:00", ZoneInfo("America/Mexico_City"))
    assert result == datetime(2026, 6, 3, 17, 0, tzinfo=timezone.utc)


def test_conversion_follows_daylight_saving_rules():
    zone = ZoneInfo("America/New_York")
    before = local_to_utc("2026-03-08 01:30:00", zone)
    after = local_to_utc("2026-03-08 03:30:00", zone)
    assert before == datetime(2026, 3, 8, 6, 30, tzinfo=timezone.utc)
    assert after == datetime(2026, 3, 8, 7, 30, tzinfo=timezone.utc)


def test_ambiguous_wall_clock_uses_first_occurrence():
    result = local_to_utc("2026-11-01 01:30:00", ZoneInfo("America/New_York"))
    assert result == datetime(2026, 11, 1, 5, 30, tzinfo=timezone.utc)


def test_naive_datetime_rows_are_localised():
    row_value = datetime(2026, 6, 3, 11, 0)
    result = local_to_utc(row_value, ZoneInfo("America/Mexico_City"))
    assert result == datetime(2026, 6, 3, 17, 0, tzinfo=timezone.utc)


def test_offset_aware_values_are_only_normalised():
    result = local_to_utc("2026-06-03T11:00:00-05:00", ZoneInfo("America/Mexico_City"))
    assert result == datetime(2026, 6, 3, 16, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["", "tomorrow at noon"])
def test_invalid_wall_clock_rejected(value):
    with pytest.raises(TimestampError):
        local_to_utc(value, ZoneInfo("America/Mexico_City"))


def test_parse_timestamp_requires_timezone():
    with pytest.raises(TimestampError):
        parse_timestamp("2026-06-03T11:00:00")
    parsed = parse_timestamp("2026-06-03T11:00:00Z")
    assert format_timestamp(parsed) == "2026-06-03T11:00:00Z"


def test_unknown_zone_rejected():
    with pytest.raises(TimestampError):
        load_zone("Mars/Olympus_Mons")


def test_non_string_timestamp_rejected():
    with pytest.raises(TimestampError):
        parse_timestamp(123)


def test_skew_window():
    now = datetime(2026, 6, 3, 11, 0, tzinfo=timezone.utc)
    assert assert_within_skew("2026-06-03T10:59:58Z", max_skew_ms=5000, now=now) == datetime(
        2026, 6, 3, 10, 59, 58, tzinfo=timezone.utc
    )
    with pytest.raises(TimestampError):
        assert_within_skew("2026-05-03T11:00:00Z", max_skew_ms=5000, now=now)
    with pytest.raises(TimestampError):
        assert_within_skew("2026-06-03T11:00:10Z", max_skew_ms=5000, now=now)
