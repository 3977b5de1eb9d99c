"""
Tests for the business calendar helpers (America/New_York).
"""
from datetime import datetime, timezone

import pytest

from batchguard.infrastructure.clock import ensure_utc, is_past_cutoff, next_cutoff, today_key


UTC = timezone.utc


@pytest.fixture(autouse=True)
def _settings(test_settings):
    return test_settings


class TestTodayKey:
    def test_winter_midnight_boundary(self):
        # EST is UTC-5
        assert today_key(datetime(2026, 1, 15, 4, 59, tzinfo=UTC)) == "2026-01-14"
        assert today_key(datetime(2026, 1, 15, 5, 0, tzinfo=UTC)) == "2026-01-15"

    def test_summer_midnight_boundary(self):
        # EDT is UTC-4
        assert today_key(datetime(2026, 7, 1, 3, 59, tzinfo=UTC)) == "2026-06-30"
        assert today_key(datetime(2026, 7, 1, 4, 0, tzinfo=UTC)) == "2026-07-01"

    def test_spring_forward_day(self):
        assert today_key(datetime(2026, 3, 8, 4, 59, tzinfo=UTC)) == "2026-03-07"
        assert today_key(datetime(2026, 3, 8, 5, 0, tzinfo=UTC)) == "2026-03-08"
        # Late evening after the switch is still the same business day
        assert today_key(datetime(2026, 3, 9, 3, 59, tzinfo=UTC)) == "2026-03-08"

    def test_fall_back_day(self):
        assert today_key(datetime(2026, 11, 1, 3, 59, tzinfo=UTC)) == "2026-10-31"
        assert today_key(datetime(2026, 11, 1, 4, 0, tzinfo=UTC)) == "2026-11-01"
        # Repeated 01:xx hour, both occurrences on Nov 1
        assert today_key(datetime(2026, 11, 1, 5, 30, tzinfo=UTC)) == "2026-11-01"
        assert today_key(datetime(2026, 11, 1, 6, 30, tzinfo=UTC)) == "2026-11-01"

    def test_naive_input_is_utc(self):
        assert today_key(datetime(2026, 1, 15, 4, 59)) == "2026-01-14"


class TestCutoff:
    def test_is_past_cutoff(self):
        assert is_past_cutoff(datetime(2026, 1, 15, 7, 59, tzinfo=UTC)) is False  # 02:59 EST
        assert is_past_cutoff(datetime(2026, 1, 15, 8, 0, tzinfo=UTC)) is True  # 03:00 EST

    def test_next_cutoff_same_day(self):
        cutoff = next_cutoff(datetime(2026, 1, 15, 6, 0, tzinfo=UTC))  # 01:00 EST
        assert cutoff.astimezone(UTC) == datetime(2026, 1, 15, 8, 0, tzinfo=UTC)

    def test_next_cutoff_rolls_to_tomorrow(self):
        cutoff = next_cutoff(datetime(2026, 1, 15, 12, 0, tzinfo=UTC))  # 07:00 EST
        assert cutoff.astimezone(UTC) == datetime(2026, 1, 16, 8, 0, tzinfo=UTC)

    def test_next_cutoff_on_spring_forward(self):
        # 00:30 EST on Mar 8; 03:00 that day is already EDT
        cutoff = next_cutoff(datetime(2026, 3, 8, 5, 30, tzinfo=UTC))
        assert cutoff.astimezone(UTC) == datetime(2026, 3, 8, 7, 0, tzinfo=UTC)


def test_ensure_utc():
    assert ensure_utc(None) is None
    assert ensure_utc(datetime(2026, 1, 1, 12, 0)).tzinfo == UTC
    assert ensure_utc(datetime(2026, 1, 1, 12, 0, tzinfo=UTC)) == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
