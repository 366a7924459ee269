"""
Timestamp normalization tests.

Verifies:
- Branch timestamps in any offset are stored as UTC-naive
- Date-only watermarks mean midnight UTC
- Responses render UTC with a trailing Z
"""

from datetime import datetime, timedelta, timezone

import pytest

from chainhub.time_utils import (
    as_utc_naive,
    parse_iso_datetime,
    seconds_remaining,
    to_utc_z,
    utcnow,
)


class TestParseIsoDatetime:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2026-03-01T10:15:00Z", datetime(2026, 3, 1, 10, 15)),
            ("2026-03-01T12:15:00+02:00", datetime(2026, 3, 1, 10, 15)),
            ("2026-03-01T10:15", datetime(2026, 3, 1, 10, 15)),
            ("2026-03-01", datetime(2026, 3, 1)),
        ],
    )
    def test_normalized_to_utc_naive(self, raw, expected):
        assert parse_iso_datetime(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_is_none(self, raw):
        assert parse_iso_datetime(raw) is None

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_iso_datetime("yesterday")


class TestRendering:

    def test_trailing_z(self):
        assert to_utc_z(datetime(2026, 3, 1, 10, 15, 30, 999)) == "2026-03-01T10:15:30Z"

    def test_aware_input_converted(self):
        aware = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc_naive(aware) == datetime(2026, 3, 1, 10, 0)
        assert to_utc_z(aware) == "2026-03-01T10:00:00Z"


class TestWindows:

    def test_seconds_remaining(self):
        started = utcnow() - timedelta(seconds=600)
        assert 2990 <= seconds_remaining(started, 3600) <= 3000

    def test_expired_window_is_zero(self):
        assert seconds_remaining(utcnow() - timedelta(hours=2), 3600) == 0
