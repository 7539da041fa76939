"""Tests for the utils module."""

from datetime import date, datetime, timedelta, timezone

from circulation.utils import ensure_utc, from_iso, to_iso


class TestEnsureUtc:
    """Tests for ensure_utc."""

    def test_plain_date_is_midnight(self):
        """Test that a date maps to the start of that UTC day."""
        assert ensure_utc(date(2025, 3, 1)) == datetime(2025, 3, 1, tzinfo=timezone.utc)

    def test_naive_datetime_assumed_utc(self):
        result = ensure_utc(datetime(2025, 3, 1, 12, 30))
        assert result.tzinfo == timezone.utc
        assert result.hour == 12

    def test_other_zone_converted(self):
        eastern = timezone(timedelta(hours=-5))
        result = ensure_utc(datetime(2025, 3, 1, 22, 0, tzinfo=eastern))
        assert result == datetime(2025, 3, 2, 3, 0, tzinfo=timezone.utc)


class TestIsoRoundTrip:
    """Tests for to_iso and from_iso."""

    def test_fixed_width(self):
        assert to_iso(datetime(2025, 3, 1, 10, tzinfo=timezone.utc)) == (
            "2025-03-01T10:00:00.000000+00:00"
        )

    def test_string_order_matches_time_order(self):
        earlier = to_iso(datetime(2025, 3, 1, 9, 59, 59, 999999, tzinfo=timezone.utc))
        later = to_iso(datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc))
        assert earlier < later

    def test_parse(self):
        value = datetime(2025, 3, 1, 10, 0, 0, 5, tzinfo=timezone.utc)
        assert from_iso(to_iso(value)) == value

    def test_empty(self):
        assert from_iso(None) is None
        assert from_iso("") is None
