"""
Tests for timezone helpers
"""
import pytest
from datetime import date, datetime, time, timezone

from freezegun import freeze_time

from utils.time_utils import (
    clamp_day_of_month, days_between, get_timezone, js_weekday, local_date, localize,
    now_utc, parse_iso_to_utc, parse_optional_datetime, to_utc
)


class TestParsing:

    def test_parse_trailing_z(self):
        assert parse_iso_to_utc("2024-06-01T09:00:00Z") == datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

    def test_parse_offset_converts_to_utc(self):
        assert parse_iso_to_utc("2024-06-01T05:00:00-04:00") == datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

    def test_parse_naive_is_utc(self):
        assert parse_iso_to_utc("2024-06-01T09:00:00").tzinfo == timezone.utc

    def test_parse_invalid_raises(self):
        with pytest.raises(ValueError):
            parse_iso_to_utc("not a date")

    def test_parse_optional(self):
        assert parse_optional_datetime("") is None
        assert parse_optional_datetime(None) is None


class TestTimezones:

    def test_aliases(self):
        assert get_timezone("EST").zone == "US/Eastern"
        assert get_timezone("pst").zone == "US/Pacific"

    def test_missing_and_unknown_fall_back_to_default(self):
        """Test patients without a usable timezone use the default"""
        assert get_timezone(None).zone == "UTC"
        assert get_timezone("Mars/Olympus_Mons", "US/Central").zone == "US/Central"

    def test_naive_to_utc_uses_assumed_timezone(self):
        assert to_utc(datetime(2024, 6, 1, 5, 0), "US/Eastern") == datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

    def test_local_date_crosses_midnight(self):
        instant = datetime(2024, 6, 2, 2, 0, tzinfo=timezone.utc)

        assert local_date(instant) == date(2024, 6, 2)
        assert local_date(instant, "US/Pacific") == date(2024, 6, 1)

    def test_localize_handles_daylight_saving(self):
        """Test the same wall-clock time maps to different UTC instants in winter and summer"""
        assert localize(date(2024, 1, 15), time(9, 0), "US/Eastern").hour == 14
        assert localize(date(2024, 6, 15), time(9, 0), "US/Eastern").hour == 13

    @freeze_time("2024-06-01 09:00:00")
    def test_now_utc(self):
        assert now_utc() == datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class TestCalendarHelpers:

    @pytest.mark.parametrize("year,month,day,expected", [
        (2024, 2, 31, 29),
        (2023, 2, 31, 28),
        (2024, 4, 31, 30),
        (2024, 5, 31, 31),
        (2024, 5, 15, 15),
    ])
    def test_clamp_day_of_month(self, year, month, day, expected):
        assert clamp_day_of_month(year, month, day) == expected

    def test_js_weekday_sunday_is_zero(self):
        assert js_weekday(date(2024, 6, 2)) == 0  # Sunday
        assert js_weekday(date(2024, 6, 3)) == 1  # Monday
        assert js_weekday(date(2024, 6, 8)) == 6  # Saturday

    def test_days_between_inclusive(self):
        days = list(days_between(date(2024, 6, 1), date(2024, 6, 3)))
        assert days == [date(2024, 6, 1), date(2024, 6, 2), date(2024, 6, 3)]
