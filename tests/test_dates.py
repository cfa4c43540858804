from datetime import date, datetime

import pytest

from src.studio.dates import (
    booking_window_opens,
    date_key,
    intervals_overlap,
    is_date_key,
    iter_dates,
    last_month_range,
    minutes_since_midnight,
    next_occurrence_date,
    parse_date_key,
    parse_time,
    subtract_months,
)
from src.studio.errors import InvalidInputError
from tests.conftest import TZ


def test_date_key_is_zero_padded():
    assert date_key(date(2024, 3, 6)) == "2024-03-06"
    assert "2024-03-06" < "2024-11-01"


@pytest.mark.parametrize("key", ["2024-3-6", "2024-02-30", "20240306", "", "2024-03-06T00:00"])
def test_parse_date_key_rejects_malformed(key):
    with pytest.raises(InvalidInputError):
        parse_date_key(key)
    assert not is_date_key(key)


def test_parse_time():
    assert minutes_since_midnight("09:30") == 570
    with pytest.raises(InvalidInputError):
        parse_time("24:00")
    with pytest.raises(InvalidInputError):
        parse_time("9:30")


def test_intervals_are_half_open():
    assert intervals_overlap(600, 660, 630, 690)
    assert intervals_overlap(630, 690, 600, 660)
    assert not intervals_overlap(600, 660, 660, 720)


def test_next_occurrence_date_skips_started_class_today():
    monday_noon = datetime(2024, 3, 4, 12, 0, tzinfo=TZ)
    assert next_occurrence_date(1, "18:00", monday_noon) == date(2024, 3, 4)
    assert next_occurrence_date(1, "10:00", monday_noon) == date(2024, 3, 11)
    assert next_occurrence_date(3, "10:00", monday_noon) == date(2024, 3, 6)
    assert next_occurrence_date(7, "10:00", monday_noon) == date(2024, 3, 10)


def test_booking_window_opens_two_days_before_at_nine():
    opens = booking_window_opens(date(2024, 3, 8), TZ)
    assert opens == datetime(2024, 3, 6, 9, 0, tzinfo=TZ)


def test_subtract_months_clamps_day():
    assert subtract_months(date(2024, 3, 31), 1) == date(2024, 2, 29)
    assert subtract_months(date(2024, 3, 4), 6) == date(2023, 9, 4)
    assert subtract_months(date(2024, 1, 15), 13) == date(2022, 12, 15)


def test_last_month_range_crosses_year():
    assert last_month_range(date(2024, 1, 10)) == (date(2023, 12, 1), date(2023, 12, 31))
    assert last_month_range(date(2024, 3, 4)) == (date(2024, 2, 1), date(2024, 2, 29))


def test_iter_dates_is_inclusive():
    days = list(iter_dates(date(2024, 2, 28), date(2024, 3, 1)))
    assert days == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]
