"""Unit tests for helper utility functions."""

from datetime import date, datetime, timezone

import pytest

from implementation.misc.helpers import (
    RELEASE_LOOKBACK_DAYS,
    format_number,
    release_date_floor,
    round_half_up,
    to_fixed,
    utc_now,
)


def test_utc_now_is_timezone_aware() -> None:
    assert utc_now().tzinfo is not None
    assert utc_now().utcoffset().total_seconds() == 0


def test_release_date_floor_is_six_thirty_day_months_back() -> None:
    now = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert RELEASE_LOOKBACK_DAYS == 180
    assert release_date_floor(now) == date(2029, 7, 5)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(8.0, "8"), (7.5, "7.5"), (10, "10"), (7.25, "7.25")],
)
def test_format_number_shortest_form(value: float, expected: str) -> None:
    assert format_number(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (5.045, 5.05),     # scaled value lands on the tie; round() would give 5.04
        (18.6533, 18.65),
        (110.0, 110.0),
        (0.0, 0.0),
    ],
)
def test_round_half_up_two_decimals(value: float, expected: float) -> None:
    assert round_half_up(value, 2) == expected


def test_round_half_up_other_precision() -> None:
    assert round_half_up(0.5, 0) == 1.0
    assert round_half_up(2.5, 0) == 3.0


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (62.25, "62.3"),
        (55.25, "55.3"),
        (12.75, "12.8"),
        (51.234, "51.2"),
        (8, "8.0"),
        (500.0, "500.0"),
        (5.05, "5.0"),     # stored just below the tie in binary
    ],
)
def test_to_fixed_one_decimal(value: float, expected: str) -> None:
    assert to_fixed(value) == expected


def test_to_fixed_two_decimals() -> None:
    assert to_fixed(1.125, 2) == "1.13"
