"""
Helper functions shared by the curation pipeline.

Small, dependency-free utilities for clock access, the date arithmetic behind
the candidate release-date floor, and the half-up rounding used for stored
scores and the numbers shown in curation reasoning.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

import math


# TMDB "upcoming" can return titles released a while ago; anything older
# than this many days is treated as stale provider data.
RELEASE_LOOKBACK_DAYS = 6 * 30


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def release_date_floor(now: datetime) -> date:
    """
    Oldest release date (exclusive) an upcoming candidate may have.

    Args:
        now: Reference time of the fetch.

    Returns:
        The calendar date RELEASE_LOOKBACK_DAYS before ``now``.
    """
    return (now - timedelta(days=RELEASE_LOOKBACK_DAYS)).date()


def round_half_up(value: float, digits: int = 2) -> float:
    """
    Round to ``digits`` decimals with ties going up, e.g. 5.045 -> 5.05.

    Scales, adds one half and floors, so it works on the scaled float rather
    than the exact binary value. Built-in round() rounds ties to even.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def to_fixed(value: float, digits: int = 1) -> str:
    """
    Format with exactly ``digits`` decimals, ties rounded away from zero.

    Examples:
        >>> to_fixed(62.25)
        '62.3'
        >>> to_fixed(8)
        '8.0'
    """
    quantum = Decimal(1).scaleb(-digits)
    return str(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def format_number(value: float) -> str:
    """Render a number in its shortest form: 8.0 -> '8', 7.25 -> '7.25'."""
    return f"{value:g}"
