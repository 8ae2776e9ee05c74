"""
Utility functions for the Venue Quote Monitor.
"""

from datetime import datetime, date
from typing import Iterable, Union
import pytz


# Crypto option venues settle at 08:00 UTC
SETTLEMENT_HOUR = 8

MONTHS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN",
          "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]

SECONDS_PER_YEAR = 365 * 24 * 3600


def utc_now() -> datetime:
    """Get current time in UTC."""
    return datetime.now(pytz.utc)


def ensure_utc(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if ts.tzinfo is None:
        return pytz.utc.localize(ts)
    return ts.astimezone(pytz.utc)


def normalize_expiry(expiry: Union[datetime, date, str]) -> datetime:
    """
    Normalize an expiry to its settlement instant.

    Args:
        expiry: Expiry date, datetime or ISO date string

    Returns:
        Timezone-aware datetime at the settlement hour (UTC)
    """
    if isinstance(expiry, str):
        expiry = datetime.fromisoformat(expiry).date()
    elif isinstance(expiry, datetime):
        expiry = ensure_utc(expiry).date()

    return pytz.utc.localize(
        datetime(expiry.year, expiry.month, expiry.day, SETTLEMENT_HOUR)
    )


def expiry_label(expiry: datetime) -> str:
    """Venue-neutral expiry label, e.g. 27DEC24."""
    return f"{expiry.day}{MONTHS[expiry.month - 1]}{expiry.year % 100:02d}"


def years_to_expiry(expiry: datetime, now: datetime) -> float:
    """Year fraction until expiry, floored at zero."""
    seconds = (ensure_utc(expiry) - ensure_utc(now)).total_seconds()
    return max(0.0, seconds / SECONDS_PER_YEAR)


def hours_between(later: datetime, earlier: datetime) -> float:
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600


def to_epoch_ms(ts: datetime) -> int:
    return int(round(ensure_utc(ts).timestamp() * 1000))


def from_epoch_ms(ms: Union[int, float]) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=pytz.utc)


def pct_diff(value: float, reference: float) -> float:
    """Percentage difference of value vs reference."""
    if reference == 0:
        return 0.0
    return (value - reference) / reference * 100


def format_range(values: Iterable[Union[float, str]], fmt: str = "{}") -> str:
    """
    Compact 'lo-hi' range for a set of values.

    Strings keep first-seen order; numbers use min and max.
    """
    vals = list(values)
    if not vals:
        return "-"
    if all(isinstance(v, str) for v in vals):
        uniq = list(dict.fromkeys(vals))
        lo, hi = uniq[0], uniq[-1]
    else:
        lo, hi = min(vals), max(vals)
    if lo == hi:
        return fmt.format(lo)
    return f"{fmt.format(lo)}-{fmt.format(hi)}"


def format_strike(strike: float) -> str:
    if float(strike).is_integer():
        return f"{int(strike)}"
    return f"{strike:g}"

