"""
Expiry date handling.

Expiry strings come in two fixed-width forms: DDMONYYYY from the instrument
master (30MAY2024) and DDMONYY inside trading symbols (30MAY24). Time to
expiry uses a 365-day year and a fixed intraday cutoff in exchange-local
time.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}


def parse_expiry(value: str) -> Optional[date]:
    """
    Parse an expiry token.

    Args:
        value: DDMONYYYY or DDMONYY (case-insensitive)

    Returns:
        Expiry date, or None if the token is malformed
    """
    if not value:
        return None
    token = value.strip().upper()
    if len(token) not in (7, 9):
        return None

    day_part, month_part, year_part = token[:2], token[2:5], token[5:]
    month = MONTHS.get(month_part)
    if month is None or not day_part.isdigit() or not year_part.isdigit():
        return None

    year = int(year_part)
    if len(year_part) == 2:
        year += 2000

    try:
        return date(year, month, int(day_part))
    except ValueError:
        return None


def expiry_cutoff(expiry: date, cutoff: time, tz: Optional[ZoneInfo] = None) -> datetime:
    """Return the expiry date at the intraday cutoff (aware when tz is given)."""
    return datetime.combine(expiry, cutoff, tzinfo=tz)


def to_exchange_time(moment: datetime, tz: ZoneInfo) -> datetime:
    """
    Express a timestamp in exchange-local time.

    Naive datetimes are taken to already be exchange-local.
    """
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def time_to_expiry_years(
    expiry: date,
    as_of: Union[datetime, date],
    cutoff: time = time(15, 30),
    tz: ZoneInfo = ZoneInfo("Asia/Kolkata"),
) -> float:
    """
    Time to expiry in years (365-day year).

    A plain date for as_of is read as that day's cutoff, so valuing on the
    expiry date itself yields zero.

    Args:
        expiry: Contract expiry date
        as_of: Valuation moment
        cutoff: Intraday expiry cutoff (exchange-local)
        tz: Exchange timezone

    Returns:
        Years to expiry, negative once the contract has expired
    """
    if not isinstance(as_of, datetime):
        as_of = datetime.combine(as_of, cutoff)
    moment = to_exchange_time(as_of, tz)
    expires_at = expiry_cutoff(expiry, cutoff, tz)
    return (expires_at - moment).total_seconds() / SECONDS_PER_YEAR


def days_between(
    start: Union[datetime, date],
    end: Union[datetime, date],
    cutoff: time = time(15, 30),
    tz: ZoneInfo = ZoneInfo("Asia/Kolkata"),
) -> float:
    """
    Fractional calendar days from start to end.

    Dates are read at the cutoff and naive datetimes as exchange-local, so
    the same instant gives the same count whatever zone it was expressed in.
    """
    if not isinstance(start, datetime):
        start = datetime.combine(start, cutoff)
    if not isinstance(end, datetime):
        end = datetime.combine(end, cutoff)
    return (to_exchange_time(end, tz) - to_exchange_time(start, tz)) / timedelta(days=1)
