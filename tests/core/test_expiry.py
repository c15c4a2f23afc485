"""
Tests for expiry date handling and day counts.
"""

from datetime import date, datetime, time, timezone

import pytest

from greekfeed.core.expiry import days_between, expiry_cutoff, time_to_expiry_years
from tests.fixtures.market_fixtures import IST, NIFTY_EXPIRY


class TestTimeToExpiry:
    """Test suite for time_to_expiry_years."""

    def test_whole_days_to_cutoff(self):
        as_of = datetime(2024, 5, 20, 15, 30, tzinfo=IST)
        assert time_to_expiry_years(NIFTY_EXPIRY, as_of) == pytest.approx(10 / 365)

    def test_intraday_fraction(self):
        as_of = datetime(2024, 5, 30, 9, 30, tzinfo=IST)
        assert time_to_expiry_years(NIFTY_EXPIRY, as_of) == pytest.approx(6 / 24 / 365)

    def test_date_is_read_at_cutoff(self):
        assert time_to_expiry_years(NIFTY_EXPIRY, NIFTY_EXPIRY) == 0.0
        assert time_to_expiry_years(NIFTY_EXPIRY, date(2024, 5, 29)) == pytest.approx(1 / 365)

    def test_after_cutoff_is_negative(self):
        as_of = datetime(2024, 5, 30, 15, 45, tzinfo=IST)
        assert time_to_expiry_years(NIFTY_EXPIRY, as_of) < 0

    def test_naive_is_exchange_local_and_utc_converted(self):
        naive = datetime(2024, 5, 20, 15, 30)
        utc = datetime(2024, 5, 20, 10, 0, tzinfo=timezone.utc)  # 15:30 IST
        expected = 10 / 365
        assert time_to_expiry_years(NIFTY_EXPIRY, naive) == pytest.approx(expected)
        assert time_to_expiry_years(NIFTY_EXPIRY, utc) == pytest.approx(expected)

    def test_custom_cutoff(self):
        as_of = datetime(2024, 5, 30, 14, 0, tzinfo=IST)
        assert time_to_expiry_years(NIFTY_EXPIRY, as_of, cutoff=time(14, 0)) == 0.0

    def test_expiry_cutoff(self):
        assert expiry_cutoff(NIFTY_EXPIRY, time(15, 30), IST) == datetime(2024, 5, 30, 15, 30, tzinfo=IST)


class TestDaysBetween:
    """Test suite for days_between."""

    def test_dates(self):
        assert days_between(date(2024, 5, 20), date(2024, 5, 25)) == 5.0

    def test_mixed_aware_and_date(self):
        start = datetime(2024, 5, 20, 10, 30, tzinfo=IST)
        assert days_between(start, date(2024, 5, 21)) == pytest.approx(1 + 5 / 24)

    def test_negative_when_reversed(self):
        assert days_between(date(2024, 5, 25), date(2024, 5, 20)) == -5.0

    def test_same_instant_in_any_zone(self):
        ist = datetime(2024, 5, 20, 10, 0, tzinfo=IST)
        utc = ist.astimezone(timezone.utc)
        expected = days_between(ist, NIFTY_EXPIRY)
        assert expected == pytest.approx(10 + 5.5 / 24)
        assert days_between(utc, NIFTY_EXPIRY) == pytest.approx(expected)
        assert days_between(datetime(2024, 5, 20, 10, 0), NIFTY_EXPIRY) == pytest.approx(expected)
