"""Tests for billing boundaries and proration day arithmetic."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from metering.core.errors import InvalidBoundary
from metering.services.billing_boundary import BillingBoundary, seconds_between
from tests.conftest import PERIOD_END, PERIOD_START, make_boundary


class TestBoundaryValidation:
    def test_rejects_inverted_period(self):
        with pytest.raises(InvalidBoundary, match="must be after"):
            BillingBoundary(PERIOD_END, PERIOD_START, charges_duration=31)

    def test_rejects_empty_period(self):
        with pytest.raises(InvalidBoundary):
            BillingBoundary(PERIOD_START, PERIOD_START, charges_duration=31)

    @pytest.mark.parametrize("duration", [0, -5])
    def test_rejects_non_positive_duration(self, duration):
        with pytest.raises(InvalidBoundary, match="positive"):
            make_boundary(charges_duration=duration)

    def test_rejects_unknown_timezone(self):
        with pytest.raises(InvalidBoundary, match="Unknown time zone"):
            make_boundary(timezone="Mars/Olympus_Mons")

    def test_invalid_boundary_is_a_value_error(self):
        with pytest.raises(ValueError):
            make_boundary(charges_duration=0)

    def test_naive_datetimes_are_utc(self):
        boundary = BillingBoundary(datetime(2024, 3, 1), datetime(2024, 4, 1), charges_duration=31)
        assert boundary.from_datetime == PERIOD_START
        assert boundary.to_datetime.tzinfo is not None


class TestApplicableWindow:
    def test_defaults_to_period_end(self):
        assert make_boundary().applicable_to_datetime == PERIOD_END

    def test_max_timestamp_cuts_the_window(self):
        cutoff = datetime(2024, 3, 10, tzinfo=UTC)
        assert make_boundary(max_timestamp=cutoff).applicable_to_datetime == cutoff

    def test_max_timestamp_after_period_end_is_ignored(self):
        boundary = make_boundary(max_timestamp=PERIOD_END + timedelta(days=3))
        assert boundary.applicable_to_datetime == PERIOD_END

    def test_contains_is_half_open(self):
        boundary = make_boundary()
        assert boundary.contains(PERIOD_START)
        assert boundary.contains(PERIOD_END - timedelta(microseconds=1))
        assert not boundary.contains(PERIOD_END)
        assert not boundary.contains(PERIOD_START - timedelta(seconds=1))

    def test_max_timestamp_is_exclusive(self):
        cutoff = datetime(2024, 3, 10, tzinfo=UTC)
        boundary = make_boundary(max_timestamp=cutoff)
        assert not boundary.contains(cutoff)
        assert boundary.contains(cutoff - timedelta(seconds=1))


class TestHeldDays:
    def test_until_period_end(self):
        boundary = make_boundary()
        assert boundary.held_days(datetime(2024, 3, 16, 10, tzinfo=UTC), None) == 16

    def test_first_day_counts_fully(self):
        boundary = make_boundary()
        assert boundary.held_days(PERIOD_START, None) == 31

    def test_start_before_period_is_clamped(self):
        boundary = make_boundary()
        assert boundary.held_days(datetime(2024, 2, 20, tzinfo=UTC), None) == 31

    def test_same_day_end_counts_one_day(self):
        boundary = make_boundary()
        start = datetime(2024, 3, 16, 8, tzinfo=UTC)
        assert boundary.held_days(start, start + timedelta(hours=3)) == 1

    def test_end_day_is_included(self):
        boundary = make_boundary()
        start = datetime(2024, 3, 16, 8, tzinfo=UTC)
        end = datetime(2024, 3, 18, 1, tzinfo=UTC)
        assert boundary.held_days(start, end) == 3

    def test_clamped_to_charges_duration(self):
        # Subscription started mid-period: 10 billable days for a 31-day calendar window
        boundary = make_boundary(charges_duration=10)
        assert boundary.held_days(PERIOD_START, None) == 10

    def test_local_days_follow_timezone(self):
        paris = ZoneInfo("Europe/Paris")
        boundary = BillingBoundary(
            datetime(2024, 3, 1, tzinfo=paris),
            datetime(2024, 4, 1, tzinfo=paris),
            charges_duration=31,
            timezone="Europe/Paris",
        )
        # 23:30 UTC on March 16th is already March 17th in Paris
        late_evening = datetime(2024, 3, 16, 23, 30, tzinfo=UTC)
        assert boundary.held_days(late_evening, None) == 15
        assert make_boundary().held_days(late_evening, None) == 16

    def test_day_ratio(self):
        boundary = make_boundary()
        ratio = boundary.day_ratio(datetime(2024, 3, 16, tzinfo=UTC), None)
        assert ratio == Decimal(16) / Decimal(31)
        assert Decimal(0) <= ratio <= Decimal(1)


class TestSecondsBetween:
    def test_whole_seconds(self):
        assert seconds_between(PERIOD_START, PERIOD_START + timedelta(hours=1)) == Decimal(3600)

    def test_keeps_microseconds(self):
        end = PERIOD_START + timedelta(seconds=1, microseconds=500_000)
        assert seconds_between(PERIOD_START, end) == Decimal("1.5")

    def test_period_seconds(self):
        assert make_boundary().period_seconds == Decimal(31 * 86_400)
