"""Unit tests for trial windows and fees."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from clubhouse.platform.billing.trial_policy import (
    TrialPolicy,
    effective_expiry,
    fee_for_level,
    fixed_date_cutoff,
    from_minor_units,
    to_minor_units,
    trial_cutoff,
)
from clubhouse.schemas import MembershipLevel, TrialConfig, TrialType

UTC = timezone.utc


class TestTrialCutoff:
    """Tests for cutoff computation."""

    def test_duration_months_counts_from_member_creation(self):
        """A 12 month trial ends on the same day a year after sign-up."""
        config = TrialConfig(type=TrialType.DURATION_MONTHS, months=12)

        cutoff = trial_cutoff(config, datetime(2024, 1, 15, tzinfo=UTC))

        assert cutoff == datetime(2025, 1, 15, tzinfo=UTC)

    def test_no_trial(self):
        """Levels without a trial have no cutoff."""
        config = TrialConfig(type=TrialType.NONE)

        assert trial_cutoff(config, datetime(2024, 1, 15, tzinfo=UTC)) is None

    def test_fixed_date_later_this_year(self):
        """A date still ahead this year is used as is, at the anchor hour."""
        cutoff = fixed_date_cutoff(9, 1, now=datetime(2024, 6, 1, tzinfo=UTC))

        assert cutoff == datetime(2024, 9, 1, 12, tzinfo=UTC)

    def test_fixed_date_already_passed_rolls_to_next_year(self):
        """Once the date has passed the next year's occurrence is used."""
        cutoff = fixed_date_cutoff(9, 1, now=datetime(2024, 9, 2, tzinfo=UTC))

        assert cutoff == datetime(2025, 9, 1, 12, tzinfo=UTC)

    def test_fixed_date_anchored_in_zone(self):
        """Noon in Toronto during daylight time is 16:00 UTC."""
        cutoff = fixed_date_cutoff(
            9, 1, now=datetime(2024, 6, 1, tzinfo=UTC), tz_name="America/Toronto"
        )

        assert cutoff == datetime(2024, 9, 1, 16, tzinfo=UTC)
        assert cutoff.tzinfo == UTC

    def test_fixed_date_day_clamped_to_month_length(self):
        """February 30 becomes the last day of February."""
        leap = fixed_date_cutoff(2, 30, now=datetime(2024, 1, 1, tzinfo=UTC))
        common = fixed_date_cutoff(2, 30, now=datetime(2025, 1, 1, tzinfo=UTC))

        assert leap == datetime(2024, 2, 29, 12, tzinfo=UTC)
        assert common == datetime(2025, 2, 28, 12, tzinfo=UTC)

    def test_fixed_date_follows_now_not_join_date(self):
        """A member who joined years ago still gets the next upcoming date."""
        config = TrialConfig(type=TrialType.FIXED_CALENDAR_DATE, month=9, day=1)

        cutoff = trial_cutoff(
            config, datetime(2021, 3, 1, tzinfo=UTC), now=datetime(2024, 10, 1, tzinfo=UTC)
        )

        assert cutoff == datetime(2025, 9, 1, 12, tzinfo=UTC)


class TestEffectiveExpiry:
    """Tests for pinning a subscription period to the trial cutoff."""

    def test_student_period_before_cutoff_expires_at_cutoff(self):
        """A period starting inside the trial window expires at the cutoff."""
        policy = TrialPolicy()

        expires_at = policy.effective_expiry(
            MembershipLevel.STUDENT,
            datetime(2024, 1, 15, tzinfo=UTC),
            datetime(2024, 6, 1, tzinfo=UTC),
            datetime(2025, 6, 1, tzinfo=UTC),
            now=datetime(2024, 6, 1, tzinfo=UTC),
        )

        assert expires_at == datetime(2025, 1, 15, tzinfo=UTC)

    def test_period_after_cutoff_uses_period_end(self):
        """Renewals after the trial use the provider's period end."""
        cutoff = datetime(2025, 1, 15, tzinfo=UTC)
        period_end = datetime(2026, 2, 1, tzinfo=UTC)

        expires_at = effective_expiry(cutoff, datetime(2025, 2, 1, tzinfo=UTC), period_end)

        assert expires_at == period_end

    def test_no_cutoff_uses_period_end(self):
        """Levels without a trial always use the period end."""
        policy = TrialPolicy()
        period_end = datetime(2025, 6, 1, tzinfo=UTC)

        expires_at = policy.effective_expiry(
            MembershipLevel.CORPORATE,
            datetime(2024, 1, 15, tzinfo=UTC),
            datetime(2024, 6, 1, tzinfo=UTC),
            period_end,
        )

        assert expires_at == period_end

    def test_missing_period_falls_back_to_cutoff(self):
        """Without period bounds the cutoff is the best known expiry."""
        cutoff = datetime(2025, 1, 15, tzinfo=UTC)

        assert effective_expiry(cutoff, None, None) == cutoff


class TestCheckoutTrialEnd:
    """Tests for the trial end handed to hosted checkout."""

    def test_trial_end_when_cutoff_far_ahead(self):
        """A cutoff weeks away becomes the checkout trial end."""
        policy = TrialPolicy()
        now = datetime(2024, 8, 1, tzinfo=UTC)

        trial_end = policy.checkout_trial_end(
            MembershipLevel.FULL, datetime(2024, 7, 1, tzinfo=UTC), now=now
        )

        assert trial_end == datetime(2024, 9, 1, 12, tzinfo=UTC)

    def test_no_trial_end_within_48_hours(self):
        """A cutoff less than 48 hours away is not passed to checkout."""
        policy = TrialPolicy()
        now = datetime(2024, 9, 1, 12, tzinfo=UTC) - timedelta(hours=36)

        trial_end = policy.checkout_trial_end(
            MembershipLevel.FULL, datetime(2024, 7, 1, tzinfo=UTC), now=now
        )

        assert trial_end is None


class TestFees:
    """Tests for fee lookup and currency conversion."""

    def test_configured_fee_wins(self):
        """A stored fee overrides the default."""
        fees = {MembershipLevel.FULL: Decimal("50")}

        assert fee_for_level(MembershipLevel.FULL, fees) == Decimal("50")
        assert fee_for_level(MembershipLevel.STUDENT, fees) == Decimal("25")

    def test_default_schedule(self):
        """Defaults match the published schedule."""
        policy = TrialPolicy()

        assert policy.fee_for_level(MembershipLevel.CORPORATE) == Decimal("125")
        assert policy.fee_for_level(MembershipLevel.HONORARY) == Decimal("0")

    @pytest.mark.parametrize(
        "amount,cents",
        [(Decimal("45"), 4500), (Decimal("12.345"), 1235), (Decimal("0"), 0)],
    )
    def test_to_minor_units(self, amount, cents):
        """Amounts are rounded half up to whole cents."""
        assert to_minor_units(amount) == cents

    def test_from_minor_units(self):
        """Cents convert back to a two decimal amount."""
        assert from_minor_units(4500) == Decimal("45.00")


class TestTrialConfig:
    """Tests for trial config validation."""

    @pytest.mark.parametrize("months,expected", [(0, 1), (100, 60), (18, 18)])
    def test_months_clamped(self, months, expected):
        """Durations are clamped to between 1 and 60 months."""
        config = TrialConfig(type=TrialType.DURATION_MONTHS, months=months)

        assert config.months == expected

    def test_fixed_date_defaults_to_september_first(self):
        """A fixed date without month/day defaults to September 1."""
        config = TrialConfig(type=TrialType.FIXED_CALENDAR_DATE)

        assert (config.month, config.day) == (9, 1)
        assert config.months is None
