"""Trial windows and annual fees per membership level.

Pure functions only: everything here operates on already-loaded settings so
reconciliation, checkout and the status view all compute the same dates.
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from clubhouse.core.datetime_utils import ensure_utc, utc_now
from clubhouse.schemas.member_profile import MembershipLevel
from clubhouse.schemas.membership_settings import TrialConfig, TrialType

DEFAULT_FEES: dict[MembershipLevel, Decimal] = {
    MembershipLevel.FULL: Decimal("45"),
    MembershipLevel.STUDENT: Decimal("25"),
    MembershipLevel.ASSOCIATE: Decimal("25"),
    MembershipLevel.CORPORATE: Decimal("125"),
    MembershipLevel.HONORARY: Decimal("0"),
}

DEFAULT_TRIAL_CONFIG: dict[MembershipLevel, TrialConfig] = {
    MembershipLevel.FULL: TrialConfig(type=TrialType.FIXED_CALENDAR_DATE, month=9, day=1),
    MembershipLevel.STUDENT: TrialConfig(type=TrialType.DURATION_MONTHS, months=12),
    MembershipLevel.ASSOCIATE: TrialConfig(type=TrialType.FIXED_CALENDAR_DATE, month=9, day=1),
    MembershipLevel.CORPORATE: TrialConfig(type=TrialType.NONE),
    MembershipLevel.HONORARY: TrialConfig(type=TrialType.NONE),
}

# Minimum lead time for a trial end passed to checkout.
MIN_CHECKOUT_TRIAL = timedelta(hours=48)


def fixed_date_cutoff(
    month: int,
    day: int,
    *,
    now: datetime,
    tz_name: str = "UTC",
    anchor_hour: int = 12,
) -> datetime:
    """Next occurrence of ``month``/``day`` at ``anchor_hour`` in ``tz_name``, in UTC.

    Anchoring to a fixed hour in a fixed zone keeps the date stable whatever
    timezone the member's client is in. Days past the end of the month are
    clamped (Feb 30 becomes Feb 28 or 29).
    """
    zone = ZoneInfo(tz_name)
    local_now = ensure_utc(now).astimezone(zone)

    def occurrence(year: int) -> datetime:
        last_day = calendar.monthrange(year, month)[1]
        return datetime(year, month, min(day, last_day), anchor_hour, tzinfo=zone)

    candidate = occurrence(local_now.year)
    if candidate <= local_now:
        candidate = occurrence(local_now.year + 1)
    return ensure_utc(candidate)


def trial_cutoff(
    config: TrialConfig,
    member_created_at: datetime,
    *,
    now: Optional[datetime] = None,
    tz_name: str = "UTC",
    anchor_hour: int = 12,
) -> Optional[datetime]:
    """Compute the date before which a member owes nothing, or None for no trial."""
    if config.type == TrialType.FIXED_CALENDAR_DATE:
        return fixed_date_cutoff(
            config.month or 9,
            config.day or 1,
            now=now or utc_now(),
            tz_name=tz_name,
            anchor_hour=anchor_hour,
        )
    if config.type == TrialType.DURATION_MONTHS:
        return ensure_utc(member_created_at) + relativedelta(months=config.months or 12)
    return None


def effective_expiry(
    cutoff: Optional[datetime],
    period_start: Optional[datetime],
    period_end: Optional[datetime],
) -> Optional[datetime]:
    """Expiry for a subscription period, pinned to the trial cutoff.

    A subscription whose period begins before the cutoff expires at the
    cutoff, never at the provider's period end.
    """
    if cutoff is not None and period_start is not None and ensure_utc(period_start) < cutoff:
        return cutoff
    return ensure_utc(period_end) if period_end is not None else cutoff


def fee_for_level(
    level: MembershipLevel, fees: Optional[Mapping[MembershipLevel, Decimal]] = None
) -> Decimal:
    """Annual fee for a level, falling back to the built-in schedule."""
    if fees and level in fees and fees[level] is not None:
        return Decimal(fees[level])
    return DEFAULT_FEES[level]


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    """Convert cents to a major-unit amount."""
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


@dataclass
class TrialPolicy:
    """Fee schedule and trial configuration as read at one point in time."""

    fees: dict[MembershipLevel, Decimal] = field(default_factory=lambda: dict(DEFAULT_FEES))
    trials: dict[MembershipLevel, TrialConfig] = field(
        default_factory=lambda: dict(DEFAULT_TRIAL_CONFIG)
    )
    currency: str = "cad"
    tz_name: str = "UTC"
    anchor_hour: int = 12

    def trial_config(self, level: MembershipLevel) -> TrialConfig:
        """Trial config for a level, falling back to the default."""
        return self.trials.get(level) or DEFAULT_TRIAL_CONFIG[level]

    def fee_for_level(self, level: MembershipLevel) -> Decimal:
        """Annual fee for a level."""
        return fee_for_level(level, self.fees)

    def trial_cutoff(
        self, level: MembershipLevel, member_created_at: datetime, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """Trial cutoff for a member of ``level`` created at ``member_created_at``."""
        return trial_cutoff(
            self.trial_config(level),
            member_created_at,
            now=now,
            tz_name=self.tz_name,
            anchor_hour=self.anchor_hour,
        )

    def effective_expiry(
        self,
        level: MembershipLevel,
        member_created_at: datetime,
        period_start: Optional[datetime],
        period_end: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Trial-adjusted expiry for a subscription period."""
        cutoff = self.trial_cutoff(level, member_created_at, now=now)
        return effective_expiry(cutoff, period_start, period_end)

    def checkout_trial_end(
        self, level: MembershipLevel, member_created_at: datetime, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """Trial end to hand to hosted checkout, if the cutoff is far enough ahead."""
        now = now or utc_now()
        cutoff = self.trial_cutoff(level, member_created_at, now=now)
        if cutoff is not None and cutoff - now > MIN_CHECKOUT_TRIAL:
            return cutoff
        return None
