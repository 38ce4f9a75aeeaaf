"""Schemas for admin-configurable membership settings."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from clubhouse.schemas.member_profile import MembershipLevel

MIN_TRIAL_MONTHS = 1
MAX_TRIAL_MONTHS = 60


class TrialType(str, Enum):
    """Trial window strategies."""

    NONE = "none"
    FIXED_CALENDAR_DATE = "fixed_calendar_date"
    DURATION_MONTHS = "duration_months"


class TrialConfig(BaseModel):
    """Trial policy for one membership level."""

    type: TrialType = TrialType.NONE
    months: Optional[int] = Field(None, description="Trial length for duration_months")
    month: Optional[int] = Field(None, ge=1, le=12, description="Month for fixed_calendar_date")
    day: Optional[int] = Field(None, ge=1, le=31, description="Day for fixed_calendar_date")

    @field_validator("months")
    def clamp_months(cls, v: Optional[int]) -> Optional[int]:
        """Clamp trial length to the supported range."""
        if v is None:
            return v
        return max(MIN_TRIAL_MONTHS, min(MAX_TRIAL_MONTHS, v))

    @model_validator(mode="after")
    def fill_strategy_defaults(self) -> "TrialConfig":
        """Fill in defaults for the chosen strategy and drop unrelated fields."""
        if self.type == TrialType.DURATION_MONTHS:
            if self.months is None:
                self.months = 12
            self.month = self.day = None
        elif self.type == TrialType.FIXED_CALENDAR_DATE:
            if self.month is None:
                self.month = 9
            if self.day is None:
                self.day = 1
            self.months = None
        else:
            self.months = self.month = self.day = None
        return self


class MembershipFees(BaseModel):
    """Annual fee per level."""

    currency: str
    fees: dict[MembershipLevel, Decimal]


class MembershipFeesUpdate(BaseModel):
    """Partial fee schedule update."""

    fees: dict[MembershipLevel, Decimal]

    @field_validator("fees")
    def fees_not_negative(cls, v: dict[MembershipLevel, Decimal]) -> dict:
        """Reject negative fees."""
        for level, fee in v.items():
            if fee < 0:
                raise ValueError(f"Fee for {level.value} cannot be negative")
        return v


class TrialConfigSchedule(BaseModel):
    """Trial policy for every level. Updates must cover all levels."""

    trial: dict[MembershipLevel, TrialConfig]

    @field_validator("trial")
    def covers_all_levels(cls, v: dict[MembershipLevel, TrialConfig]) -> dict:
        """Ensure every membership level has a policy."""
        missing = [level.value for level in MembershipLevel if level not in v]
        if missing:
            raise ValueError(f"Trial config missing for: {', '.join(missing)}")
        return v
