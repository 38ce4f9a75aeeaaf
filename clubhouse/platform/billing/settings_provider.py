"""Admin-configurable fee schedule and trial policy.

Values live in the ``app_setting`` table and are read on every call so an
admin edit applies to the very next checkout or reconciliation.
"""

import json
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import crud
from clubhouse.core.config import settings
from clubhouse.core.logging import logger
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.platform.billing.trial_policy import (
    DEFAULT_FEES,
    DEFAULT_TRIAL_CONFIG,
    TrialPolicy,
)
from clubhouse.schemas.member_profile import MembershipLevel
from clubhouse.schemas.membership_settings import (
    MembershipFees,
    MembershipFeesUpdate,
    TrialConfig,
    TrialConfigSchedule,
)

FEE_KEY_PREFIX = "membership_fee:"
TRIAL_KEY_PREFIX = "trial_config:"

settings_logger = logger.with_context(component="membership_settings")


def fee_key(level: MembershipLevel) -> str:
    """Storage key for a level's fee."""
    return f"{FEE_KEY_PREFIX}{level.value}"


def trial_key(level: MembershipLevel) -> str:
    """Storage key for a level's trial config."""
    return f"{TRIAL_KEY_PREFIX}{level.value}"


class MembershipSettingsProvider:
    """Reads and writes the fee schedule and trial configuration."""

    def __init__(self, currency: Optional[str] = None):
        """Initialize the provider."""
        self.currency = (currency or settings.BILLING_CURRENCY).lower()

    async def get_fees(self, db: AsyncSession) -> MembershipFees:
        """Current fee per level. Unset or unreadable values use the defaults."""
        raw = await crud.app_setting.get_many(
            db, keys=[fee_key(level) for level in MembershipLevel]
        )
        fees: dict[MembershipLevel, Decimal] = {}
        for level in MembershipLevel:
            value = raw.get(fee_key(level))
            fees[level] = DEFAULT_FEES[level]
            if value is None:
                continue
            try:
                fees[level] = Decimal(value)
            except InvalidOperation:
                settings_logger.warning(f"Ignoring malformed fee for {level.value}: {value!r}")
        return MembershipFees(currency=self.currency, fees=fees)

    async def update_fees(self, db: AsyncSession, update: MembershipFeesUpdate) -> MembershipFees:
        """Overwrite the fees for the given levels."""
        async with UnitOfWork(db) as uow:
            for level, fee in update.fees.items():
                await crud.app_setting.upsert(db, key=fee_key(level), value=str(fee), uow=uow)
        settings_logger.info(
            f"Updated fees for {', '.join(level.value for level in update.fees)}"
        )
        return await self.get_fees(db)

    async def get_trial_schedule(self, db: AsyncSession) -> TrialConfigSchedule:
        """Current trial config for every level."""
        raw = await crud.app_setting.get_many(
            db, keys=[trial_key(level) for level in MembershipLevel]
        )
        trial: dict[MembershipLevel, TrialConfig] = {}
        for level in MembershipLevel:
            value = raw.get(trial_key(level))
            trial[level] = DEFAULT_TRIAL_CONFIG[level]
            if value is None:
                continue
            try:
                trial[level] = TrialConfig.model_validate(json.loads(value))
            except (ValueError, ValidationError):
                settings_logger.warning(f"Ignoring malformed trial config for {level.value}")
        return TrialConfigSchedule(trial=trial)

    async def update_trial_schedule(
        self, db: AsyncSession, schedule: TrialConfigSchedule
    ) -> TrialConfigSchedule:
        """Overwrite the trial config for all levels."""
        async with UnitOfWork(db) as uow:
            for level, config in schedule.trial.items():
                await crud.app_setting.upsert(
                    db, key=trial_key(level), value=config.model_dump_json(), uow=uow
                )
        settings_logger.info("Updated trial configuration")
        return await self.get_trial_schedule(db)

    async def get_policy(self, db: AsyncSession) -> TrialPolicy:
        """Snapshot of fees and trial config for one operation."""
        fees = await self.get_fees(db)
        schedule = await self.get_trial_schedule(db)
        return TrialPolicy(
            fees=dict(fees.fees),
            trials=dict(schedule.trial),
            currency=self.currency,
            tz_name=settings.TRIAL_ANCHOR_TIMEZONE,
            anchor_hour=settings.TRIAL_ANCHOR_HOUR,
        )


membership_settings = MembershipSettingsProvider()
