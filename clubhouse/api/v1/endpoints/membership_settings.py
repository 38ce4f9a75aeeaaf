"""Endpoints for the fee schedule and trial configuration."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.api import deps
from clubhouse.api.context import ApiContext
from clubhouse.api.router import TrailingSlashRouter
from clubhouse.platform.billing.settings_provider import MembershipSettingsProvider

router = TrailingSlashRouter()


@router.get("/fees/public", response_model=schemas.MembershipFees)
async def read_public_fees(
    db: AsyncSession = Depends(deps.get_db),
    provider: MembershipSettingsProvider = Depends(deps.get_settings_provider),
) -> schemas.MembershipFees:
    """Public, read-only fee schedule for display."""
    return await provider.get_fees(db)


@router.get("/fees", response_model=schemas.MembershipFees)
async def read_fees(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    provider: MembershipSettingsProvider = Depends(deps.get_settings_provider),
) -> schemas.MembershipFees:
    """Fee schedule (admin)."""
    return await provider.get_fees(db)


@router.put("/fees", response_model=schemas.MembershipFees)
async def update_fees(
    update: schemas.MembershipFeesUpdate,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    provider: MembershipSettingsProvider = Depends(deps.get_settings_provider),
) -> schemas.MembershipFees:
    """Update fees for one or more levels. Applies to the next checkout."""
    ctx.logger.info(f"Updating fees: {update.fees}")
    return await provider.update_fees(db, update)


@router.get("/trial", response_model=schemas.TrialConfigSchedule)
async def read_trial_config(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    provider: MembershipSettingsProvider = Depends(deps.get_settings_provider),
) -> schemas.TrialConfigSchedule:
    """Trial configuration for every level (admin)."""
    return await provider.get_trial_schedule(db)


@router.put("/trial", response_model=schemas.TrialConfigSchedule)
async def update_trial_config(
    schedule: schemas.TrialConfigSchedule,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    provider: MembershipSettingsProvider = Depends(deps.get_settings_provider),
) -> schemas.TrialConfigSchedule:
    """Replace the trial configuration. Every level must be present."""
    return await provider.update_trial_schedule(db, schedule)
