"""Endpoints invoked by the external scheduler."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.api import deps
from clubhouse.api.router import TrailingSlashRouter
from clubhouse.platform.billing.expiry_sweeper import ExpirySweeper

router = TrailingSlashRouter()


@router.post(
    "/expire-memberships",
    response_model=schemas.SweepResult,
    dependencies=[Depends(deps.verify_cron_secret)],
)
async def expire_memberships(
    db: AsyncSession = Depends(deps.get_db),
    sweeper: ExpirySweeper = Depends(deps.get_expiry_sweeper),
) -> schemas.SweepResult:
    """Expire every approved member whose expiry has passed.

    Requires ``Authorization: Bearer <CRON_SECRET>`` when a secret is set.
    """
    return await sweeper.sweep(db)
