"""Scheduled expiry of lapsed memberships."""

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.core.config import settings
from clubhouse.core.datetime_utils import utc_now
from clubhouse.core.logging import logger
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.platform.billing.billing_data_access import MembershipRepository


class ExpirySweeper:
    """Moves approved members past their expiry to expired.

    Only the ``approved -> expired`` edge is touched; subscription links and
    ledger rows are left alone. Running it twice in a row expires nothing the
    second time.
    """

    def __init__(
        self,
        repository: Optional[MembershipRepository] = None,
        exempt_roles: Optional[Sequence[str]] = None,
    ):
        """Initialize the sweeper."""
        self.repository = repository or MembershipRepository()
        self.exempt_roles = (
            list(exempt_roles) if exempt_roles is not None else settings.expiry_exempt_roles
        )
        self.logger = logger.with_context(component="expiry_sweeper")

    async def sweep(self, db: AsyncSession, now: Optional[datetime] = None) -> schemas.SweepResult:
        """Expire every lapsed, non-exempt approved member in one batch."""
        now = now or utc_now()
        lapsed = await self.repository.list_lapsed_members(db, now, self.exempt_roles)
        if not lapsed:
            self.logger.info("Expiry sweep found no lapsed memberships")
            return schemas.SweepResult(checked=0, expired=0)

        async with UnitOfWork(db) as uow:
            expired = await self.repository.expire_members(
                db, [member.id for member in lapsed], now, uow=uow
            )

        self.logger.info(f"Expiry sweep: {len(lapsed)} lapsed, {expired} expired")
        return schemas.SweepResult(checked=len(lapsed), expired=expired)
