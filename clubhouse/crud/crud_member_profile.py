"""CRUD operations for member profiles."""

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.crud._base import CRUDBaseSystem
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.models import MemberProfile


class CRUDMemberProfile(
    CRUDBaseSystem[MemberProfile, schemas.MemberProfileCreate, schemas.MemberProfileUpdate]
):
    """CRUD operations for member profiles."""

    async def get_by_stripe_subscription(
        self, db: AsyncSession, *, stripe_subscription_id: str
    ) -> Optional[MemberProfile]:
        """Get a member by Stripe subscription ID.

        Args:
            db: Database session
            stripe_subscription_id: Stripe subscription ID

        Returns:
            MemberProfile or None
        """
        query = select(MemberProfile).where(
            MemberProfile.stripe_subscription_id == stripe_subscription_id
        )
        result = await db.execute(query)
        return result.scalars().first()

    async def list_with_subscription(self, db: AsyncSession) -> list[MemberProfile]:
        """All members currently linked to a Stripe subscription."""
        query = (
            select(MemberProfile)
            .where(MemberProfile.stripe_subscription_id.is_not(None))
            .order_by(MemberProfile.created_at)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def list_lapsed(
        self, db: AsyncSession, *, now: datetime, exempt_roles: Sequence[str]
    ) -> list[MemberProfile]:
        """Approved, non-exempt members whose expiry is in the past."""
        query = select(MemberProfile).where(
            MemberProfile.status == schemas.MemberStatus.APPROVED.value,
            MemberProfile.membership_expires_at.is_not(None),
            MemberProfile.membership_expires_at < now,
        )
        if exempt_roles:
            query = query.where(MemberProfile.role.not_in(list(exempt_roles)))
        result = await db.execute(query)
        return list(result.scalars().all())

    async def mark_expired(
        self,
        db: AsyncSession,
        *,
        member_ids: Sequence,
        now: datetime,
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        """Flip the given members to expired in a single statement.

        The predicate is repeated in the WHERE clause so a member renewed
        between the select and this update is left alone.

        Returns:
            int: Number of rows updated.
        """
        if not member_ids:
            return 0

        stmt = (
            update(MemberProfile)
            .where(
                MemberProfile.id.in_(list(member_ids)),
                MemberProfile.status == schemas.MemberStatus.APPROVED.value,
                MemberProfile.membership_expires_at < now,
            )
            .values(status=schemas.MemberStatus.EXPIRED.value, modified_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if uow is None:
            await db.commit()

        return result.rowcount or 0


member_profile = CRUDMemberProfile(MemberProfile)
