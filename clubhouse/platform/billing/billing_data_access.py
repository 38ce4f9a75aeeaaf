"""Repository pattern for membership billing database operations.

This module handles all database interactions for billing,
providing a clean interface between the service layer and CRUD operations.
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import crud, schemas
from clubhouse.core.exceptions import NotFoundException
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.models import MemberProfile, PaymentRecord


class MembershipRepository:
    """Repository for all membership billing database operations."""

    async def get_member(self, db: AsyncSession, user_id: UUID) -> Optional[MemberProfile]:
        """Get a member by ID."""
        return await crud.member_profile.get(db, id=user_id)

    async def get_member_or_raise(self, db: AsyncSession, user_id: UUID) -> MemberProfile:
        """Get a member by ID or raise ``NotFoundException``."""
        member = await self.get_member(db, user_id)
        if member is None:
            raise NotFoundException("Member not found", user_id=str(user_id))
        return member

    async def get_member_by_subscription(
        self, db: AsyncSession, stripe_subscription_id: str
    ) -> Optional[MemberProfile]:
        """Get the member linked to a Stripe subscription.

        Returns the model directly for webhook processing.
        """
        return await crud.member_profile.get_by_stripe_subscription(
            db, stripe_subscription_id=stripe_subscription_id
        )

    async def list_subscribed_members(self, db: AsyncSession) -> List[MemberProfile]:
        """Members currently linked to a subscription."""
        return await crud.member_profile.list_with_subscription(db)

    async def update_member(
        self,
        db: AsyncSession,
        member: MemberProfile,
        updates: dict[str, Any],
        uow: Optional[UnitOfWork] = None,
    ) -> MemberProfile:
        """Apply field updates to a member.

        Enum values are stored by value.
        """
        values = {key: getattr(value, "value", value) for key, value in updates.items()}
        return await crud.member_profile.update(db, db_obj=member, obj_in=values, uow=uow)

    async def list_lapsed_members(
        self, db: AsyncSession, now: datetime, exempt_roles: Sequence[str]
    ) -> List[MemberProfile]:
        """Approved, non-exempt members whose expiry has passed."""
        return await crud.member_profile.list_lapsed(db, now=now, exempt_roles=exempt_roles)

    async def expire_members(
        self,
        db: AsyncSession,
        member_ids: Sequence[UUID],
        now: datetime,
        uow: Optional[UnitOfWork] = None,
    ) -> int:
        """Flip the given members to expired in one statement."""
        return await crud.member_profile.mark_expired(db, member_ids=member_ids, now=now, uow=uow)

    async def get_subscription_payment(
        self, db: AsyncSession, user_id: UUID, stripe_subscription_id: str
    ) -> Optional[PaymentRecord]:
        """Ledger row for a (member, subscription) pair."""
        return await crud.payment_record.get_for_subscription(
            db, user_id=user_id, stripe_subscription_id=stripe_subscription_id
        )

    async def create_payment(
        self,
        db: AsyncSession,
        payment_in: schemas.PaymentRecordCreate,
        uow: Optional[UnitOfWork] = None,
    ) -> PaymentRecord:
        """Insert a ledger row."""
        payment = await crud.payment_record.create(
            db, obj_in=payment_in.model_dump() | _enum_values(payment_in), uow=uow
        )
        if uow is not None:
            await db.flush()
        return payment

    async def insert_payment_if_absent(
        self,
        db: AsyncSession,
        payment_in: schemas.PaymentRecordCreate,
        uow: UnitOfWork,
    ) -> Optional[PaymentRecord]:
        """Insert a subscription ledger row unless one exists for the pair.

        The read is a fast path; the unique constraint on (user_id,
        stripe_subscription_id) decides races. The insert runs in a savepoint
        so losing a race does not poison the surrounding unit of work.

        Returns:
            The new row, or None if the pair was already recorded.
        """
        existing = await self.get_subscription_payment(
            db, payment_in.user_id, payment_in.stripe_subscription_id
        )
        if existing is not None:
            return None

        try:
            async with db.begin_nested():
                payment = PaymentRecord(**payment_in.model_dump() | _enum_values(payment_in))
                db.add(payment)
                await db.flush()
        except IntegrityError:
            return None
        return payment

    async def list_payments(
        self,
        db: AsyncSession,
        user_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[schemas.PaymentRecord]:
        """Ledger rows, newest first, optionally for one member."""
        if user_id is not None:
            rows = await crud.payment_record.list_for_user(
                db, user_id=user_id, skip=skip, limit=limit
            )
        else:
            rows = await crud.payment_record.list_recent(db, skip=skip, limit=limit)
        return [schemas.PaymentRecord.model_validate(row, from_attributes=True) for row in rows]


def _enum_values(payment_in: schemas.PaymentRecordCreate) -> dict[str, str]:
    return {"method": payment_in.method.value, "status": payment_in.status.value}
