"""CRUD operations for the payment ledger."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.crud._base import CRUDBaseSystem
from clubhouse.models import PaymentRecord


class CRUDPaymentRecord(
    CRUDBaseSystem[PaymentRecord, schemas.PaymentRecordCreate, schemas.PaymentRecordCreate]
):
    """CRUD operations for payment records. Rows are never updated after insert."""

    async def get_for_subscription(
        self, db: AsyncSession, *, user_id: UUID, stripe_subscription_id: str
    ) -> Optional[PaymentRecord]:
        """Get the ledger row for a (member, subscription) pair, if any."""
        query = select(PaymentRecord).where(
            PaymentRecord.user_id == user_id,
            PaymentRecord.stripe_subscription_id == stripe_subscription_id,
        )
        result = await db.execute(query)
        return result.scalars().first()

    async def list_for_user(
        self, db: AsyncSession, *, user_id: UUID, skip: int = 0, limit: int = 100
    ) -> list[PaymentRecord]:
        """Payments for one member, newest first."""
        query = (
            select(PaymentRecord)
            .where(PaymentRecord.user_id == user_id)
            .order_by(PaymentRecord.payment_date.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def list_recent(
        self, db: AsyncSession, *, skip: int = 0, limit: int = 100
    ) -> list[PaymentRecord]:
        """All payments, newest first."""
        query = (
            select(PaymentRecord)
            .order_by(PaymentRecord.payment_date.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(query)
        return list(result.scalars().all())


payment_record = CRUDPaymentRecord(PaymentRecord)
