"""Payment ledger: append-only records of membership payments."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.core.datetime_utils import utc_now
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.integrations.stripe_client import InvoiceSnapshot, SubscriptionSnapshot
from clubhouse.models import MemberProfile, PaymentRecord
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.trial_policy import TrialPolicy, from_minor_units
from clubhouse.schemas.payment_record import PaymentMethod, PaymentStatus


class PaymentLedger:
    """Builds and inserts ledger rows."""

    def __init__(self, repository: Optional[MembershipRepository] = None):
        """Initialize the ledger."""
        self.repository = repository or MembershipRepository()

    async def record_subscription_payment(
        self,
        db: AsyncSession,
        *,
        member: MemberProfile,
        subscription: SubscriptionSnapshot,
        invoice: Optional[InvoiceSnapshot],
        policy: TrialPolicy,
        expires_at: Optional[datetime],
        uow: UnitOfWork,
        paid_at: Optional[datetime] = None,
    ) -> Optional[PaymentRecord]:
        """Record a subscription payment once per (member, subscription).

        The amount comes from the invoice when it shows a payment, otherwise
        from the level's fee.

        Returns:
            The new row, or None if this subscription was already recorded.
        """
        level = schemas.MembershipLevel(member.membership_level)
        if invoice is not None and invoice.amount_paid:
            amount = from_minor_units(invoice.amount_paid)
            currency = (invoice.currency or policy.currency).lower()
        else:
            amount = policy.fee_for_level(level)
            currency = policy.currency

        payment_in = schemas.PaymentRecordCreate(
            user_id=member.id,
            method=PaymentMethod.SUBSCRIPTION,
            amount=amount,
            currency=currency,
            payment_date=paid_at or utc_now(),
            expires_at_snapshot=expires_at,
            stripe_subscription_id=subscription.id,
            stripe_payment_intent_id=invoice.payment_intent_id if invoice else None,
            status=PaymentStatus.COMPLETED,
        )
        return await self.repository.insert_payment_if_absent(db, payment_in, uow=uow)

    async def record_manual_payment(
        self,
        db: AsyncSession,
        *,
        member: MemberProfile,
        method: PaymentMethod,
        amount: Decimal,
        currency: str,
        expires_at: Optional[datetime],
        recorded_by: Optional[UUID],
        notes: Optional[str],
        uow: UnitOfWork,
        paid_at: Optional[datetime] = None,
    ) -> PaymentRecord:
        """Record an out-of-band payment entered by an admin."""
        payment_in = schemas.PaymentRecordCreate(
            user_id=member.id,
            method=method,
            amount=amount,
            currency=currency,
            payment_date=paid_at or utc_now(),
            expires_at_snapshot=expires_at,
            recorded_by=recorded_by,
            notes=notes,
            status=PaymentStatus.COMPLETED,
        )
        return await self.repository.create_payment(db, payment_in, uow=uow)
