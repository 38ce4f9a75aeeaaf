"""Admin-entered out-of-band payments (cash, wire, other)."""

from typing import Callable, Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.core.datetime_utils import ensure_utc, utc_now
from clubhouse.core.exceptions import ValidationException
from clubhouse.core.logging import ContextualLogger
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.ledger import PaymentLedger
from clubhouse.platform.billing.reconciliation import SubscriptionReconciler
from clubhouse.platform.billing.settings_provider import (
    MembershipSettingsProvider,
    membership_settings,
)
from clubhouse.schemas.member_event import MemberEventType
from clubhouse.schemas.member_profile import MembershipLevel, MemberStatus
from clubhouse.schemas.payment_record import MANUAL_PAYMENT_METHODS


class ManualPaymentRecorder:
    """Records a payment made outside Stripe and approves the member."""

    def __init__(
        self,
        repository: Optional[MembershipRepository] = None,
        settings_provider: Optional[MembershipSettingsProvider] = None,
        ledger: Optional[PaymentLedger] = None,
        reconciler: Optional[SubscriptionReconciler] = None,
        clock: Callable = utc_now,
    ):
        """Initialize the recorder."""
        self.repository = repository or MembershipRepository()
        self.settings_provider = settings_provider or membership_settings
        self.ledger = ledger or PaymentLedger(self.repository)
        self.reconciler = reconciler or SubscriptionReconciler(repository=self.repository)
        self.clock = clock

    async def record(
        self,
        db: AsyncSession,
        request: schemas.RecordPaymentRequest,
        recorded_by: Optional[UUID],
        log: ContextualLogger,
    ) -> schemas.RecordPaymentResponse:
        """Record the payment and approve the member until the given expiry.

        By default the payment supersedes any online subscription: the
        subscription and customer links are cleared locally. The Stripe
        subscription itself is left untouched.
        """
        if request.method not in MANUAL_PAYMENT_METHODS:
            raise ValidationException(
                "Manual payments must be cash, wire or other", method=request.method.value
            )

        member = await self.repository.get_member_or_raise(db, request.user_id)
        log = log.with_context(user_id=str(member.id), payment_method=request.method.value)

        now = self.clock()
        expires_at = ensure_utc(request.expires_at) or now + relativedelta(years=1)
        policy = await self.settings_provider.get_policy(db)
        amount = request.amount
        if amount is None:
            amount = policy.fee_for_level(MembershipLevel(member.membership_level))

        previous_status = MemberStatus(member.status)
        updates = {
            "status": MemberStatus.APPROVED,
            "membership_expires_at": expires_at,
        }
        if request.clear_external_subscription:
            updates.update(
                stripe_subscription_id=None,
                stripe_customer_id=None,
                cancel_at_period_end=False,
            )

        async with UnitOfWork(db) as uow:
            await self.repository.update_member(db, member, updates, uow=uow)
            payment = await self.ledger.record_manual_payment(
                db,
                member=member,
                method=request.method,
                amount=amount,
                currency=policy.currency,
                expires_at=expires_at,
                recorded_by=recorded_by,
                notes=request.notes,
                uow=uow,
                paid_at=now,
            )

        log.info(f"Recorded {request.method.value} payment of {amount}, expires {expires_at}")

        if previous_status != MemberStatus.APPROVED:
            await self.reconciler.publish(
                MemberEventType.MEMBER_APPROVED,
                member.id,
                log,
                source="manual_payment",
                method=request.method.value,
            )

        return schemas.RecordPaymentResponse(
            member=schemas.MemberProfile.model_validate(member, from_attributes=True),
            payment=schemas.PaymentRecord.model_validate(payment, from_attributes=True),
        )
