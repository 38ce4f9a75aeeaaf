"""Hosted checkout: starting a session and applying a completed one.

``apply_completed_checkout`` is the one routine behind both the
``checkout.session.completed`` webhook and the client's confirmation call,
so the two paths cannot disagree when both fire for the same checkout.
"""

from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.core.config import settings
from clubhouse.core.datetime_utils import utc_now
from clubhouse.core.exceptions import (
    BillingConfigurationError,
    BillingProviderError,
    NotFoundException,
    PermissionException,
    ProviderNotFoundError,
    ValidationException,
)
from clubhouse.core.logging import ContextualLogger
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.integrations.stripe_client import (
    InvoiceSnapshot,
    PriceSpec,
    StripeBillingGateway,
    stripe_gateway,
)
from clubhouse.models import MemberProfile
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.ledger import PaymentLedger
from clubhouse.platform.billing.reconciliation import SubscriptionReconciler
from clubhouse.platform.billing.settings_provider import (
    MembershipSettingsProvider,
    membership_settings,
)
from clubhouse.platform.billing.trial_policy import to_minor_units
from clubhouse.schemas.member_event import MemberEventType
from clubhouse.schemas.member_profile import MembershipLevel, MemberStatus

PAID_SESSION_STATES = frozenset({"paid", "no_payment_required"})


class CheckoutService:
    """Starts hosted checkouts and applies completed ones."""

    def __init__(
        self,
        repository: Optional[MembershipRepository] = None,
        gateway: Optional[StripeBillingGateway] = None,
        settings_provider: Optional[MembershipSettingsProvider] = None,
        reconciler: Optional[SubscriptionReconciler] = None,
        ledger: Optional[PaymentLedger] = None,
        clock: Callable = utc_now,
    ):
        """Initialize the checkout service with its collaborators."""
        self.repository = repository or MembershipRepository()
        self.gateway = gateway or stripe_gateway
        self.settings_provider = settings_provider or membership_settings
        self.reconciler = reconciler or SubscriptionReconciler(
            repository=self.repository,
            gateway=self.gateway,
            settings_provider=self.settings_provider,
            clock=clock,
        )
        self.ledger = ledger or PaymentLedger(self.repository)
        self.clock = clock

    async def start_checkout(
        self,
        db: AsyncSession,
        member: MemberProfile,
        request: schemas.CheckoutSessionRequest,
        log: ContextualLogger,
    ) -> schemas.CheckoutSessionResponse:
        """Create a hosted checkout session for the member's annual fee."""
        if not self.gateway.is_configured:
            raise BillingConfigurationError()
        if member.status == MemberStatus.REJECTED.value:
            raise PermissionException("Membership was rejected", user_id=str(member.id))
        if member.stripe_subscription_id:
            raise ValidationException(
                "Member already has a subscription", user_id=str(member.id)
            )

        policy = await self.settings_provider.get_policy(db)
        level = MembershipLevel(member.membership_level)
        fee = policy.fee_for_level(level)
        if fee <= 0:
            raise ValidationException(
                f"{level.value} membership has no fee to pay", user_id=str(member.id)
            )

        customer_id = await self.gateway.create_or_update_customer(
            email=member.email,
            name=member.full_name,
            customer_id=member.stripe_customer_id,
            metadata={"user_id": str(member.id)},
        )
        if customer_id != member.stripe_customer_id:
            await self.repository.update_member(db, member, {"stripe_customer_id": customer_id})
            log.info(f"Linked Stripe customer {customer_id}")

        now = self.clock()
        trial_end = policy.checkout_trial_end(level, member.created_at, now=now)
        session = await self.gateway.create_checkout_session(
            customer_id=customer_id,
            price=PriceSpec(
                amount_cents=to_minor_units(fee),
                currency=policy.currency,
                product_name=f"{settings.MEMBERSHIP_PRODUCT_NAME} ({level.value})",
            ),
            success_url=request.success_url
            or f"{settings.app_url}/membership?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=request.cancel_url or f"{settings.app_url}/membership",
            metadata={"user_id": str(member.id), "membership_level": level.value},
            trial_end=trial_end,
        )
        log.info(f"Created checkout session {session.id} (trial_end={trial_end})")
        return schemas.CheckoutSessionResponse(session_id=session.id, checkout_url=session.url)

    async def apply_completed_checkout(
        self,
        db: AsyncSession,
        *,
        user_id: UUID,
        subscription_id: str,
        log: ContextualLogger,
        source: str,
    ) -> schemas.MembershipState:
        """Link a new subscription to a member and record its payment.

        Fetches the subscription (and, best effort, its latest invoice), then
        writes the profile fields and the ledger row in one unit of work.
        Safe to run more than once for the same subscription.
        """
        member = await self.repository.get_member_or_raise(db, user_id)
        log = log.with_context(user_id=str(member.id), stripe_subscription_id=subscription_id)

        subscription = await self.gateway.retrieve_subscription(subscription_id)
        invoice = await self._latest_invoice(subscription.latest_invoice_id, log)
        policy = await self.settings_provider.get_policy(db)

        async with UnitOfWork(db) as uow:
            outcome = await self.reconciler.apply_subscription(
                db, member, subscription, policy, uow
            )
            payment = await self.ledger.record_subscription_payment(
                db,
                member=member,
                subscription=subscription,
                invoice=invoice,
                policy=policy,
                expires_at=outcome.state.membership_expires_at,
                uow=uow,
                paid_at=self.clock(),
            )

        log.info(
            f"Applied checkout via {source}: status={outcome.state.status.value} "
            f"expires_at={outcome.state.membership_expires_at} "
            f"ledger={'inserted' if payment is not None else 'already present'}"
        )

        await self.reconciler.publish(
            MemberEventType.SUBSCRIPTION_CONFIRMED,
            member.id,
            log,
            stripe_subscription_id=subscription_id,
            source=source,
        )
        if outcome.newly_approved:
            await self.reconciler.publish(
                MemberEventType.MEMBER_APPROVED, member.id, log, source=source
            )
        return outcome.state

    async def confirm_checkout(
        self,
        db: AsyncSession,
        member: MemberProfile,
        request: schemas.ConfirmCheckoutRequest,
        log: ContextualLogger,
    ) -> schemas.ConfirmCheckoutResponse:
        """Client-side confirmation after returning from hosted checkout."""
        if not self.gateway.is_configured:
            raise BillingConfigurationError()

        try:
            session = await self.gateway.retrieve_checkout_session(request.session_id)
        except ProviderNotFoundError as e:
            raise NotFoundException(
                "Checkout session not found", session_id=request.session_id
            ) from e

        log = log.with_context(checkout_session_id=session.id)
        if session.user_id != str(member.id):
            log.warning(f"Checkout session belongs to {session.user_id}")
            raise PermissionException("Checkout session does not belong to this member")
        if session.payment_status not in PAID_SESSION_STATES:
            raise ValidationException(
                "Checkout has not been paid", payment_status=session.payment_status
            )
        if not session.subscription_id:
            raise ValidationException("Checkout session has no subscription")

        if member.stripe_subscription_id == session.subscription_id:
            return schemas.ConfirmCheckoutResponse(ok=True, already_applied=True)

        await self.apply_completed_checkout(
            db,
            user_id=member.id,
            subscription_id=session.subscription_id,
            log=log,
            source="confirmation",
        )
        return schemas.ConfirmCheckoutResponse(ok=True, already_applied=False)

    async def _latest_invoice(
        self, invoice_id: Optional[str], log: ContextualLogger
    ) -> Optional[InvoiceSnapshot]:
        if not invoice_id:
            return None
        try:
            return await self.gateway.retrieve_invoice(invoice_id)
        except BillingProviderError as e:
            log.warning(f"Could not fetch invoice {invoice_id}, using level fee: {e.message}")
            return None
