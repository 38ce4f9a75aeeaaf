"""Webhook processor for Stripe membership events.

Stripe delivers at least once and in any order. Every handler re-derives the
member's state from Stripe (or from stored dates) instead of applying the
event as a delta, so a redelivered or late event cannot cause divergence.
A handler that raises makes the endpoint answer 5xx and Stripe redelivers.
"""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.datetime_utils import utc_now
from clubhouse.core.exceptions import NotFoundException, ProviderTransientError
from clubhouse.core.logging import ContextualLogger, logger
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.integrations.stripe_client import (
    CheckoutSessionSnapshot,
    InvoiceSnapshot,
    StripeBillingGateway,
    get_field,
    stripe_gateway,
)
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.checkout import CheckoutService
from clubhouse.platform.billing.reconciliation import SubscriptionReconciler, status_from_expiry
from clubhouse.schemas.member_event import MemberEventType


class BillingWebhookProcessor:
    """Process Stripe webhook events for memberships."""

    def __init__(
        self,
        db: AsyncSession,
        repository: Optional[MembershipRepository] = None,
        gateway: Optional[StripeBillingGateway] = None,
        reconciler: Optional[SubscriptionReconciler] = None,
        checkout: Optional[CheckoutService] = None,
    ):
        """Initialize webhook processor."""
        self.db = db
        self.repository = repository or MembershipRepository()
        self.gateway = gateway or stripe_gateway
        self.reconciler = reconciler or SubscriptionReconciler(
            repository=self.repository, gateway=self.gateway
        )
        self.checkout = checkout or CheckoutService(
            repository=self.repository, gateway=self.gateway, reconciler=self.reconciler
        )

        # Event handler mapping
        self.handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_ended,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    def _create_context_logger(self, event: Any) -> ContextualLogger:
        """Create contextual logger with event context."""
        return logger.with_context(
            auth_method="stripe_webhook",
            event_type=get_field(event, "type", "unknown"),
            stripe_event_id=get_field(event, "id", "unknown"),
        )

    async def process_event(self, event: Any) -> None:
        """Process a verified Stripe webhook event."""
        log = self._create_context_logger(event)
        event_type = get_field(event, "type")

        handler = self.handlers.get(event_type)
        if handler is None:
            log.info(f"Unhandled webhook event type: {event_type}")
            return

        event_object = get_field(get_field(event, "data"), "object")
        try:
            log.info(f"Processing webhook event: {event_type}")
            await handler(event_object, log)
        except Exception as e:
            log.error(f"Error handling {event_type}: {e}", exc_info=True)
            raise

    # Event handlers

    async def _handle_checkout_completed(self, session_object: Any, log: ContextualLogger) -> None:
        """Link the new subscription and record its payment."""
        session = CheckoutSessionSnapshot.from_stripe(session_object)
        if not session.subscription_id:
            log.info(f"Checkout session {session.id} has no subscription, ignoring")
            return

        user_id = session.user_id or get_field(session_object, "client_reference_id")
        if not user_id:
            log.error(f"No user_id in checkout session {session.id} metadata")
            return

        try:
            member_id = UUID(str(user_id))
        except ValueError:
            log.error(f"Malformed user_id {user_id!r} in checkout session {session.id}")
            return

        try:
            await self.checkout.apply_completed_checkout(
                self.db,
                user_id=member_id,
                subscription_id=session.subscription_id,
                log=log,
                source="webhook",
            )
        except NotFoundException:
            log.warning(f"Checkout completed for unknown member {user_id}, acknowledging")

    async def _handle_subscription_updated(
        self, subscription_object: Any, log: ContextualLogger
    ) -> None:
        """Renewals, plan swaps and cancel-at-period-end toggles."""
        subscription_id = get_field(subscription_object, "id")
        log = log.with_context(stripe_subscription_id=subscription_id)

        member = await self.repository.get_member_by_subscription(self.db, subscription_id)
        if member is None:
            log.info("Subscription not linked to any member, acknowledging")
            return

        state = await self.reconciler.reconcile(
            self.db, user_id=member.id, subscription_id=subscription_id, log=log
        )
        if state is None:
            raise ProviderTransientError(
                "Reconciliation did not complete", stripe_subscription_id=subscription_id
            )

    async def _handle_subscription_ended(
        self, subscription_object: Any, log: ContextualLogger
    ) -> None:
        await self._end_subscription(get_field(subscription_object, "id"), log)

    async def _handle_payment_failed(self, invoice_object: Any, log: ContextualLogger) -> None:
        invoice = InvoiceSnapshot.from_stripe(invoice_object)
        if not invoice.subscription_id:
            log.info(f"Failed invoice {invoice.id} is not for a subscription, ignoring")
            return
        await self._end_subscription(invoice.subscription_id, log)

    async def _end_subscription(self, subscription_id: Optional[str], log: ContextualLogger):
        """Unlink a subscription; the member keeps access until the stored expiry."""
        if not subscription_id:
            return
        log = log.with_context(stripe_subscription_id=subscription_id)

        member = await self.repository.get_member_by_subscription(self.db, subscription_id)
        if member is None:
            log.info("Subscription already unlinked, acknowledging")
            return

        status = status_from_expiry(member, utc_now())
        async with UnitOfWork(self.db) as uow:
            await self.repository.update_member(
                self.db,
                member,
                {
                    "status": status,
                    "stripe_subscription_id": None,
                    "cancel_at_period_end": False,
                },
                uow=uow,
            )

        log.with_context(user_id=str(member.id)).info(
            f"Subscription ended, member status now {status.value}"
        )
        await self.reconciler.publish(
            MemberEventType.SUBSCRIPTION_CANCELED,
            member.id,
            log,
            stripe_subscription_id=subscription_id,
        )
