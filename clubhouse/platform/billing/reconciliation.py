"""Subscription reconciliation.

Derives a member's canonical ``{status, membership_expires_at,
cancel_at_period_end}`` from the current Stripe subscription and the trial
policy. Webhooks, checkout confirmation and admin syncs all go through the
same code here, so they agree whenever they see the same upstream state.

Every write is recomputed from upstream state rather than applied as a
delta, which makes redelivered webhooks and concurrent writers converge.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.core.datetime_utils import ensure_utc, utc_now
from clubhouse.core.exceptions import (
    BillingProviderError,
    ProviderConfigurationError,
    ProviderNotFoundError,
)
from clubhouse.core.logging import ContextualLogger, logger
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.integrations.stripe_client import (
    StripeBillingGateway,
    SubscriptionSnapshot,
    stripe_gateway,
)
from clubhouse.models import MemberProfile
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.settings_provider import (
    MembershipSettingsProvider,
    membership_settings,
)
from clubhouse.platform.billing.trial_policy import TrialPolicy
from clubhouse.platform.notifications import MemberEventPublisher, member_event_publisher
from clubhouse.schemas.member_event import MemberEvent, MemberEventType
from clubhouse.schemas.member_profile import MemberStatus

ACTIVE_SUBSCRIPTION_STATES = frozenset({"active", "trialing", "past_due"})
ENDED_SUBSCRIPTION_STATES = frozenset({"canceled", "unpaid"})


def is_future(when: Optional[datetime], now: datetime) -> bool:
    """Whether ``when`` is set and still ahead of ``now``."""
    return when is not None and ensure_utc(when) > now


def derive_status(
    subscription_status: str, expires_at: Optional[datetime], now: datetime
) -> MemberStatus:
    """Map an upstream subscription state onto a member status.

    Canceled and unpaid subscriptions keep the member approved until the
    paid-for (or trial) period runs out. Unknown states expire the member.
    """
    if subscription_status in ACTIVE_SUBSCRIPTION_STATES:
        return MemberStatus.APPROVED
    if subscription_status in ENDED_SUBSCRIPTION_STATES:
        return MemberStatus.APPROVED if is_future(expires_at, now) else MemberStatus.EXPIRED
    return MemberStatus.EXPIRED


def status_from_expiry(member: MemberProfile, now: datetime) -> MemberStatus:
    """Status for a member left without a subscription. Rejected members stay rejected."""
    if member.status == MemberStatus.REJECTED.value:
        return MemberStatus.REJECTED
    if is_future(member.membership_expires_at, now):
        return MemberStatus.APPROVED
    return MemberStatus.EXPIRED


def stored_state(member: MemberProfile) -> schemas.MembershipState:
    """The member's persisted status/expiry pair."""
    return schemas.MembershipState(
        status=MemberStatus(member.status),
        membership_expires_at=ensure_utc(member.membership_expires_at),
    )


@dataclass
class ReconcileOutcome:
    """Result of applying a subscription to a member within a unit of work."""

    state: schemas.MembershipState
    changed: bool
    previous_status: MemberStatus

    @property
    def newly_approved(self) -> bool:
        """Whether this write moved the member onto approved."""
        return (
            self.previous_status != MemberStatus.APPROVED
            and self.state.status == MemberStatus.APPROVED
        )


class SubscriptionReconciler:
    """Keeps member profiles consistent with their Stripe subscriptions."""

    def __init__(
        self,
        repository: Optional[MembershipRepository] = None,
        gateway: Optional[StripeBillingGateway] = None,
        settings_provider: Optional[MembershipSettingsProvider] = None,
        publisher: Optional[MemberEventPublisher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the reconciler with its collaborators."""
        self.repository = repository or MembershipRepository()
        self.gateway = gateway or stripe_gateway
        self.settings_provider = settings_provider or membership_settings
        self.publisher = publisher or member_event_publisher
        self.clock = clock

    def target_fields(
        self,
        member: MemberProfile,
        subscription: SubscriptionSnapshot,
        policy: TrialPolicy,
        now: datetime,
    ) -> dict[str, Any]:
        """Compute every profile field implied by a subscription."""
        level = schemas.MembershipLevel(member.membership_level)
        expires_at = policy.effective_expiry(
            level,
            member.created_at,
            subscription.current_period_start,
            subscription.current_period_end,
            now=now,
        )
        status = derive_status(subscription.status, expires_at, now)
        if member.status == MemberStatus.REJECTED.value:
            status = MemberStatus.REJECTED

        fields: dict[str, Any] = {
            "status": status,
            "membership_expires_at": expires_at,
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "stripe_subscription_id": subscription.id,
        }
        customer_id = subscription.customer_id or member.stripe_customer_id
        if customer_id:
            fields["stripe_customer_id"] = customer_id
        return fields

    async def write_if_changed(
        self,
        db: AsyncSession,
        member: MemberProfile,
        fields: dict[str, Any],
        uow: UnitOfWork,
    ) -> ReconcileOutcome:
        """Write ``fields`` only when at least one differs from the stored value."""
        previous_status = MemberStatus(member.status)
        changes = {
            key: value
            for key, value in fields.items()
            if not _same(getattr(member, key), value)
        }
        if changes:
            await self.repository.update_member(db, member, changes, uow=uow)
        return ReconcileOutcome(
            state=stored_state(member), changed=bool(changes), previous_status=previous_status
        )

    async def apply_subscription(
        self,
        db: AsyncSession,
        member: MemberProfile,
        subscription: SubscriptionSnapshot,
        policy: TrialPolicy,
        uow: UnitOfWork,
    ) -> ReconcileOutcome:
        """Apply a fetched subscription to a member inside the caller's unit of work."""
        fields = self.target_fields(member, subscription, policy, self.clock())
        return await self.write_if_changed(db, member, fields, uow)

    async def reconcile(
        self,
        db: AsyncSession,
        *,
        user_id: Optional[UUID] = None,
        subscription_id: Optional[str] = None,
        log: Optional[ContextualLogger] = None,
    ) -> Optional[schemas.MembershipState]:
        """Reconcile one member against Stripe.

        The member is looked up by ``user_id`` or, failing that, by
        ``subscription_id``. Expected failures never raise.

        Returns:
            The resulting state, or None when the member is unknown or Stripe
            could not be reached (nothing was written).
        """
        log = (log or logger).with_context(component="reconciliation")

        member = None
        if user_id is not None:
            member = await self.repository.get_member(db, user_id)
        elif subscription_id:
            member = await self.repository.get_member_by_subscription(db, subscription_id)
        if member is None:
            log.warning(f"No member for user_id={user_id} subscription_id={subscription_id}")
            return None

        log = log.with_context(user_id=str(member.id))
        now = self.clock()

        if member.status == MemberStatus.REJECTED.value:
            return stored_state(member)

        subscription_id = subscription_id or member.stripe_subscription_id
        if not subscription_id:
            return await self._reconcile_without_subscription(db, member, now, log)

        if not self.gateway.is_configured:
            log.info("Billing not configured, keeping stored membership state")
            return stored_state(member)

        log = log.with_context(stripe_subscription_id=subscription_id)
        try:
            subscription = await self.gateway.retrieve_subscription(subscription_id)
        except ProviderNotFoundError:
            return await self._handle_deleted_subscription(db, member, now, log)
        except ProviderConfigurationError:
            log.error("Stripe rejected our credentials, keeping stored membership state")
            return stored_state(member)
        except BillingProviderError as e:
            log.warning(f"Could not fetch subscription, nothing written: {e.context}")
            return None

        policy = await self.settings_provider.get_policy(db)
        async with UnitOfWork(db) as uow:
            outcome = await self.apply_subscription(db, member, subscription, policy, uow)

        if outcome.changed:
            log.info(
                f"Reconciled membership: status={outcome.state.status.value} "
                f"expires_at={outcome.state.membership_expires_at}"
            )
        if outcome.newly_approved:
            await self.publish(MemberEventType.MEMBER_APPROVED, member.id, log, source="sync")
        return outcome.state

    async def _reconcile_without_subscription(
        self, db: AsyncSession, member: MemberProfile, now: datetime, log: ContextualLogger
    ) -> schemas.MembershipState:
        """No subscription anywhere: only an expired trial window can come back."""
        if member.status == MemberStatus.EXPIRED.value and is_future(
            member.membership_expires_at, now
        ):
            async with UnitOfWork(db) as uow:
                await self.repository.update_member(
                    db, member, {"status": MemberStatus.APPROVED}, uow=uow
                )
            log.info("Restored approved status for member still inside their window")
        return stored_state(member)

    async def _handle_deleted_subscription(
        self, db: AsyncSession, member: MemberProfile, now: datetime, log: ContextualLogger
    ) -> schemas.MembershipState:
        """The subscription is gone upstream: unlink it and fall back to the stored expiry."""
        fields = {
            "stripe_subscription_id": None,
            "cancel_at_period_end": False,
            "status": status_from_expiry(member, now),
        }
        async with UnitOfWork(db) as uow:
            outcome = await self.write_if_changed(db, member, fields, uow)
        log.info(f"Subscription deleted upstream, status now {outcome.state.status.value}")
        return outcome.state

    async def publish(
        self,
        event_type: MemberEventType,
        user_id: UUID,
        log: ContextualLogger,
        **data: Any,
    ) -> None:
        """Publish a member event. Failures are logged by the publisher."""
        await self.publisher.publish(MemberEvent(type=event_type, user_id=user_id, data=data), log)


def _same(current: Any, target: Any) -> bool:
    if isinstance(current, datetime) or isinstance(target, datetime):
        return ensure_utc(current) == ensure_utc(target)
    return getattr(current, "value", current) == getattr(target, "value", target)
