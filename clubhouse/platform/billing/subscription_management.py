"""Member and admin operations on an existing membership subscription."""

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from clubhouse import schemas
from clubhouse.core.config import settings
from clubhouse.core.datetime_utils import utc_now
from clubhouse.core.exceptions import (
    BillingConfigurationError,
    BillingProviderError,
    ClubhouseException,
    ProviderNotFoundError,
    ProviderTransientError,
    ValidationException,
)
from clubhouse.core.logging import ContextualLogger
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.integrations.stripe_client import PriceSpec, StripeBillingGateway, stripe_gateway
from clubhouse.models import MemberProfile
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.reconciliation import (
    SubscriptionReconciler,
    is_future,
    status_from_expiry,
)
from clubhouse.platform.billing.settings_provider import (
    MembershipSettingsProvider,
    membership_settings,
)
from clubhouse.platform.billing.trial_policy import to_minor_units
from clubhouse.schemas.member_event import MemberEventType
from clubhouse.schemas.member_profile import MembershipLevel, MemberStatus

ADMIN_SETTABLE_STATUSES = frozenset({MemberStatus.APPROVED, MemberStatus.REJECTED})


class SubscriptionManager:
    """Cancel, resume, re-price and sync membership subscriptions."""

    def __init__(
        self,
        repository: Optional[MembershipRepository] = None,
        gateway: Optional[StripeBillingGateway] = None,
        settings_provider: Optional[MembershipSettingsProvider] = None,
        reconciler: Optional[SubscriptionReconciler] = None,
        clock: Callable = utc_now,
        sync_max_attempts: Optional[int] = None,
        sync_wait_seconds: float = 1.0,
    ):
        """Initialize the manager with its collaborators."""
        self.repository = repository or MembershipRepository()
        self.gateway = gateway or stripe_gateway
        self.settings_provider = settings_provider or membership_settings
        self.reconciler = reconciler or SubscriptionReconciler(
            repository=self.repository,
            gateway=self.gateway,
            settings_provider=self.settings_provider,
            clock=clock,
        )
        self.clock = clock
        self.sync_max_attempts = sync_max_attempts or settings.BILLING_SYNC_MAX_ATTEMPTS
        self.sync_wait_seconds = sync_wait_seconds

    def _require_subscription(self, member: MemberProfile) -> str:
        if not member.stripe_subscription_id:
            raise ValidationException("No active subscription", user_id=str(member.id))
        if not self.gateway.is_configured:
            raise BillingConfigurationError()
        return member.stripe_subscription_id

    async def get_status(
        self, db: AsyncSession, member: MemberProfile
    ) -> schemas.SubscriptionStatusResponse:
        """Member-facing summary of membership, trial and fee."""
        policy = await self.settings_provider.get_policy(db)
        level = MembershipLevel(member.membership_level)
        now = self.clock()
        cutoff = policy.trial_cutoff(level, member.created_at, now=now)
        return schemas.SubscriptionStatusResponse(
            membership_level=level,
            status=MemberStatus(member.status),
            membership_expires_at=member.membership_expires_at,
            has_subscription=bool(member.stripe_subscription_id),
            cancel_at_period_end=member.cancel_at_period_end,
            trial_ends_at=cutoff,
            on_trial=member.status == MemberStatus.APPROVED.value and is_future(cutoff, now),
            annual_fee=policy.fee_for_level(level),
            currency=policy.currency,
        )

    async def sync_member(
        self, db: AsyncSession, member: MemberProfile, log: ContextualLogger
    ) -> schemas.MembershipState:
        """Reconcile one member now, raising if Stripe could not be reached."""
        state = await self.reconciler.reconcile(db, user_id=member.id, log=log)
        if state is None:
            raise ProviderTransientError("Could not sync with the billing provider")
        return state

    async def cancel(
        self,
        db: AsyncSession,
        member: MemberProfile,
        cancel_immediately: bool,
        log: ContextualLogger,
    ) -> schemas.MembershipState:
        """Cancel at period end (access kept) or immediately (access ends now)."""
        subscription_id = self._require_subscription(member)
        log = log.with_context(user_id=str(member.id), stripe_subscription_id=subscription_id)

        if not cancel_immediately:
            await self.gateway.cancel_subscription(subscription_id, immediate=False)
            log.info("Subscription set to cancel at period end")
            state = await self.sync_member(db, member, log)
        else:
            try:
                await self.gateway.cancel_subscription(subscription_id, immediate=True)
            except ProviderNotFoundError:
                log.info("Subscription already gone upstream")
            async with UnitOfWork(db) as uow:
                await self.repository.update_member(
                    db,
                    member,
                    {
                        "stripe_subscription_id": None,
                        "cancel_at_period_end": False,
                        "membership_expires_at": self.clock(),
                        "status": MemberStatus.EXPIRED,
                    },
                    uow=uow,
                )
            log.info("Subscription canceled immediately, membership expired")
            state = schemas.MembershipState(
                status=MemberStatus.EXPIRED,
                membership_expires_at=member.membership_expires_at,
            )

        await self.reconciler.publish(
            MemberEventType.SUBSCRIPTION_CANCELED,
            member.id,
            log,
            stripe_subscription_id=subscription_id,
            immediate=cancel_immediately,
        )
        return state

    async def undo_cancel(
        self, db: AsyncSession, member: MemberProfile, log: ContextualLogger
    ) -> schemas.MembershipState:
        """Clear a scheduled cancellation."""
        subscription_id = self._require_subscription(member)
        if not member.cancel_at_period_end:
            raise ValidationException("Subscription is not scheduled to cancel")

        await self.gateway.update_subscription(subscription_id, cancel_at_period_end=False)
        log.with_context(stripe_subscription_id=subscription_id).info(
            "Scheduled cancellation removed"
        )
        return await self.sync_member(db, member, log)

    async def create_portal_session(
        self,
        member: MemberProfile,
        request: schemas.CustomerPortalRequest,
    ) -> schemas.CustomerPortalResponse:
        """Open the Stripe customer portal for the member."""
        if not self.gateway.is_configured:
            raise BillingConfigurationError()
        if not member.stripe_customer_id:
            raise ValidationException("No billing account for this member")
        url = await self.gateway.create_portal_session(
            customer_id=member.stripe_customer_id,
            return_url=request.return_url or f"{settings.app_url}/membership",
        )
        return schemas.CustomerPortalResponse(portal_url=url)

    async def change_status(
        self,
        db: AsyncSession,
        member: MemberProfile,
        new_status: MemberStatus,
        log: ContextualLogger,
    ) -> MemberProfile:
        """Admin approval or rejection."""
        if new_status not in ADMIN_SETTABLE_STATUSES:
            raise ValidationException(
                "Admins can only approve or reject members", status=new_status.value
            )

        previous_status = MemberStatus(member.status)
        if previous_status == new_status:
            return member

        async with UnitOfWork(db) as uow:
            await self.repository.update_member(db, member, {"status": new_status}, uow=uow)
        log.with_context(user_id=str(member.id)).info(
            f"Status changed {previous_status.value} -> {new_status.value}"
        )

        if new_status == MemberStatus.APPROVED:
            await self.reconciler.publish(
                MemberEventType.MEMBER_APPROVED, member.id, log, source="admin"
            )
        return member

    async def change_level(
        self,
        db: AsyncSession,
        member: MemberProfile,
        new_level: MembershipLevel,
        log: ContextualLogger,
    ) -> MemberProfile:
        """Change a member's level, re-pricing any live subscription.

        If the in-place price swap fails for any reason the subscription is
        canceled outright and the member falls back to the stored expiry.
        """
        log = log.with_context(user_id=str(member.id), membership_level=new_level.value)
        if MembershipLevel(member.membership_level) == new_level:
            return member

        subscription_id = member.stripe_subscription_id
        if not subscription_id or not self.gateway.is_configured:
            if subscription_id:
                log.warning("Billing not configured, subscription price left unchanged")
            await self.repository.update_member(db, member, {"membership_level": new_level})
            return member

        policy = await self.settings_provider.get_policy(db)
        try:
            price_id = await self.gateway.create_price(
                PriceSpec(
                    amount_cents=to_minor_units(policy.fee_for_level(new_level)),
                    currency=policy.currency,
                    product_name=f"{settings.MEMBERSHIP_PRODUCT_NAME} ({new_level.value})",
                )
            )
            await self.gateway.update_subscription(subscription_id, price_id=price_id)
        except BillingProviderError as e:
            log.warning(f"Price swap failed, canceling subscription {subscription_id}: {e}")
            await self._cancel_after_failed_swap(db, member, new_level, subscription_id, log)
            return member

        await self.repository.update_member(db, member, {"membership_level": new_level})
        log.info(f"Subscription re-priced to {price_id}")
        await self.reconciler.reconcile(db, user_id=member.id, log=log)
        return member

    async def _cancel_after_failed_swap(
        self,
        db: AsyncSession,
        member: MemberProfile,
        new_level: MembershipLevel,
        subscription_id: str,
        log: ContextualLogger,
    ) -> None:
        try:
            await self.gateway.cancel_subscription(subscription_id, immediate=True)
        except BillingProviderError as e:
            log.error(f"Could not cancel subscription after failed price swap: {e}")

        async with UnitOfWork(db) as uow:
            await self.repository.update_member(
                db,
                member,
                {
                    "membership_level": new_level,
                    "stripe_subscription_id": None,
                    "cancel_at_period_end": False,
                    "status": status_from_expiry(member, self.clock()),
                },
                uow=uow,
            )
        await self.reconciler.publish(
            MemberEventType.SUBSCRIPTION_CANCELED,
            member.id,
            log,
            stripe_subscription_id=subscription_id,
            reason="level_change",
        )

    async def sync(
        self,
        db: AsyncSession,
        request: schemas.SyncSubscriptionsRequest,
        log: ContextualLogger,
    ) -> schemas.SyncSummary:
        """Admin-triggered reconciliation of one member or every subscribed member."""
        if not request.all:
            state = await self.reconciler.reconcile(
                db,
                user_id=request.user_id,
                subscription_id=request.subscription_id,
                log=log,
            )
            ok = state is not None
            return schemas.SyncSummary(successful=int(ok), failed=int(not ok), total=1)

        members = await self.repository.list_subscribed_members(db)
        summary = schemas.SyncSummary(total=len(members))
        for member in members:
            if await self._sync_with_retries(db, member, log):
                summary.successful += 1
            else:
                summary.failed += 1

        log.info(
            f"Synced {summary.total} subscriptions: "
            f"{summary.successful} ok, {summary.failed} failed"
        )
        return summary

    async def _sync_with_retries(
        self, db: AsyncSession, member: MemberProfile, log: ContextualLogger
    ) -> bool:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.sync_max_attempts),
                wait=wait_exponential(multiplier=self.sync_wait_seconds, max=10),
                retry=retry_if_result(lambda state: state is None),
            ):
                with attempt:
                    state = await self.reconciler.reconcile(db, user_id=member.id, log=log)
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(state)
        except RetryError:
            log.with_context(user_id=str(member.id)).warning(
                f"Giving up after {self.sync_max_attempts} attempts"
            )
            return False
        except ClubhouseException as e:
            log.with_context(user_id=str(member.id)).error(f"Sync failed: {e.message}")
            return False
        except Exception as e:
            log.with_context(user_id=str(member.id)).error(
                f"Unexpected error syncing member: {e}", exc_info=True
            )
            return False
        return True
