"""Unit tests for cancel, resume, level change and bulk sync."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from clubhouse import schemas
from clubhouse.core.exceptions import (
    BillingConfigurationError,
    ProviderNotFoundError,
    ProviderTransientError,
    ValidationException,
)
from clubhouse.core.logging import logger
from clubhouse.platform.billing.reconciliation import SubscriptionReconciler
from clubhouse.platform.billing.subscription_management import SubscriptionManager
from clubhouse.schemas import MemberEventType, MembershipLevel, MemberStatus
from tests.fixtures.common import FIXED_NOW, build_subscription, published_types


@pytest.fixture
def manager(repository, mock_gateway, mock_settings_provider, reconciler, clock):
    """Create a subscription manager wired to the in-memory fakes."""
    return SubscriptionManager(
        repository=repository,
        gateway=mock_gateway,
        settings_provider=mock_settings_provider,
        reconciler=reconciler,
        clock=clock,
        sync_max_attempts=3,
        sync_wait_seconds=0,
    )


@pytest.fixture
def subscribed_member(make_member):
    """An approved member with a live subscription."""
    return make_member(
        status=MemberStatus.APPROVED,
        membership_expires_at=FIXED_NOW + timedelta(days=200),
        stripe_subscription_id="sub_123",
        stripe_customer_id="cus_123",
    )


class TestCancel:
    """Tests for SubscriptionManager.cancel."""

    @pytest.mark.asyncio
    async def test_cancel_at_period_end_keeps_access(
        self, mock_db, manager, subscribed_member, mock_gateway, mock_publisher
    ):
        """Access continues and the cancel flag is mirrored from Stripe."""
        mock_gateway.retrieve_subscription.return_value = build_subscription(
            cancel_at_period_end=True
        )

        state = await manager.cancel(mock_db, subscribed_member, False, logger)

        mock_gateway.cancel_subscription.assert_awaited_once_with("sub_123", immediate=False)
        assert state.status == MemberStatus.APPROVED
        assert subscribed_member.cancel_at_period_end is True
        assert subscribed_member.stripe_subscription_id == "sub_123"
        assert published_types(mock_publisher) == [MemberEventType.SUBSCRIPTION_CANCELED]

    @pytest.mark.asyncio
    async def test_cancel_immediately_expires_now(
        self, mock_db, manager, subscribed_member, mock_gateway
    ):
        """Immediate cancellation ends access and unlinks the subscription."""
        state = await manager.cancel(mock_db, subscribed_member, True, logger)

        mock_gateway.cancel_subscription.assert_awaited_once_with("sub_123", immediate=True)
        assert state.status == MemberStatus.EXPIRED
        assert subscribed_member.status == "expired"
        assert subscribed_member.stripe_subscription_id is None
        assert subscribed_member.membership_expires_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_cancel_immediately_tolerates_missing_subscription(
        self, mock_db, manager, subscribed_member, mock_gateway
    ):
        """A subscription already gone upstream is still unlinked locally."""
        mock_gateway.cancel_subscription.side_effect = ProviderNotFoundError()

        state = await manager.cancel(mock_db, subscribed_member, True, logger)

        assert state.status == MemberStatus.EXPIRED
        assert subscribed_member.stripe_subscription_id is None

    @pytest.mark.asyncio
    async def test_cancel_without_subscription(self, mock_db, manager, make_member):
        """Members without a subscription get a validation error."""
        with pytest.raises(ValidationException):
            await manager.cancel(mock_db, make_member(), False, logger)

    @pytest.mark.asyncio
    async def test_cancel_not_configured(
        self, mock_db, manager, subscribed_member, mock_gateway
    ):
        """Without Stripe credentials cancellation reports a configuration error."""
        mock_gateway.is_configured = False

        with pytest.raises(BillingConfigurationError):
            await manager.cancel(mock_db, subscribed_member, False, logger)


class TestUndoCancel:
    """Tests for SubscriptionManager.undo_cancel."""

    @pytest.mark.asyncio
    async def test_resume_clears_flag(self, mock_db, manager, subscribed_member, mock_gateway):
        """Resuming clears the flag at Stripe and then locally."""
        subscribed_member.cancel_at_period_end = True
        mock_gateway.retrieve_subscription.return_value = build_subscription()

        await manager.undo_cancel(mock_db, subscribed_member, logger)

        mock_gateway.update_subscription.assert_awaited_once_with(
            "sub_123", cancel_at_period_end=False
        )
        assert subscribed_member.cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_resume_without_scheduled_cancel(self, mock_db, manager, subscribed_member):
        """There is nothing to resume unless a cancellation is scheduled."""
        with pytest.raises(ValidationException):
            await manager.undo_cancel(mock_db, subscribed_member, logger)


class TestChangeLevel:
    """Tests for SubscriptionManager.change_level."""

    @pytest.mark.asyncio
    async def test_swaps_price_in_place(
        self, mock_db, manager, subscribed_member, mock_gateway
    ):
        """A live subscription is moved to a price for the new level's fee."""
        mock_gateway.create_price.return_value = "price_student"
        mock_gateway.retrieve_subscription.return_value = build_subscription()

        await manager.change_level(mock_db, subscribed_member, MembershipLevel.STUDENT, logger)

        price = mock_gateway.create_price.await_args.args[0]
        assert price.amount_cents == 2500
        mock_gateway.update_subscription.assert_awaited_once_with(
            "sub_123", price_id="price_student"
        )
        assert subscribed_member.membership_level == "Student"
        assert subscribed_member.stripe_subscription_id == "sub_123"

    @pytest.mark.asyncio
    async def test_failed_swap_cancels_subscription(
        self, mock_db, manager, subscribed_member, mock_gateway, mock_publisher
    ):
        """When the swap fails the subscription is canceled and stored expiry applies."""
        mock_gateway.create_price.return_value = "price_full"
        mock_gateway.update_subscription.side_effect = ProviderTransientError()

        await manager.change_level(mock_db, subscribed_member, MembershipLevel.FULL, logger)

        mock_gateway.cancel_subscription.assert_awaited_once_with("sub_123", immediate=True)
        assert subscribed_member.membership_level == "Full"
        assert subscribed_member.stripe_subscription_id is None
        assert subscribed_member.status == "approved"
        assert published_types(mock_publisher) == [MemberEventType.SUBSCRIPTION_CANCELED]

    @pytest.mark.asyncio
    async def test_without_subscription_updates_locally(
        self, mock_db, manager, make_member, mock_gateway
    ):
        """Members without a subscription just change level."""
        member = make_member()

        await manager.change_level(mock_db, member, MembershipLevel.ASSOCIATE, logger)

        assert member.membership_level == "Associate"
        mock_gateway.create_price.assert_not_called()


class TestChangeStatus:
    """Tests for SubscriptionManager.change_status."""

    @pytest.mark.asyncio
    async def test_approval_emits_event(self, mock_db, manager, make_member, mock_publisher):
        """Approving a pending member emits member_approved."""
        member = make_member()

        await manager.change_status(mock_db, member, MemberStatus.APPROVED, logger)

        assert member.status == "approved"
        assert published_types(mock_publisher) == [MemberEventType.MEMBER_APPROVED]

    @pytest.mark.asyncio
    async def test_repeat_approval_is_silent(self, mock_db, manager, make_member, mock_publisher):
        """Approving an approved member emits nothing."""
        member = make_member(status=MemberStatus.APPROVED)

        await manager.change_status(mock_db, member, MemberStatus.APPROVED, logger)

        assert published_types(mock_publisher) == []

    @pytest.mark.asyncio
    async def test_expired_is_not_admin_settable(self, mock_db, manager, make_member):
        """Only approve and reject are available to admins."""
        with pytest.raises(ValidationException):
            await manager.change_status(mock_db, make_member(), MemberStatus.EXPIRED, logger)


class TestSync:
    """Tests for SubscriptionManager.sync."""

    @pytest.mark.asyncio
    async def test_sync_all_tallies_partial_failure(
        self, mock_db, repository, mock_gateway, mock_settings_provider, make_member, clock
    ):
        """One member that never syncs is counted as failed without aborting the run."""
        healthy = make_member(stripe_subscription_id="sub_ok", stripe_customer_id="cus_1")
        broken = make_member(stripe_subscription_id="sub_broken", stripe_customer_id="cus_2")
        state = schemas.MembershipState(status=MemberStatus.APPROVED)

        async def reconcile(db, user_id=None, subscription_id=None, log=None):
            return state if user_id == healthy.id else None

        reconciler = MagicMock(spec=SubscriptionReconciler)
        reconciler.reconcile = AsyncMock(side_effect=reconcile)
        manager = SubscriptionManager(
            repository=repository,
            gateway=mock_gateway,
            settings_provider=mock_settings_provider,
            reconciler=reconciler,
            clock=clock,
            sync_max_attempts=2,
            sync_wait_seconds=0,
        )

        summary = await manager.sync(mock_db, schemas.SyncSubscriptionsRequest(all=True), logger)

        assert (summary.successful, summary.failed, summary.total) == (1, 1, 2)
        broken_calls = [
            c for c in reconciler.reconcile.await_args_list if c.kwargs["user_id"] == broken.id
        ]
        assert len(broken_calls) == 2

    @pytest.mark.asyncio
    async def test_sync_all_retries_transient_failure(
        self, mock_db, manager, subscribed_member, mock_gateway
    ):
        """A member that fails once and then succeeds counts as synced."""
        mock_gateway.retrieve_subscription.side_effect = [
            ProviderTransientError(),
            build_subscription(),
        ]

        summary = await manager.sync(mock_db, schemas.SyncSubscriptionsRequest(all=True), logger)

        assert (summary.successful, summary.failed, summary.total) == (1, 0, 1)

    @pytest.mark.asyncio
    async def test_sync_single_member(self, mock_db, manager, subscribed_member, mock_gateway):
        """A single-member sync reports one success."""
        mock_gateway.retrieve_subscription.return_value = build_subscription()

        summary = await manager.sync(
            mock_db, schemas.SyncSubscriptionsRequest(user_id=subscribed_member.id), logger
        )

        assert (summary.successful, summary.failed, summary.total) == (1, 0, 1)

    def test_sync_request_requires_target(self):
        """A sync request must name a member, a subscription, or all."""
        with pytest.raises(ValueError):
            schemas.SyncSubscriptionsRequest()

    def test_sync_request_rejects_two_targets(self):
        """A member and a subscription together are ambiguous."""
        with pytest.raises(ValueError):
            schemas.SyncSubscriptionsRequest(user_id=uuid4(), subscription_id="sub_123")

    @pytest.mark.asyncio
    async def test_sync_all_counts_unexpected_error_as_failed(
        self, mock_db, repository, mock_gateway, mock_settings_provider, make_member, clock
    ):
        """A database error for one member does not abort the run."""
        broken = make_member(stripe_subscription_id="sub_broken", stripe_customer_id="cus_1")
        make_member(stripe_subscription_id="sub_ok", stripe_customer_id="cus_2")
        state = schemas.MembershipState(status=MemberStatus.APPROVED)

        async def reconcile(db, user_id=None, subscription_id=None, log=None):
            if user_id == broken.id:
                raise OperationalError("SELECT 1", {}, Exception("connection lost"))
            return state

        reconciler = MagicMock(spec=SubscriptionReconciler)
        reconciler.reconcile = AsyncMock(side_effect=reconcile)
        manager = SubscriptionManager(
            repository=repository,
            gateway=mock_gateway,
            settings_provider=mock_settings_provider,
            reconciler=reconciler,
            clock=clock,
            sync_max_attempts=2,
            sync_wait_seconds=0,
        )

        summary = await manager.sync(mock_db, schemas.SyncSubscriptionsRequest(all=True), logger)

        assert (summary.successful, summary.failed, summary.total) == (1, 1, 2)


class TestGetStatus:
    """Tests for SubscriptionManager.get_status."""

    @pytest.mark.asyncio
    async def test_approved_member_before_cutoff_is_on_trial(self, mock_db, manager, make_member):
        """An approved Full member ahead of the September cutoff is on trial."""
        member = make_member(membership_level=MembershipLevel.FULL, status=MemberStatus.APPROVED)

        status = await manager.get_status(mock_db, member)

        assert status.on_trial is True
        assert status.trial_ends_at == datetime(2025, 9, 1, 12, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("member_status", [MemberStatus.PENDING, MemberStatus.REJECTED])
    async def test_unapproved_member_is_not_on_trial(
        self, mock_db, manager, make_member, member_status
    ):
        """Pending and rejected members have a cutoff but no trial."""
        member = make_member(membership_level=MembershipLevel.FULL, status=member_status)

        status = await manager.get_status(mock_db, member)

        assert status.on_trial is False
        assert status.trial_ends_at is not None
