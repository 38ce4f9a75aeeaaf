"""Common test fixtures."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.core.datetime_utils import ensure_utc
from clubhouse.integrations.stripe_client import (
    CheckoutSessionSnapshot,
    StripeBillingGateway,
    SubscriptionSnapshot,
)
from clubhouse.models import MemberProfile, PaymentRecord
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.reconciliation import SubscriptionReconciler
from clubhouse.platform.billing.settings_provider import MembershipSettingsProvider
from clubhouse.platform.billing.trial_policy import TrialPolicy
from clubhouse.platform.notifications import MemberEventPublisher

FIXED_NOW = datetime(2024, 10, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryMembershipRepository(MembershipRepository):
    """Membership repository backed by dicts, holding real model instances.

    Mirrors the storage rules the real tables enforce: one ledger row per
    (member, subscription) pair and the approved/expiry predicate of the sweep.
    """

    def __init__(self):
        self.members: dict[uuid.UUID, MemberProfile] = {}
        self.payments: list[PaymentRecord] = []
        self.member_writes: list[dict] = []

    def add_member(self, member: MemberProfile) -> MemberProfile:
        self.members[member.id] = member
        return member

    async def get_member(self, db, user_id):
        return self.members.get(user_id)

    async def get_member_by_subscription(self, db, stripe_subscription_id):
        for member in self.members.values():
            if member.stripe_subscription_id == stripe_subscription_id:
                return member
        return None

    async def list_subscribed_members(self, db):
        return [m for m in self.members.values() if m.stripe_subscription_id]

    async def update_member(self, db, member, updates, uow=None):
        values = {key: getattr(value, "value", value) for key, value in updates.items()}
        self.member_writes.append(values)
        for key, value in values.items():
            setattr(member, key, value)
        return member

    async def list_lapsed_members(self, db, now, exempt_roles):
        return [m for m in self.members.values() if _is_lapsed(m, now, exempt_roles)]

    async def expire_members(self, db, member_ids, now, uow=None):
        expired = 0
        for member_id in member_ids:
            member = self.members.get(member_id)
            if member is not None and _is_lapsed(member, now, ()):
                member.status = schemas.MemberStatus.EXPIRED.value
                expired += 1
        return expired

    async def get_subscription_payment(self, db, user_id, stripe_subscription_id):
        for payment in self.payments:
            if (
                payment.user_id == user_id
                and payment.stripe_subscription_id == stripe_subscription_id
            ):
                return payment
        return None

    async def create_payment(self, db, payment_in, uow=None):
        payment = PaymentRecord(
            id=uuid.uuid4(),
            created_at=FIXED_NOW,
            modified_at=FIXED_NOW,
            **payment_in.model_dump()
            | {"method": payment_in.method.value, "status": payment_in.status.value},
        )
        self.payments.append(payment)
        return payment

    async def insert_payment_if_absent(self, db, payment_in, uow):
        existing = await self.get_subscription_payment(
            db, payment_in.user_id, payment_in.stripe_subscription_id
        )
        if existing is not None:
            return None
        return await self.create_payment(db, payment_in, uow=uow)

    async def list_payments(self, db, user_id=None, skip=0, limit=100):
        rows = [p for p in self.payments if user_id is None or p.user_id == user_id]
        rows = sorted(rows, key=lambda p: p.payment_date, reverse=True)[skip : skip + limit]
        return [schemas.PaymentRecord.model_validate(row, from_attributes=True) for row in rows]


def _is_lapsed(member: MemberProfile, now: datetime, exempt_roles) -> bool:
    return (
        member.status == schemas.MemberStatus.APPROVED.value
        and member.membership_expires_at is not None
        and ensure_utc(member.membership_expires_at) < now
        and member.role not in exempt_roles
    )


def build_member(**overrides) -> MemberProfile:
    """Build a detached member profile with every column populated."""
    values = {
        "id": uuid.uuid4(),
        "email": f"{uuid.uuid4().hex[:8]}@example.org",
        "full_name": "Test Member",
        "role": schemas.MemberRole.MEMBER.value,
        "membership_level": schemas.MembershipLevel.CORPORATE.value,
        "status": schemas.MemberStatus.PENDING.value,
        "membership_expires_at": None,
        "stripe_customer_id": None,
        "stripe_subscription_id": None,
        "cancel_at_period_end": False,
        "created_at": FIXED_NOW - timedelta(days=30),
        "modified_at": FIXED_NOW - timedelta(days=30),
    }
    values.update({key: getattr(value, "value", value) for key, value in overrides.items()})
    return MemberProfile(**values)


def build_subscription(
    subscription_id: str = "sub_123",
    status: str = "active",
    period_start: Optional[datetime] = FIXED_NOW,
    period_end: Optional[datetime] = FIXED_NOW + timedelta(days=365),
    cancel_at_period_end: bool = False,
    customer_id: Optional[str] = "cus_123",
    latest_invoice_id: Optional[str] = None,
) -> SubscriptionSnapshot:
    """Build a subscription snapshot as returned by the gateway."""
    return SubscriptionSnapshot(
        id=subscription_id,
        status=status,
        customer_id=customer_id,
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=cancel_at_period_end,
        latest_invoice_id=latest_invoice_id,
    )


def build_checkout_session(
    user_id: uuid.UUID,
    session_id: str = "cs_test_123",
    subscription_id: Optional[str] = "sub_123",
    payment_status: str = "paid",
) -> CheckoutSessionSnapshot:
    """Build a completed checkout session snapshot."""
    return CheckoutSessionSnapshot(
        id=session_id,
        url=f"https://checkout.stripe.com/c/pay/{session_id}",
        status="complete",
        payment_status=payment_status,
        customer_id="cus_123",
        subscription_id=subscription_id,
        metadata={"user_id": str(user_id)},
    )


def published_types(publisher: MagicMock) -> list:
    """Event types passed to a mocked publisher, in order."""
    return [call.args[0].type for call in publisher.publish.await_args_list]


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def clock():
    """A clock frozen at ``FIXED_NOW``."""
    return lambda: FIXED_NOW


@pytest.fixture
def repository():
    """Create an in-memory membership repository."""
    return InMemoryMembershipRepository()


@pytest.fixture
def make_member(repository):
    """Factory that builds a member and stores it in the repository."""

    def _make_member(**overrides) -> MemberProfile:
        return repository.add_member(build_member(**overrides))

    return _make_member


@pytest.fixture
def mock_gateway():
    """Create a configured billing gateway with every call mocked."""
    gateway = MagicMock(spec=StripeBillingGateway)
    gateway.is_configured = True
    return gateway


@pytest.fixture
def policy():
    """Default fee schedule and trial configuration."""
    return TrialPolicy()


@pytest.fixture
def mock_settings_provider(policy):
    """Create a settings provider that always returns ``policy``."""
    provider = MagicMock(spec=MembershipSettingsProvider)
    provider.get_policy.return_value = policy
    return provider


@pytest.fixture
def mock_publisher():
    """Create a member event publisher that records events."""
    publisher = MagicMock(spec=MemberEventPublisher)
    publisher.publish = AsyncMock(return_value=True)
    return publisher


@pytest.fixture
def reconciler(repository, mock_gateway, mock_settings_provider, mock_publisher, clock):
    """Create a reconciler wired to the in-memory fakes."""
    return SubscriptionReconciler(
        repository=repository,
        gateway=mock_gateway,
        settings_provider=mock_settings_provider,
        publisher=mock_publisher,
        clock=clock,
    )
