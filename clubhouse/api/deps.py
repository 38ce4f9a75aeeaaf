"""Dependencies that are used in the API endpoints."""

import uuid
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.api.context import ApiContext
from clubhouse.core.config import settings
from clubhouse.core.exceptions import PermissionException
from clubhouse.core.logging import ContextualLogger, logger
from clubhouse.db.session import get_db
from clubhouse.integrations.stripe_client import StripeBillingGateway, stripe_gateway
from clubhouse.models import MemberProfile
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.checkout import CheckoutService
from clubhouse.platform.billing.expiry_sweeper import ExpirySweeper
from clubhouse.platform.billing.manual_payments import ManualPaymentRecorder
from clubhouse.platform.billing.settings_provider import (
    MembershipSettingsProvider,
    membership_settings,
)
from clubhouse.platform.billing.subscription_management import SubscriptionManager

__all__ = ["get_db"]


def _parse_member_id(x_member_id: Optional[str]) -> UUID:
    if not x_member_id:
        raise HTTPException(status_code=401, detail="No valid authentication provided")
    try:
        return UUID(x_member_id)
    except ValueError as e:
        raise HTTPException(status_code=401, detail="Malformed member identity") from e


async def get_current_member(
    db: AsyncSession = Depends(get_db),
    x_member_id: Optional[str] = Header(None, alias="X-Member-ID"),
) -> MemberProfile:
    """Load the calling member from the identity asserted by the auth gateway.

    Session issuance happens upstream; this service trusts the forwarded
    ``X-Member-ID`` header.
    """
    member = await MembershipRepository().get_member(db, _parse_member_id(x_member_id))
    if member is None:
        raise HTTPException(status_code=401, detail="Unknown member")
    return member


async def get_context(
    request: Request,
    member: MemberProfile = Depends(get_current_member),
) -> ApiContext:
    """Create unified API context for the request.

    Args:
    ----
        request (Request): The FastAPI request object.
        member (MemberProfile): The calling member.

    Returns:
    -------
        ApiContext: Unified API context with auth and logging.

    """
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    member_schema = schemas.MemberProfile.model_validate(member, from_attributes=True)

    base_logger = logger.with_context(
        request_id=request_id,
        user_id=str(member_schema.id),
        user_role=member_schema.role.value,
        auth_method="gateway",
        context_base="api",
    )

    return ApiContext(
        request_id=request_id,
        member=member_schema,
        auth_method="gateway",
        logger=base_logger,
    )


async def require_admin(ctx: ApiContext = Depends(get_context)) -> ApiContext:
    """Context for admin-only endpoints."""
    if not ctx.is_admin:
        ctx.logger.warning("Non-admin attempted an admin operation")
        raise PermissionException("Admin role required")
    return ctx


async def get_logger(ctx: ApiContext = Depends(get_context)) -> ContextualLogger:
    """Get a logger with the current authentication context."""
    return ctx.logger


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Guard scheduler endpoints with ``Authorization: Bearer <CRON_SECRET>`` when set."""
    if not settings.CRON_SECRET:
        return
    if authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Invalid scheduler credentials")


def get_billing_gateway() -> StripeBillingGateway:
    """Stripe gateway singleton."""
    return stripe_gateway


def get_settings_provider() -> MembershipSettingsProvider:
    """Membership settings provider singleton."""
    return membership_settings


def get_checkout_service(
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
) -> CheckoutService:
    """Checkout service bound to the gateway."""
    return CheckoutService(gateway=gateway)


def get_subscription_manager(
    gateway: StripeBillingGateway = Depends(get_billing_gateway),
) -> SubscriptionManager:
    """Subscription manager bound to the gateway."""
    return SubscriptionManager(gateway=gateway)


def get_manual_payment_recorder() -> ManualPaymentRecorder:
    """Manual payment recorder."""
    return ManualPaymentRecorder()


def get_expiry_sweeper() -> ExpirySweeper:
    """Expiry sweeper using the configured exempt roles."""
    return ExpirySweeper()
