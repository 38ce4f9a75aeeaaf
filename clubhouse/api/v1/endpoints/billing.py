"""API endpoints for member billing operations.

This module provides the HTTP interface for billing operations,
delegating all business logic to the billing services.
"""

from typing import Optional

from fastapi import Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.api import deps
from clubhouse.api.context import ApiContext
from clubhouse.api.router import TrailingSlashRouter
from clubhouse.core.exceptions import BillingConfigurationError, ValidationException
from clubhouse.core.logging import logger
from clubhouse.integrations.stripe_client import StripeBillingGateway
from clubhouse.models import MemberProfile
from clubhouse.platform.billing.checkout import CheckoutService
from clubhouse.platform.billing.subscription_management import SubscriptionManager
from clubhouse.platform.billing.webhook_handler import BillingWebhookProcessor

router = TrailingSlashRouter()


@router.post("/checkout-session", response_model=schemas.CheckoutSessionResponse)
async def create_checkout_session(
    request: schemas.CheckoutSessionRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    member: MemberProfile = Depends(deps.get_current_member),
    checkout: CheckoutService = Depends(deps.get_checkout_service),
) -> schemas.CheckoutSessionResponse:
    """Create a Stripe checkout session for the member's annual membership.

    The price is the current fee for the member's level. When the member's
    trial cutoff is more than 48 hours away it becomes the trial end, so the
    first charge lands on the cutoff.
    """
    return await checkout.start_checkout(db, member, request, ctx.logger)


@router.post("/confirm-checkout", response_model=schemas.ConfirmCheckoutResponse)
async def confirm_checkout(
    request: schemas.ConfirmCheckoutRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    member: MemberProfile = Depends(deps.get_current_member),
    checkout: CheckoutService = Depends(deps.get_checkout_service),
) -> schemas.ConfirmCheckoutResponse:
    """Apply a completed checkout right after the redirect back from Stripe.

    Covers the window before the webhook arrives. Calling it again, or after
    the webhook, returns ``already_applied=true``.
    """
    return await checkout.confirm_checkout(db, member, request, ctx.logger)


@router.get("/subscription", response_model=schemas.SubscriptionStatusResponse)
async def get_subscription(
    db: AsyncSession = Depends(deps.get_db),
    member: MemberProfile = Depends(deps.get_current_member),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.SubscriptionStatusResponse:
    """Get the member's membership, trial and fee information."""
    return await manager.get_status(db, member)


@router.post("/sync", response_model=schemas.MembershipState)
async def sync_my_subscription(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    member: MemberProfile = Depends(deps.get_current_member),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.MembershipState:
    """Re-read the member's subscription from Stripe."""
    return await manager.sync_member(db, member, ctx.logger)


@router.post("/cancel", response_model=schemas.MembershipState)
async def cancel_subscription(
    request: schemas.CancelSubscriptionRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    member: MemberProfile = Depends(deps.get_current_member),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.MembershipState:
    """Cancel the member's subscription.

    By default access continues until the current expiry. With
    ``cancel_immediately`` the membership expires now.
    """
    return await manager.cancel(db, member, request.cancel_immediately, ctx.logger)


@router.post("/resume", response_model=schemas.MembershipState)
async def resume_subscription(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    member: MemberProfile = Depends(deps.get_current_member),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.MembershipState:
    """Undo a scheduled cancellation."""
    return await manager.undo_cancel(db, member, ctx.logger)


@router.post("/portal-session", response_model=schemas.CustomerPortalResponse)
async def create_portal_session(
    request: schemas.CustomerPortalRequest,
    member: MemberProfile = Depends(deps.get_current_member),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.CustomerPortalResponse:
    """Create a Stripe customer portal session (payment methods, invoices)."""
    return await manager.create_portal_session(member, request)


@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(deps.get_db),
    gateway: StripeBillingGateway = Depends(deps.get_billing_gateway),
) -> Response:
    """Handle Stripe webhook events.

    The signature is verified before any field of the payload is read.

    Returns:
        200 when handled or ignored, 400 on a bad signature, 503 when no
        webhook secret is configured, 500 when processing failed (Stripe
        redelivers).
    """
    payload = await request.body()

    try:
        event = gateway.verify_webhook_signature(payload, stripe_signature)
    except BillingConfigurationError:
        logger.error("Received Stripe webhook but no webhook secret is configured")
        return Response(status_code=503)
    except ValidationException as e:
        logger.warning(f"Rejected Stripe webhook: {e.message}")
        return Response(status_code=400)

    try:
        processor = BillingWebhookProcessor(db, gateway=gateway)
        await processor.process_event(event)
        return Response(status_code=200)
    except Exception:
        return Response(status_code=500)
