"""Admin endpoints for managing member subscriptions."""

from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.api import deps
from clubhouse.api.context import ApiContext
from clubhouse.api.router import TrailingSlashRouter
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.subscription_management import SubscriptionManager

router = TrailingSlashRouter()


@router.post(
    "/members/{user_id}/cancel-subscription", response_model=schemas.MembershipState
)
async def cancel_member_subscription(
    user_id: UUID,
    request: schemas.CancelSubscriptionRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.MembershipState:
    """Cancel a member's subscription at period end or immediately."""
    member = await MembershipRepository().get_member_or_raise(db, user_id)
    return await manager.cancel(db, member, request.cancel_immediately, ctx.logger)


@router.patch("/members/{user_id}/status", response_model=schemas.MemberProfile)
async def update_member_status(
    user_id: UUID,
    request: schemas.MemberStatusUpdateRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.MemberProfile:
    """Approve or reject a member."""
    member = await MembershipRepository().get_member_or_raise(db, user_id)
    member = await manager.change_status(db, member, request.status, ctx.logger)
    return schemas.MemberProfile.model_validate(member, from_attributes=True)


@router.patch("/members/{user_id}/level", response_model=schemas.MemberProfile)
async def update_member_level(
    user_id: UUID,
    request: schemas.ChangeLevelRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.MemberProfile:
    """Change a member's level.

    A live subscription is re-priced in place. If that fails the subscription
    is canceled and the member keeps access until the stored expiry.
    """
    member = await MembershipRepository().get_member_or_raise(db, user_id)
    member = await manager.change_level(db, member, request.membership_level, ctx.logger)
    return schemas.MemberProfile.model_validate(member, from_attributes=True)


@router.post("/sync-subscriptions", response_model=schemas.SyncSummary)
async def sync_subscriptions(
    request: schemas.SyncSubscriptionsRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    manager: SubscriptionManager = Depends(deps.get_subscription_manager),
) -> schemas.SyncSummary:
    """Reconcile one member, one subscription, or every subscribed member."""
    return await manager.sync(db, request, ctx.logger)
