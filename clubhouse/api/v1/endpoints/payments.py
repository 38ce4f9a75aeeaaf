"""API endpoints for the payment ledger."""

from typing import List, Optional
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.api import deps
from clubhouse.api.context import ApiContext
from clubhouse.api.router import TrailingSlashRouter
from clubhouse.platform.billing.billing_data_access import MembershipRepository
from clubhouse.platform.billing.manual_payments import ManualPaymentRecorder

router = TrailingSlashRouter()


@router.get("/me", response_model=List[schemas.PaymentRecord])
async def list_my_payments(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
) -> List[schemas.PaymentRecord]:
    """List the calling member's payments, newest first."""
    return await MembershipRepository().list_payments(db, user_id=ctx.member_id)


@router.get("", response_model=List[schemas.PaymentRecord])
async def list_payments(
    user_id: Optional[UUID] = Query(None, description="Only payments for this member"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
) -> List[schemas.PaymentRecord]:
    """List payments for all members or one member (admin only)."""
    return await MembershipRepository().list_payments(db, user_id=user_id, skip=skip, limit=limit)


@router.post("/manual", response_model=schemas.RecordPaymentResponse)
async def record_manual_payment(
    request: schemas.RecordPaymentRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.require_admin),
    recorder: ManualPaymentRecorder = Depends(deps.get_manual_payment_recorder),
) -> schemas.RecordPaymentResponse:
    """Record a cash, wire or other payment and approve the member (admin only).

    The expiry defaults to one year from now and the amount to the member's
    level fee. Unless ``clear_external_subscription`` is false, the member's
    Stripe subscription link is cleared.
    """
    return await recorder.record(db, request, recorded_by=ctx.member_id, log=ctx.logger)
