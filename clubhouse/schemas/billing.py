"""Request and response schemas for the billing surfaces."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from clubhouse.schemas.member_profile import MemberProfile, MembershipLevel, MemberStatus
from clubhouse.schemas.payment_record import PaymentMethod, PaymentRecord


class CheckoutSessionRequest(BaseModel):
    """Checkout session request."""

    success_url: Optional[str] = Field(None, description="Redirect after successful checkout")
    cancel_url: Optional[str] = Field(None, description="Redirect after abandoned checkout")


class CheckoutSessionResponse(BaseModel):
    """Checkout session response."""

    session_id: str
    checkout_url: Optional[str] = None


class ConfirmCheckoutRequest(BaseModel):
    """Client confirmation after returning from hosted checkout."""

    session_id: str = Field(..., min_length=1)


class ConfirmCheckoutResponse(BaseModel):
    """Checkout confirmation result."""

    ok: bool = True
    already_applied: bool = False


class CancelSubscriptionRequest(BaseModel):
    """Cancel own subscription."""

    cancel_immediately: bool = False


class CustomerPortalRequest(BaseModel):
    """Customer portal request."""

    return_url: Optional[str] = None


class CustomerPortalResponse(BaseModel):
    """Customer portal response."""

    portal_url: str


class SubscriptionStatusResponse(BaseModel):
    """Member-facing view of membership and subscription state."""

    membership_level: MembershipLevel
    status: MemberStatus
    membership_expires_at: Optional[datetime] = None
    has_subscription: bool
    cancel_at_period_end: bool
    trial_ends_at: Optional[datetime] = None
    on_trial: bool
    annual_fee: Decimal
    currency: str


class RecordPaymentRequest(BaseModel):
    """Admin-entered out-of-band payment."""

    user_id: UUID
    method: PaymentMethod
    amount: Optional[Decimal] = Field(None, ge=0)
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None
    clear_external_subscription: bool = True


class RecordPaymentResponse(BaseModel):
    """Manual payment result."""

    member: MemberProfile
    payment: PaymentRecord


class SyncSubscriptionsRequest(BaseModel):
    """Admin-triggered reconciliation target."""

    user_id: Optional[UUID] = None
    subscription_id: Optional[str] = None
    all: bool = False

    @model_validator(mode="after")
    def require_target(self) -> "SyncSubscriptionsRequest":
        """Exactly one target form must be given."""
        targets = [self.all, self.user_id is not None, bool(self.subscription_id)]
        if sum(targets) != 1:
            raise ValueError("Provide exactly one of user_id, subscription_id, or all=true")
        return self


class SyncSummary(BaseModel):
    """Tally of a reconciliation run."""

    successful: int = 0
    failed: int = 0
    total: int = 0


class SweepResult(BaseModel):
    """Outcome of an expiry sweep."""

    checked: int
    expired: int


class MemberStatusUpdateRequest(BaseModel):
    """Admin status change."""

    status: MemberStatus


class ChangeLevelRequest(BaseModel):
    """Admin membership level change."""

    membership_level: MembershipLevel
