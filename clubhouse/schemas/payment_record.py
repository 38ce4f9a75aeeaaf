"""Payment ledger schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentMethod(str, Enum):
    """How a payment was made."""

    SUBSCRIPTION = "subscription"
    CASH = "cash"
    WIRE = "wire"
    OTHER = "other"


MANUAL_PAYMENT_METHODS = frozenset({PaymentMethod.CASH, PaymentMethod.WIRE, PaymentMethod.OTHER})


class PaymentStatus(str, Enum):
    """Ledger row status."""

    COMPLETED = "completed"
    FAILED = "failed"


class PaymentRecordCreate(BaseModel):
    """Payment record creation schema."""

    user_id: UUID
    method: PaymentMethod
    amount: Decimal = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    payment_date: datetime
    expires_at_snapshot: Optional[datetime] = None
    stripe_subscription_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    recorded_by: Optional[UUID] = None
    notes: Optional[str] = None
    status: PaymentStatus = PaymentStatus.COMPLETED


class PaymentRecord(PaymentRecordCreate):
    """Payment record as stored. Never mutated after insert."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
