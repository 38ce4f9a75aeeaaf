"""Payment ledger model."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clubhouse.models._base import Base


class PaymentRecord(Base):
    """Append-only record of a completed (or failed) membership payment."""

    __tablename__ = "payment_record"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_profile.id", ondelete="CASCADE"), nullable=False
    )

    method: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at_snapshot: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    recorded_by: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("member_profile.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="completed", nullable=False)

    __table_args__ = (
        # Idempotency key for subscription payments. NULL subscription ids
        # (manual payments) never collide.
        UniqueConstraint(
            "user_id", "stripe_subscription_id", name="uq_payment_record_user_subscription"
        ),
        Index("idx_payment_record_user", "user_id"),
    )
