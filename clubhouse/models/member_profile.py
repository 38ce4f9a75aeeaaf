"""Member profile model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from clubhouse.models._base import Base


class MemberProfile(Base):
    """Community member with level, approval status and subscription linkage."""

    __tablename__ = "member_profile"

    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String(20), default="member", nullable=False)

    membership_level: Mapped[str] = mapped_column(String(50), default="Full", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    membership_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Stripe IDs
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "stripe_subscription_id IS NULL OR stripe_customer_id IS NOT NULL",
            name="ck_member_profile_subscription_has_customer",
        ),
        Index("idx_member_profile_stripe_subscription", "stripe_subscription_id"),
        Index("idx_member_profile_status_expires", "status", "membership_expires_at"),
    )
