"""Member profile schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MembershipLevel(str, Enum):
    """Membership levels."""

    FULL = "Full"
    STUDENT = "Student"
    ASSOCIATE = "Associate"
    CORPORATE = "Corporate"
    HONORARY = "Honorary"


class MemberStatus(str, Enum):
    """Member approval status."""

    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"
    REJECTED = "rejected"


class MemberRole(str, Enum):
    """Member roles."""

    MEMBER = "member"
    ADMIN = "admin"


class MemberProfileBase(BaseModel):
    """Member profile base schema."""

    email: str = Field(..., description="Member email address")
    full_name: Optional[str] = Field(None, description="Display name")
    role: MemberRole = Field(default=MemberRole.MEMBER)
    membership_level: MembershipLevel = Field(default=MembershipLevel.FULL)


class MemberProfileCreate(MemberProfileBase):
    """Member profile creation schema. New members always start pending."""

    status: MemberStatus = MemberStatus.PENDING


class MemberProfileUpdate(BaseModel):
    """Member profile update schema."""

    full_name: Optional[str] = None
    membership_level: Optional[MembershipLevel] = None
    status: Optional[MemberStatus] = None
    membership_expires_at: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    cancel_at_period_end: Optional[bool] = None


class MemberProfile(MemberProfileBase):
    """Member profile as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: MemberStatus
    membership_expires_at: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    cancel_at_period_end: bool = False
    created_at: datetime
    modified_at: Optional[datetime] = None


class MembershipState(BaseModel):
    """Canonical status/expiry pair produced by reconciliation."""

    status: MemberStatus
    membership_expires_at: Optional[datetime] = None
