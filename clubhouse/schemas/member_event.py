"""Domain events emitted by the membership core."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict
from uuid import UUID

from pydantic import BaseModel, Field

from clubhouse.core.datetime_utils import utc_now


class MemberEventType(str, Enum):
    """Kinds of member events."""

    MEMBER_APPROVED = "member_approved"
    SUBSCRIPTION_CONFIRMED = "subscription_confirmed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


class MemberEvent(BaseModel):
    """A fact about a member, published after the state change committed."""

    type: MemberEventType
    user_id: UUID
    occurred_at: datetime = Field(default_factory=utc_now)
    data: Dict[str, Any] = Field(default_factory=dict)
