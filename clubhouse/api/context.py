"""Unified application context for API requests.

Combines the calling member, request metadata and a pre-configured logger
into a single injectable dependency.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict

from clubhouse import schemas
from clubhouse.core.logging import ContextualLogger


class ApiContext(BaseModel):
    """Unified context for API requests."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Request metadata
    request_id: str

    # Authentication context, asserted by the upstream gateway
    member: schemas.MemberProfile
    auth_method: str

    # Contextual logger with all dimensions pre-configured
    logger: ContextualLogger

    @property
    def member_id(self) -> UUID:
        """ID of the calling member."""
        return self.member.id

    @property
    def is_admin(self) -> bool:
        """Whether the caller holds the admin role."""
        return self.member.role == schemas.MemberRole.ADMIN

    def __str__(self) -> str:
        """String representation for logging."""
        return (
            f"ApiContext(request_id={self.request_id[:8]}..., "
            f"method={self.auth_method}, member={self.member.email})"
        )

