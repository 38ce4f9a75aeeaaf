"""Base models for the application."""

import uuid

from sqlalchemy import UUID, Column, DateTime
from sqlalchemy.orm import DeclarativeBase

from clubhouse.core.datetime_utils import utc_now


class Base(DeclarativeBase):
    """Base class for all models."""

    id = Column(UUID, primary_key=True, default=uuid.uuid4, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    modified_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
