"""Key/value store for admin-configurable settings."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clubhouse.models._base import Base


class AppSetting(Base):
    """A single admin-editable setting (fee per level, trial policy per level)."""

    __tablename__ = "app_setting"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
