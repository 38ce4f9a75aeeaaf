"""Schemas for the key/value settings store."""

from pydantic import BaseModel, Field


class AppSettingCreate(BaseModel):
    """Create a setting row."""

    key: str = Field(..., max_length=100)
    value: str


class AppSettingUpdate(BaseModel):
    """Update a setting value."""

    value: str
