"""
Location and area schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict


class LocationCreate(BaseModel):
    """Schema for location creation."""

    name: str = Field(..., min_length=1, max_length=100)


class LocationUpdate(BaseModel):
    """Schema for updating retention settings."""

    trash_retention_days: Optional[int] = Field(None, ge=7, le=365)
    activity_retention_days: Optional[int] = Field(None, ge=7, le=365)


class LocationResponse(BaseModel):
    """Schema for location response."""

    id: str
    name: str
    created_by: Optional[str] = None
    trash_retention_days: int
    activity_retention_days: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MemberAdd(BaseModel):
    """Schema for adding a member to a location."""

    user_id: str = Field(..., min_length=1, max_length=64)


class AreaCreate(BaseModel):
    """Schema for area creation."""

    name: str = Field(..., min_length=1, max_length=255)


class AreaResponse(BaseModel):
    """Schema for area response."""

    id: str
    location_id: str
    name: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
