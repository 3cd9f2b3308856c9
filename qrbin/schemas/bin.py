"""
Bin-related Pydantic schemas for request/response validation.
Size limits are enforced by BinService so that direct service callers get them too.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from qrbin.models.bin import BinState


class BinCreate(BaseModel):
    """Schema for bin creation."""

    location_id: str
    name: str
    area_id: Optional[str] = None
    items: List[str] = Field(default_factory=list)
    notes: str = ""
    tags: List[str] = Field(default_factory=list)
    icon: str = ""
    color: str = ""
    short_code: Optional[str] = Field(
        None, description="Preferred short code (e.g. already printed on a label)"
    )


class BinUpdate(BaseModel):
    """Schema for updating a bin. Only supplied fields are applied."""

    name: Optional[str] = None
    area_id: Optional[str] = None
    items: Optional[List[str]] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    icon: Optional[str] = None
    color: Optional[str] = None


class AddTagsRequest(BaseModel):
    """Schema for adding tags to a bin."""

    tags: List[str] = Field(..., min_length=1)


class BinResponse(BaseModel):
    """Schema for bin response, with the area name resolved."""

    id: str
    location_id: str
    name: str
    area_id: Optional[str] = None
    area_name: str = ""
    items: List[str]
    notes: str
    tags: List[str]
    icon: str
    color: str
    short_code: str
    state: BinState
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
