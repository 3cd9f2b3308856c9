"""
Photo-related Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PhotoResponse(BaseModel):
    """Schema for photo response."""

    id: str
    bin_id: str
    filename: str
    mime_type: str
    size: int
    created_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PhotoUploadResponse(PhotoResponse):
    """Schema for photo upload response."""

    message: str = "Photo uploaded successfully"
