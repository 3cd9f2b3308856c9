"""
Token and caller identity schemas.
User accounts live in the external auth service; only the token claims are seen here.
"""
from datetime import datetime

from pydantic import BaseModel


class TokenPayload(BaseModel):
    """Schema for JWT token payload."""

    sub: str  # User ID
    name: str = ""
    exp: datetime


class Actor(BaseModel):
    """The authenticated caller, as recorded in created_by and the activity log."""

    user_id: str
    name: str = ""
