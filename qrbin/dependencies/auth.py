"""
Authentication and location access dependencies for FastAPI.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.models.location import Location
from qrbin.schemas.user import Actor
from qrbin.services.location import LocationService
from qrbin.utils.security import decode_access_token

logger = logging.getLogger("qrbin.auth")

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    """
    Dependency to get the authenticated caller from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid, or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        logger.warning("Auth failed", extra={"event": "auth", "reason": "no_token"})
        raise credentials_exception

    token_payload = decode_access_token(credentials.credentials)
    if token_payload is None:
        logger.warning("Auth failed", extra={"event": "auth", "reason": "invalid_or_expired_token"})
        raise credentials_exception

    return Actor(user_id=token_payload.sub, name=token_payload.name)


async def ensure_location_member(db: AsyncSession, location_id: str, actor: Actor) -> None:
    """
    Check that the caller belongs to the location.

    Raises:
        HTTPException: 404 if the location does not exist, 403 if the caller is not a member
    """
    service = LocationService(db)
    if not await service.is_member(location_id, actor.user_id):
        if await db.get(Location, location_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")
        logger.warning(
            "Location access denied",
            extra={"event": "auth", "reason": "not_member", "location_id": location_id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this location",
        )
