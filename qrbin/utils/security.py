"""
JWT token helpers.
Tokens are issued by the external auth service; this API only verifies them.
create_access_token exists for local development and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from qrbin.config import get_settings
from qrbin.schemas.user import TokenPayload

settings = get_settings()


def create_access_token(
    user_id: str,
    name: str = "",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User ID to encode in the token
        name: Display name (``name`` claim, used in activity entries)
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    expire = datetime.now(timezone.utc) + expires_delta

    to_encode = {
        "sub": str(user_id),  # JWT subject must be a string
        "name": name,
        "exp": expire,
    }

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> Optional[TokenPayload]:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string

    Returns:
        TokenPayload if valid, None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )

        user_id = payload.get("sub")
        exp = payload.get("exp")

        if not user_id or exp is None:
            return None

        return TokenPayload(
            sub=str(user_id),
            name=payload.get("name") or "",
            exp=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    except JWTError:
        return None
