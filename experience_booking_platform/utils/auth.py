"""
JWT utilities resolving the caller's business.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from ..config import get_settings


class TokenData(BaseModel):
    """Token data model for JWT payload."""
    subject: Optional[str] = None
    business_id: Optional[str] = None


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode; staff tokens carry `sub` and `business_id`
        expires_delta: Optional custom expiration time

    Returns:
        The encoded JWT token
    """
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def verify_token(token: str) -> Optional[TokenData]:
    """
    Verify and decode a JWT token.

    Returns:
        TokenData if token is valid and names a business, None otherwise
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None

    business_id = payload.get("business_id")
    if business_id is None:
        return None

    return TokenData(subject=payload.get("sub"), business_id=str(business_id))
