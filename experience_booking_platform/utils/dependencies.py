"""
FastAPI dependencies for tenant resolution.
"""

from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.business import Business
from ..utils.auth import verify_token
from ..utils.exceptions import AuthenticationError


# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


async def get_current_business_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> UUID:
    """
    Resolve the business the caller acts for from its bearer token.

    Raises:
        AuthenticationError: Missing or invalid token, or unknown business
    """
    if credentials is None:
        raise AuthenticationError("Authentication required")

    token_data = verify_token(credentials.credentials)
    if token_data is None:
        raise AuthenticationError("Could not validate credentials")

    try:
        business_id = UUID(token_data.business_id)
    except ValueError:
        raise AuthenticationError("Could not validate credentials")

    exists = (await db.execute(
        select(Business.id).where(Business.id == business_id)
    )).scalar_one_or_none()
    if exists is None:
        raise AuthenticationError("Unknown business")

    return business_id
