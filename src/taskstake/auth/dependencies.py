"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.auth.jwt import verify_token
from taskstake.database import get_session
from taskstake.db.models import User
from taskstake.users.service import get_or_create_user

_bearer = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> str:
    """Extract and verify the bearer JWT, return its subject. Raises 401 on failure."""
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    return str(payload["sub"])


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Return the caller's balance row, provisioning it on first request.

    First-time users start at 0 points with the starter tasks.
    """
    user, created = await get_or_create_user(db, user_id)
    if created:
        await db.commit()
    return user
