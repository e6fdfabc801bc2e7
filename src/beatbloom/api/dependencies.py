"""Shared FastAPI dependencies for authenticated routes."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import Cookie, Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.auth_service import verify_token
from beatbloom.services.cart_service import CartOwner
from beatbloom.services.profiles import get_producer_id
from beatbloom.services.settings_service import SettingsCache

# Optional bearer scheme -- auto_error=False so we can fall back to cookies
_bearer_scheme = HTTPBearer(auto_error=False)


def _extract_token(
    credentials: HTTPAuthorizationCredentials | None,
    access_token: str | None,
) -> str | None:
    if credentials is not None:
        return credentials.credentials
    return access_token


async def _load_user(db: AsyncSession, payload: dict) -> User:
    user_id = UUID(payload["sub"])
    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()

    if user is None or user.status != "active":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or deactivated",
        )

    # Check token_version matches (tokens may have been revoked)
    if user.token_version != payload.get("token_version"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return user


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    access_token: str | None = Cookie(default=None),
) -> User:
    """Extract and validate the access token, then return the User.

    Token sources (checked in order):
      1. Authorization: Bearer <token> header
      2. ``access_token`` cookie

    Raises HTTPException(401) if no valid token is found or the user does not
    exist / is not active.
    """
    token = _extract_token(credentials, access_token)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(token, "access")
    user = await _load_user(db, payload)
    request.state.user_id = str(user.user_id)
    return user


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    access_token: str | None = Cookie(default=None),
) -> Optional[User]:
    """Like :func:`get_current_user`, but anonymous or stale tokens yield None."""
    token = _extract_token(credentials, access_token)
    if token is None:
        return None
    try:
        payload = verify_token(token, "access")
        user = await _load_user(db, payload)
    except HTTPException:
        return None
    request.state.user_id = str(user.user_id)
    return user


def require_role(*roles: str):
    """Dependency factory: the current user must hold one of ``roles``."""

    async def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _check


async def get_current_producer_id(
    current_user: User = Depends(require_role("producer")),
    db: AsyncSession = Depends(get_db),
) -> int:
    return await get_producer_id(db, current_user.user_id)


def get_settings_cache(request: Request) -> SettingsCache:
    return request.app.state.settings_cache


async def get_cart_owner(
    current_user: Optional[User] = Depends(get_optional_user),
    x_session_id: Optional[str] = Header(default=None),
) -> CartOwner:
    """Signed-in users own their cart; guests identify theirs with ``X-Session-Id``."""
    if current_user is not None:
        return CartOwner(user_id=current_user.user_id)
    if not x_session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Session ID required for guest cart",
        )
    return CartOwner(session_id=x_session_id)
