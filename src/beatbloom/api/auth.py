"""Authentication API router -- /api/v1/auth/*."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.api.dependencies import get_current_user
from beatbloom.api.responses import ok
from beatbloom.config import settings
from beatbloom.database import get_db
from beatbloom.models import User
from beatbloom.services.auth_service import (
    ChangePasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    change_password,
    get_account,
    login_user,
    refresh_tokens as refresh_tokens_service,
    register_user,
    revoke_all_tokens,
)
from beatbloom.services.profiles import UpdateProfileRequest, update_profile

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _set_token_cookies(response: Response, tokens: TokenResponse) -> None:
    """Set httpOnly, Secure, SameSite=Strict cookies for both tokens."""
    response.set_cookie(
        key="access_token",
        value=tokens.access_token,
        httponly=True,
        secure=True,
        samesite="strict",
        max_age=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )
    response.set_cookie(
        key="refresh_token",
        value=tokens.refresh_token,
        httponly=True,
        secure=True,
        samesite="strict",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path="/api/v1/auth",
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Register a new account together with its role profile."""
    account = await register_user(db, request)
    return ok(account, "Registration successful")


@router.post("/login")
async def login(
    request: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate and return JWT tokens (also sets httpOnly cookies)."""
    result = await login_user(db, request)
    _set_token_cookies(response, result)
    return ok(result, "Login successful")


@router.post("/refresh")
async def refresh(
    response: Response,
    body: Optional[RefreshRequest] = None,
    db: AsyncSession = Depends(get_db),
    refresh_token: str | None = Cookie(default=None),
):
    """Refresh the token pair from the request body or the refresh_token cookie."""
    token = (body.refresh_token if body else None) or refresh_token
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token missing",
        )

    tokens = await refresh_tokens_service(db, token)
    _set_token_cookies(response, tokens)
    return ok(tokens, "Token refreshed")


@router.post("/logout")
async def logout(
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Log out by revoking all tokens and clearing cookies."""
    await revoke_all_tokens(db, current_user.user_id)

    response.delete_cookie("access_token", path="/")
    response.delete_cookie("refresh_token", path="/api/v1/auth")

    return ok(message="Successfully logged out")


@router.get("/me")
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ok(await get_account(db, current_user), "Profile retrieved")


@router.patch("/me")
async def update_me(
    body: UpdateProfileRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    profile = await update_profile(db, current_user, body)
    return ok(profile, "Profile updated")


@router.post("/change-password")
async def change_password_endpoint(
    body: ChangePasswordRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Change the password; other sessions are signed out, this one gets new tokens."""
    tokens = await change_password(db, current_user, body)
    _set_token_cookies(response, tokens)
    return ok(tokens, "Password changed")
