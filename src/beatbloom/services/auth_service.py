"""Authentication service: password hashing, JWT tokens, user registration/login."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional
from uuid import UUID

import bcrypt
import structlog
from fastapi import HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.config import settings
from beatbloom.models import User
from beatbloom.services.profiles import Profile, create_profile, get_profile

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# Password hashing helpers (bcrypt, cost 12)
# ---------------------------------------------------------------------------

_BCRYPT_ROUNDS = 12
_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")


def hash_password(password: str) -> str:
    """Hash a plaintext password with bcrypt (cost 12)."""
    salt = bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a bcrypt hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=8)
    # Admin accounts are provisioned out of band
    role: Literal["producer", "artist"] = "artist"

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.lower().strip()
        if not _EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email address")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower().strip()


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    user_id: UUID
    name: str
    email: str
    role: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AccountResponse(BaseModel):
    user: UserResponse
    profile: Optional[Profile] = None


class AuthResponse(TokenResponse):
    user: UserResponse
    profile: Optional[Profile] = None


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------


async def register_user(db: AsyncSession, request: RegisterRequest) -> AccountResponse:
    """Register a new user with its role profile. Raises 409 if the email is taken."""
    result = await db.execute(select(User).where(User.email == request.email))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        name=request.name,
        email=request.email,
        password_hash=hash_password(request.password),
        role=request.role,
        status="active",
        token_version=0,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    profile = await create_profile(db, user)
    log.info("user_registered", user_id=str(user.user_id), role=user.role)

    return AccountResponse(user=UserResponse.model_validate(user), profile=profile)


async def authenticate_user(
    db: AsyncSession, email: str, password: str
) -> User | None:
    """Authenticate a user by email and password.

    SECURITY: Always performs a password hash even when the user does not exist
    to prevent timing-based user enumeration.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if user is None:
        # Constant-time: hash the password anyway to prevent timing attacks
        hash_password(password)
        return None

    if not verify_password(password, user.password_hash):
        return None

    return user


async def login_user(db: AsyncSession, request: LoginRequest) -> AuthResponse:
    """Check credentials and issue a token pair.

    Raises 401 for bad credentials or an account that is not active.
    """
    user = await authenticate_user(db, request.email, request.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if user.status != "active":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Account is {user.status}",
        )

    user.last_login_at = datetime.now(timezone.utc)
    await db.flush()

    profile = await get_profile(db, user)
    tokens = create_tokens(user.user_id, user.role, user.token_version)
    log.info("user_logged_in", user_id=str(user.user_id))

    return AuthResponse(
        **tokens.model_dump(),
        user=UserResponse.model_validate(user),
        profile=profile,
    )


def create_tokens(user_id: UUID, role: str, token_version: int) -> TokenResponse:
    """Create an access + refresh JWT token pair."""
    now = datetime.now(timezone.utc)

    access_payload = {
        "sub": str(user_id),
        "role": role,
        "token_version": token_version,
        "type": "access",
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "iat": now,
    }
    refresh_payload = {
        "sub": str(user_id),
        "token_version": token_version,
        "type": "refresh",
        "exp": now + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
        "iat": now,
    }

    access_token = jwt.encode(access_payload, settings.JWT_SECRET_KEY, algorithm="HS256")
    refresh_token = jwt.encode(refresh_payload, settings.JWT_SECRET_KEY, algorithm="HS256")

    return TokenResponse(access_token=access_token, refresh_token=refresh_token)


def verify_token(token: str, token_type: str) -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string.
        token_type: Expected type ("access" or "refresh").

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401) if the token is invalid, expired, or the wrong type.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=["HS256"])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != token_type:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Expected {token_type} token",
        )

    return payload


async def refresh_tokens(db: AsyncSession, refresh_token: str) -> TokenResponse:
    """Validate a refresh token and issue a new token pair.

    Checks that the user still exists, is active, and that token_version
    matches (i.e. tokens have not been revoked).
    """
    payload = verify_token(refresh_token, "refresh")

    user_id = UUID(payload["sub"])
    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()

    if user is None or user.status != "active":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or deactivated",
        )

    if user.token_version != payload.get("token_version"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return create_tokens(user.user_id, user.role, user.token_version)


async def revoke_all_tokens(db: AsyncSession, user_id: UUID) -> None:
    """Increment the user's token_version, invalidating all existing tokens."""
    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    user.token_version += 1
    await db.flush()
    log.info("tokens_revoked", user_id=str(user_id))


async def get_account(db: AsyncSession, user: User) -> AccountResponse:
    profile = await get_profile(db, user)
    return AccountResponse(user=UserResponse.model_validate(user), profile=profile)


async def change_password(
    db: AsyncSession,
    user: User,
    request: ChangePasswordRequest,
) -> TokenResponse:
    """Replace the password and sign every other session out.

    Returns a fresh token pair for the caller. Raises 400 when the current
    password does not match.
    """
    if not verify_password(request.current_password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    user.password_hash = hash_password(request.new_password)
    user.token_version += 1
    await db.flush()
    log.info("password_changed", user_id=str(user.user_id))

    return create_tokens(user.user_id, user.role, user.token_version)
