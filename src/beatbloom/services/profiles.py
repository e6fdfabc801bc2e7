"""Role-specific profile data.

Every account owns exactly one profile row matching its role. The profile
kinds form a tagged union keyed on ``kind``; each variant knows the ORM
model (and therefore the table) that backs it.
"""

from __future__ import annotations

import secrets
import uuid
from typing import Annotated, ClassVar, Literal, Optional, Union

from fastapi import HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from beatbloom.models import Admin, Artist, Producer, User


# ---------------------------------------------------------------------------
# Profile variants
# ---------------------------------------------------------------------------

class _ProfileBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    username: str
    display_name: str
    avatar: Optional[str] = None
    bio: Optional[str] = None


class ProducerProfile(_ProfileBase):
    kind: Literal["producer"] = "producer"
    orm_model: ClassVar[type] = Producer

    producer_id: int
    cover_image: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    is_verified: bool = False


class ArtistProfile(_ProfileBase):
    kind: Literal["artist"] = "artist"
    orm_model: ClassVar[type] = Artist

    artist_id: int
    twitter: Optional[str] = None
    instagram: Optional[str] = None


class AdminProfile(_ProfileBase):
    kind: Literal["admin"] = "admin"
    orm_model: ClassVar[type] = Admin

    admin_id: int


class UpdateProfileRequest(BaseModel):
    """Editable profile fields. Only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=500)
    bio: Optional[str] = None
    cover_image: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = Field(default=None, max_length=100)
    website: Optional[str] = Field(default=None, max_length=255)
    twitter: Optional[str] = Field(default=None, max_length=255)
    instagram: Optional[str] = Field(default=None, max_length=255)

    @field_validator("display_name")
    @classmethod
    def _display_name_required(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("display_name cannot be null")
        return v


Profile = Annotated[
    Union[ProducerProfile, ArtistProfile, AdminProfile],
    Field(discriminator="kind"),
]

_PROFILE_KINDS: dict[str, type[_ProfileBase]] = {
    "producer": ProducerProfile,
    "artist": ArtistProfile,
    "admin": AdminProfile,
}


def profile_kind_for(role: str) -> type[_ProfileBase]:
    """Return the profile variant for a user role."""
    try:
        return _PROFILE_KINDS[role]
    except KeyError:
        raise ValueError(f"Unknown role: {role}") from None


def generate_username(email: str) -> str:
    """Email local part plus a random number, e.g. ``djnova4821``."""
    prefix = "".join(c for c in email.split("@")[0].lower() if c.isalnum()) or "user"
    return f"{prefix[:40]}{secrets.randbelow(9000) + 1000}"


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def create_profile(db: AsyncSession, user: User) -> _ProfileBase:
    """Insert the profile row for a freshly created user."""
    kind = profile_kind_for(user.role)
    row = kind.orm_model(
        user_id=user.user_id,
        username=generate_username(user.email),
        display_name=user.name,
    )
    db.add(row)
    await db.flush()
    await db.refresh(row)
    return kind.model_validate(row)


async def get_profile(db: AsyncSession, user: User) -> Optional[_ProfileBase]:
    kind = profile_kind_for(user.role)
    model = kind.orm_model
    result = await db.execute(select(model).where(model.user_id == user.user_id))
    row = result.scalar_one_or_none()
    if row is None:
        return None
    return kind.model_validate(row)


async def update_profile(
    db: AsyncSession,
    user: User,
    changes: UpdateProfileRequest,
) -> _ProfileBase:
    """Apply a partial profile update.

    Raises 400 for fields the role's profile does not have and 404 when the
    profile row is missing. A new display name is copied onto the account.
    """
    kind = profile_kind_for(user.role)
    updates = changes.model_dump(exclude_unset=True)
    unsupported = sorted(f for f in updates if f not in kind.model_fields)
    if unsupported:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Not editable on the {user.role} profile: {', '.join(unsupported)}",
        )

    model = kind.orm_model
    result = await db.execute(select(model).where(model.user_id == user.user_id))
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        )

    for field, value in updates.items():
        setattr(row, field, value)
    if updates.get("display_name"):
        user.name = updates["display_name"]
    await db.flush()
    return kind.model_validate(row)


async def get_producer_id(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Return the producer id for a user. Raises 403 without a producer profile."""
    result = await db.execute(
        select(Producer.producer_id).where(Producer.user_id == user_id)
    )
    producer_id = result.scalar_one_or_none()
    if producer_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Producer profile required",
        )
    return producer_id
