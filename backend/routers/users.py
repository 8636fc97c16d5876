# routers/users.py — User profiles keyed by Lightning pubkey
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, get_current_user, get_identity_pubkey, get_optional_user
from database import atomic, get_db_session
from errors import ConflictError, NotFoundError, ValidationError
from models import Bounty, BountyStatus, User, new_uuid
from responses import CamelModel, PageParams, api_success, page_params, pagination_meta
from schemas import BountyOut, UserOut

router = APIRouter(prefix="/api/v1/users", tags=["Users"])

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,20}$")
MAX_PUBKEY_LENGTH = 66


# --- Schemas ---

class ProfileUpdate(CamelModel):
    alias: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=1000)
    avatar_url: Optional[str] = Field(None, max_length=2048)


class UserRegister(ProfileUpdate):
    username: str

    @field_validator("username")
    @classmethod
    def _username(cls, value: str) -> str:
        if not USERNAME_PATTERN.match(value):
            raise ValueError("Username must be 3-20 characters of letters, digits or underscores")
        return value


# --- Helpers ---

async def _get_user(db: AsyncSession, pubkey: str) -> User:
    result = await db.execute(select(User).where(User.pubkey == pubkey, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User")
    return user


# --- Endpoints ---

@router.post("", status_code=201)
async def register_user(
    body: UserRegister,
    pubkey: str = Depends(get_identity_pubkey),
    db: AsyncSession = Depends(get_db_session),
):
    """Create the profile for an already verified pubkey"""
    if len(pubkey) > MAX_PUBKEY_LENGTH:
        raise ValidationError("Pubkey is too long", details={"maxLength": MAX_PUBKEY_LENGTH})

    existing = await db.execute(select(User.id).where(User.pubkey == pubkey))
    if existing.scalar_one_or_none():
        raise ConflictError("User already registered")
    taken = await db.execute(
        select(User.id).where(func.lower(User.username) == body.username.lower())
    )
    if taken.scalar_one_or_none():
        raise ConflictError("Username already taken")

    user = User(id=new_uuid(), pubkey=pubkey, **body.model_dump())
    try:
        async with atomic(db):
            db.add(user)
    except IntegrityError:
        raise ConflictError("User or username already registered")
    return api_success(UserOut.model_validate(user), status=201)


@router.get("/me")
async def get_me(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return api_success(UserOut.model_validate(await _get_user(db, user.pubkey)))


@router.patch("/me")
async def update_me(
    body: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    profile = await _get_user(db, user.pubkey)
    changes = body.model_dump(exclude_unset=True)
    if changes:
        async with atomic(db):
            for key, value in changes.items():
                setattr(profile, key, value)
    return api_success(UserOut.model_validate(profile))


@router.get("/username/available")
async def username_available(
    username: str = Query(..., max_length=20),
    db: AsyncSession = Depends(get_db_session),
):
    """Case-insensitive check against every registered username"""
    username = username.strip()
    if not USERNAME_PATTERN.match(username):
        raise ValidationError(
            "Username must be 3-20 characters of letters, digits or underscores",
            details={"username": username},
        )
    taken = await db.execute(select(User.id).where(func.lower(User.username) == username.lower()))
    return api_success({"username": username, "available": taken.first() is None})


@router.get("/{pubkey}")
async def get_user(pubkey: str, db: AsyncSession = Depends(get_db_session)):
    return api_success(UserOut.model_validate(await _get_user(db, pubkey)))


async def _user_bounties(
    db: AsyncSession, pubkey: str, role_column, order_column, status, page: PageParams, hide_drafts: bool = False,
):
    await _get_user(db, pubkey)
    filters = [role_column == pubkey, Bounty.deleted_at.is_(None)]
    if hide_drafts:
        filters.append(Bounty.status != BountyStatus.DRAFT)
    if status is not None:
        filters.append(Bounty.status == status)

    total = (await db.execute(select(func.count(Bounty.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Bounty)
        .where(*filters)
        .order_by(order_column.desc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    bounties = [BountyOut.model_validate(b) for b in result.scalars().all()]
    return api_success(bounties, pagination=pagination_meta(page, total))


@router.get("/{pubkey}/bounties/assigned")
async def list_assigned_bounties(
    pubkey: str,
    status: Optional[BountyStatus] = Query(None),
    page: PageParams = Depends(page_params),
    db: AsyncSession = Depends(get_db_session),
):
    """Bounties held by the user, including paid and completed ones"""
    return await _user_bounties(db, pubkey, Bounty.assignee_pubkey, Bounty.assigned_at, status, page)


@router.get("/{pubkey}/bounties/created")
async def list_created_bounties(
    pubkey: str,
    status: Optional[BountyStatus] = Query(None),
    page: PageParams = Depends(page_params),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Bounties the user posted; drafts only when the creator is asking"""
    hide_drafts = user is None or user.pubkey != pubkey
    return await _user_bounties(
        db, pubkey, Bounty.creator_pubkey, Bounty.created_at, status, page, hide_drafts=hide_drafts,
    )
