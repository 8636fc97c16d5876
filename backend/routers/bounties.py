# routers/bounties.py — Single-bounty endpoints
# Detail, partial update, soft delete, admin assign/unassign, activity log
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

import bounty_workflows
from auth import CurrentUser, get_current_user, get_optional_user
from database import get_db_session
from models import Bounty, BountyActivity, BountyProof, BountyStatus, MAX_SATS
from responses import CamelModel, PageParams, api_success, page_params, pagination_meta
from schemas import BountyActivityOut, BountyDetailOut, BountyOut, ProofOut, UserOut, normalize_tags

router = APIRouter(prefix="/api/v1/bounties", tags=["Bounties"])

RECENT_LIMIT = 10

# Optional fields that may be cleared with an explicit null
NULLABLE_FIELDS = {"estimated_hours", "github_issue_url", "loom_video_url"}


# --- Schemas ---

class BountyUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=20)
    deliverables: Optional[str] = Field(None, min_length=10)
    amount: Optional[int] = Field(None, ge=1, le=MAX_SATS)
    status: Optional[BountyStatus] = None
    tags: Optional[List[str]] = None
    estimated_hours: Optional[int] = Field(None, ge=1)
    github_issue_url: Optional[str] = Field(None, max_length=2048)
    loom_video_url: Optional[str] = Field(None, max_length=2048)

    @field_validator("tags")
    @classmethod
    def _tags(cls, value):
        return normalize_tags(value)


class AssignRequest(CamelModel):
    assignee_pubkey: str = Field(..., min_length=1, max_length=66)


# --- Endpoints ---

@router.get("/{bounty_id}")
async def get_bounty(
    bounty_id: str,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Bounty with its most recent proofs and activity"""
    bounty = await bounty_workflows.load_visible_bounty(db, bounty_id, user)

    proofs = await db.execute(
        select(BountyProof)
        .where(BountyProof.bounty_id == bounty.id)
        .order_by(BountyProof.created_at.desc())
        .limit(RECENT_LIMIT)
    )
    activities = await db.execute(
        select(BountyActivity)
        .where(BountyActivity.bounty_id == bounty.id)
        .order_by(BountyActivity.timestamp.desc())
        .limit(RECENT_LIMIT)
    )
    detail = BountyDetailOut(
        **BountyOut.model_validate(bounty).model_dump(),
        proofs=[ProofOut.model_validate(p) for p in proofs.scalars().all()],
        activities=[BountyActivityOut.model_validate(a) for a in activities.scalars().all()],
    )
    return api_success(detail)


@router.patch("/{bounty_id}")
async def update_bounty(
    bounty_id: str,
    body: BountyUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Partial update; a status change goes through the transition table"""
    data = body.model_dump(exclude_unset=True)
    status = data.pop("status", None)
    changes = {k: v for k, v in data.items() if v is not None or k in NULLABLE_FIELDS}
    bounty = await bounty_workflows.update_bounty(db, bounty_id, user, changes, status)
    return api_success(BountyOut.model_validate(bounty))


@router.delete("/{bounty_id}")
async def delete_bounty(
    bounty_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.delete_bounty(db, bounty_id, user)
    return api_success({"id": bounty.id, "deleted": True})


@router.post("/{bounty_id}/assign")
async def assign_bounty(
    bounty_id: str,
    body: AssignRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Assign an OPEN bounty to a workspace member and reserve its amount"""
    bounty, assignee = await bounty_workflows.assign_bounty(db, bounty_id, user, body.assignee_pubkey)
    return api_success({
        "bounty": BountyOut.model_validate(bounty),
        "assignee": UserOut.model_validate(assignee),
    })


@router.delete("/{bounty_id}/assign")
async def unassign_bounty(
    bounty_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.unassign_bounty(db, bounty_id, user)
    return api_success(BountyOut.model_validate(bounty))


@router.get("/{bounty_id}/activities")
async def list_bounty_activities(
    bounty_id: str,
    page: PageParams = Depends(page_params),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Activity log, newest first"""
    bounty = await bounty_workflows.load_visible_bounty(db, bounty_id, user)
    total = (await db.execute(
        select(func.count(BountyActivity.id)).where(BountyActivity.bounty_id == bounty.id)
    )).scalar() or 0
    result = await db.execute(
        select(BountyActivity)
        .where(BountyActivity.bounty_id == bounty.id)
        .order_by(BountyActivity.timestamp.desc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    activities = [BountyActivityOut.model_validate(a) for a in result.scalars().all()]
    return api_success(activities, pagination=pagination_meta(page, total))
