# routers/workspace_bounties.py — Bounties scoped to a workspace
# Create/list plus the claim, unclaim, mark-paid, complete and cancel actions
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

import bounty_workflows
from auth import CurrentUser, get_current_user, get_optional_user, get_membership, get_workspace
from database import get_db_session
from models import Bounty, BountyStatus, MAX_SATS
from responses import CamelModel, PageParams, api_success, page_params, pagination_meta
from schemas import BountyOut, normalize_tags

router = APIRouter(prefix="/api/v1/workspaces/{workspace_id}/bounties", tags=["Workspace Bounties"])


# --- Schemas ---

class BountyCreate(CamelModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=20)
    deliverables: str = Field(..., min_length=10)
    amount: int = Field(..., ge=1, le=MAX_SATS)
    status: BountyStatus = BountyStatus.DRAFT
    tags: List[str] = Field(default_factory=list)
    estimated_hours: Optional[int] = Field(None, ge=1)
    github_issue_url: Optional[str] = Field(None, max_length=2048)
    loom_video_url: Optional[str] = Field(None, max_length=2048)

    @field_validator("tags")
    @classmethod
    def _tags(cls, value):
        return normalize_tags(value)


class ClaimRequest(CamelModel):
    message: Optional[str] = Field(None, max_length=1000)


class CancelRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=1000)


# --- Endpoints ---

@router.post("", status_code=201)
async def create_bounty(
    workspace_id: str,
    body: BountyCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a DRAFT or OPEN bounty (workspace admins and owners)"""
    await get_workspace(db, workspace_id)
    fields = body.model_dump(exclude={"status"})
    bounty = await bounty_workflows.create_bounty(db, workspace_id, user, fields, body.status)
    return api_success(BountyOut.model_validate(bounty), status=201)


@router.get("")
async def list_bounties(
    workspace_id: str,
    status: Optional[BountyStatus] = Query(None),
    page: PageParams = Depends(page_params),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """List bounties of a workspace; drafts are visible to members only"""
    await get_workspace(db, workspace_id)
    member = await get_membership(db, workspace_id, user.pubkey) if user else None

    filters = [Bounty.workspace_id == workspace_id, Bounty.deleted_at.is_(None)]
    if status is not None:
        filters.append(Bounty.status == status)
    if member is None:
        filters.append(Bounty.status != BountyStatus.DRAFT)

    total = (await db.execute(select(func.count(Bounty.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Bounty)
        .where(*filters)
        .order_by(Bounty.created_at.desc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    bounties = [BountyOut.model_validate(b) for b in result.scalars().all()]
    return api_success(bounties, pagination=pagination_meta(page, total))


@router.patch("/{bounty_id}/claim")
async def claim_bounty(
    workspace_id: str,
    bounty_id: str,
    body: Optional[ClaimRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Claim an OPEN bounty for yourself (contributors and above)"""
    bounty = await bounty_workflows.claim_bounty(
        db, workspace_id, bounty_id, user, body.message if body else None,
    )
    return api_success(BountyOut.model_validate(bounty))


@router.patch("/{bounty_id}/unclaim")
async def unclaim_bounty(
    workspace_id: str,
    bounty_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.unassign_bounty(db, bounty_id, user, workspace_id=workspace_id)
    return api_success(BountyOut.model_validate(bounty))


@router.patch("/{bounty_id}/mark-paid")
async def mark_bounty_paid(
    workspace_id: str,
    bounty_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Settle the reserved amount to the assignee: IN_REVIEW -> PAID"""
    bounty = await bounty_workflows.mark_paid(db, workspace_id, bounty_id, user)
    return api_success(BountyOut.model_validate(bounty))


@router.patch("/{bounty_id}/complete")
async def complete_bounty(
    workspace_id: str,
    bounty_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Close out a bounty with an accepted proof, settling it first if needed"""
    bounty = await bounty_workflows.complete_bounty(db, workspace_id, bounty_id, user)
    return api_success(BountyOut.model_validate(bounty))


@router.patch("/{bounty_id}/cancel")
async def cancel_bounty(
    workspace_id: str,
    bounty_id: str,
    body: Optional[CancelRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.cancel_bounty(
        db, workspace_id, bounty_id, user, body.reason if body else None,
    )
    return api_success(BountyOut.model_validate(bounty))
