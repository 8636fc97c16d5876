# routers/workspaces.py — Workspaces, membership and budget
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

import budget_ledger
from activity_log import record_workspace_activity
from auth import (
    CurrentUser, get_current_user, get_membership, get_workspace,
    is_workspace_admin, require_workspace_role,
)
from database import atomic, get_db_session
from errors import ConflictError, ForbiddenError, NotFoundError
from models import (
    Bounty, Transaction, TransactionStatus, TransactionType, User, Workspace,
    WorkspaceActivity, WorkspaceActivityAction, WorkspaceBudget, WorkspaceMember,
    WorkspaceRole, MAX_SATS, RESERVING_STATUSES, new_uuid, utcnow,
)
from responses import CamelModel, PageParams, api_success, page_params, pagination_meta
from schemas import (
    BudgetOut, MemberOut, TransactionOut, WorkspaceActivityOut, WorkspaceDetailOut, WorkspaceOut,
)

router = APIRouter(prefix="/api/v1/workspaces", tags=["Workspaces"])

URL_PATTERN = re.compile(r"^https?://")


# --- Schemas ---

class WorkspaceCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=120)
    mission: Optional[str] = None
    avatar_url: Optional[str] = Field(None, max_length=2048)
    website_url: Optional[str] = Field(None, max_length=2048)
    github_url: Optional[str] = Field(None, max_length=2048)

    @field_validator("name")
    @classmethod
    def _name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Workspace name cannot be blank")
        return value

    @field_validator("website_url", "github_url", "avatar_url")
    @classmethod
    def _url(cls, value: Optional[str]) -> Optional[str]:
        if value and not URL_PATTERN.match(value):
            raise ValueError("URL must start with http:// or https://")
        return value


class WorkspaceUpdate(WorkspaceCreate):
    name: Optional[str] = Field(None, min_length=1, max_length=50)


class MemberAdd(CamelModel):
    user_pubkey: str = Field(..., min_length=1, max_length=66)
    role: WorkspaceRole = WorkspaceRole.CONTRIBUTOR


class MemberRoleUpdate(CamelModel):
    role: WorkspaceRole


class DepositRequest(CamelModel):
    amount: int = Field(..., ge=1, le=MAX_SATS)
    memo: Optional[str] = Field(None, max_length=500)


# --- Helpers ---

def _member_out(member: WorkspaceMember, username: Optional[str] = None) -> MemberOut:
    out = MemberOut.model_validate(member)
    out.username = username
    return out


async def _load_member(db: AsyncSession, workspace_id: str, pubkey: str) -> WorkspaceMember:
    member = await get_membership(db, workspace_id, pubkey)
    if member is None:
        raise NotFoundError("Member")
    return member


def _check_role_change_authority(actor: WorkspaceMember, role: WorkspaceRole) -> None:
    if role == WorkspaceRole.OWNER:
        raise ForbiddenError("Cannot grant the OWNER role")
    if role == WorkspaceRole.ADMIN and actor.role != WorkspaceRole.OWNER:
        raise ForbiddenError("Only the workspace owner can manage admins")


# --- Workspaces ---

@router.post("", status_code=201)
async def create_workspace(
    body: WorkspaceCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a workspace owned by the caller, with an empty budget"""
    async with atomic(db):
        workspace = Workspace(id=new_uuid(), owner_pubkey=user.pubkey, **body.model_dump())
        db.add(workspace)
        db.add(WorkspaceMember(workspace_id=workspace.id, user_pubkey=user.pubkey, role=WorkspaceRole.OWNER))
        db.add(WorkspaceBudget(
            workspace_id=workspace.id,
            total_budget=0, available_budget=0, reserved_budget=0, paid_budget=0,
        ))
        await record_workspace_activity(
            db, workspace.id, user.pubkey, WorkspaceActivityAction.MEMBER_ADDED,
            {"userPubkey": user.pubkey, "role": WorkspaceRole.OWNER},
        )
    return api_success(WorkspaceOut.model_validate(workspace), status=201)


@router.get("")
async def list_my_workspaces(
    page: PageParams = Depends(page_params),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    filters = [
        WorkspaceMember.user_pubkey == user.pubkey,
        Workspace.deleted_at.is_(None),
    ]
    total = (await db.execute(
        select(func.count(Workspace.id)).join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .where(*filters)
    )).scalar() or 0
    result = await db.execute(
        select(Workspace)
        .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .where(*filters)
        .order_by(Workspace.created_at.desc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    workspaces = [WorkspaceOut.model_validate(w) for w in result.scalars().all()]
    return api_success(workspaces, pagination=pagination_meta(page, total))


@router.get("/{workspace_id}")
async def get_workspace_detail(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Workspace with the caller's role, member count and budget"""
    workspace = await get_workspace(db, workspace_id)
    member = await require_workspace_role(db, workspace_id, user)
    member_count = (await db.execute(
        select(func.count(WorkspaceMember.id)).where(WorkspaceMember.workspace_id == workspace_id)
    )).scalar() or 0
    budget = await budget_ledger.get_budget(db, workspace_id)

    detail = WorkspaceDetailOut(
        **WorkspaceOut.model_validate(workspace).model_dump(),
        role=member.role,
        member_count=member_count,
        budget=BudgetOut.model_validate(budget),
    )
    return api_success(detail)


@router.patch("/{workspace_id}")
async def update_workspace(
    workspace_id: str,
    body: WorkspaceUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await get_workspace(db, workspace_id)
    await require_workspace_role(
        db, workspace_id, user, WorkspaceRole.ADMIN,
        "Only workspace admins or owners can update workspace settings",
    )
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if k != "name" or v}
    if changes:
        async with atomic(db):
            for key, value in changes.items():
                setattr(workspace, key, value)
            await record_workspace_activity(
                db, workspace_id, user.pubkey, WorkspaceActivityAction.SETTINGS_UPDATED,
                {"changes": sorted(changes)},
            )
    return api_success(WorkspaceOut.model_validate(workspace))


# --- Members ---

@router.get("/{workspace_id}/members")
async def list_members(
    workspace_id: str,
    page: PageParams = Depends(page_params),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await get_workspace(db, workspace_id)
    await require_workspace_role(db, workspace_id, user)

    total = (await db.execute(
        select(func.count(WorkspaceMember.id)).where(WorkspaceMember.workspace_id == workspace_id)
    )).scalar() or 0
    result = await db.execute(
        select(WorkspaceMember, User.username)
        .join(User, User.pubkey == WorkspaceMember.user_pubkey)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.joined_at.asc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    members = [_member_out(member, username) for member, username in result.all()]
    return api_success(members, pagination=pagination_meta(page, total))


@router.post("/{workspace_id}/members", status_code=201)
async def add_member(
    workspace_id: str,
    body: MemberAdd,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await get_workspace(db, workspace_id)
    actor = await require_workspace_role(
        db, workspace_id, user, WorkspaceRole.ADMIN, "Only workspace admins or owners can add members",
    )
    _check_role_change_authority(actor, body.role)

    result = await db.execute(select(User).where(User.pubkey == body.user_pubkey, User.deleted_at.is_(None)))
    target = result.scalar_one_or_none()
    if not target:
        raise NotFoundError("User")
    if await get_membership(db, workspace_id, body.user_pubkey) is not None:
        raise ConflictError("User is already a member of this workspace")

    async with atomic(db):
        member = WorkspaceMember(workspace_id=workspace_id, user_pubkey=target.pubkey, role=body.role)
        db.add(member)
        await record_workspace_activity(
            db, workspace_id, user.pubkey, WorkspaceActivityAction.MEMBER_ADDED,
            {"userPubkey": target.pubkey, "role": body.role},
        )
    return api_success(_member_out(member, target.username), status=201)


@router.patch("/{workspace_id}/members/{pubkey}")
async def update_member_role(
    workspace_id: str,
    pubkey: str,
    body: MemberRoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    workspace = await get_workspace(db, workspace_id)
    actor = await require_workspace_role(
        db, workspace_id, user, WorkspaceRole.ADMIN, "Only workspace admins or owners can change roles",
    )
    member = await _load_member(db, workspace_id, pubkey)
    if member.role == WorkspaceRole.OWNER or pubkey == workspace.owner_pubkey:
        raise ForbiddenError("Cannot change the workspace owner's role")
    _check_role_change_authority(actor, body.role)
    if member.role == WorkspaceRole.ADMIN and actor.role != WorkspaceRole.OWNER:
        raise ForbiddenError("Only the workspace owner can manage admins")

    previous = member.role
    if previous != body.role:
        async with atomic(db):
            member.role = body.role
            await record_workspace_activity(
                db, workspace_id, user.pubkey, WorkspaceActivityAction.ROLE_CHANGED,
                {"userPubkey": pubkey, "from": previous, "to": body.role},
            )
    return api_success(_member_out(member))


@router.delete("/{workspace_id}/members/{pubkey}")
async def remove_member(
    workspace_id: str,
    pubkey: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Remove a member, or leave the workspace when ``pubkey`` is the caller"""
    workspace = await get_workspace(db, workspace_id)
    actor = await require_workspace_role(db, workspace_id, user)
    member = await _load_member(db, workspace_id, pubkey)

    if member.role == WorkspaceRole.OWNER or pubkey == workspace.owner_pubkey:
        raise ForbiddenError("Cannot remove the workspace owner")
    if pubkey != user.pubkey:
        if not is_workspace_admin(actor):
            raise ForbiddenError("Only workspace admins or owners can remove members")
        if member.role == WorkspaceRole.ADMIN and actor.role != WorkspaceRole.OWNER:
            raise ForbiddenError("Only the workspace owner can manage admins")

    active = (await db.execute(
        select(func.count(Bounty.id)).where(
            Bounty.workspace_id == workspace_id,
            Bounty.assignee_pubkey == pubkey,
            Bounty.status.in_(list(RESERVING_STATUSES)),
            Bounty.deleted_at.is_(None),
        )
    )).scalar() or 0
    if active:
        raise ConflictError(
            "Member has bounties in progress; unassign them first",
            details={"activeBounties": active},
        )

    async with atomic(db):
        await db.delete(member)
        await record_workspace_activity(
            db, workspace_id, user.pubkey, WorkspaceActivityAction.MEMBER_REMOVED,
            {"userPubkey": pubkey, "role": member.role, "selfLeave": pubkey == user.pubkey},
        )
    return api_success({"userPubkey": pubkey, "removed": True})


# --- Budget ---

@router.get("/{workspace_id}/budget")
async def get_budget(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await get_workspace(db, workspace_id)
    await require_workspace_role(db, workspace_id, user)
    budget = await budget_ledger.get_budget(db, workspace_id)
    return api_success(BudgetOut.model_validate(budget))


@router.post("/{workspace_id}/budget")
async def deposit_budget(
    workspace_id: str,
    body: DepositRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Record an incoming deposit: total and available grow by ``amount``"""
    await get_workspace(db, workspace_id)
    await require_workspace_role(
        db, workspace_id, user, WorkspaceRole.ADMIN, "Only workspace admins or owners can fund the budget",
    )

    async with atomic(db):
        await budget_ledger.deposit(db, workspace_id, body.amount)
        db.add(Transaction(
            workspace_id=workspace_id,
            type=TransactionType.DEPOSIT,
            amount=body.amount,
            from_user_pubkey=user.pubkey,
            status=TransactionStatus.COMPLETED,
            memo=body.memo,
            completed_at=utcnow(),
        ))
        await record_workspace_activity(
            db, workspace_id, user.pubkey, WorkspaceActivityAction.BUDGET_DEPOSITED,
            {"amount": body.amount, "memo": body.memo},
        )

    budget = await budget_ledger.get_budget(db, workspace_id, refresh=True)
    return api_success(BudgetOut.model_validate(budget))


@router.get("/{workspace_id}/transactions")
async def list_transactions(
    workspace_id: str,
    type: Optional[TransactionType] = Query(None),
    page: PageParams = Depends(page_params),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await get_workspace(db, workspace_id)
    await require_workspace_role(db, workspace_id, user)

    filters = [Transaction.workspace_id == workspace_id]
    if type is not None:
        filters.append(Transaction.type == type)
    total = (await db.execute(select(func.count(Transaction.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(Transaction)
        .where(*filters)
        .order_by(Transaction.created_at.desc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    transactions = [TransactionOut.model_validate(t) for t in result.scalars().all()]
    return api_success(transactions, pagination=pagination_meta(page, total))


@router.get("/{workspace_id}/activities")
async def list_workspace_activities(
    workspace_id: str,
    page: PageParams = Depends(page_params),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await get_workspace(db, workspace_id)
    await require_workspace_role(db, workspace_id, user)

    filters = [WorkspaceActivity.workspace_id == workspace_id]
    total = (await db.execute(select(func.count(WorkspaceActivity.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(WorkspaceActivity)
        .where(*filters)
        .order_by(WorkspaceActivity.timestamp.desc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    activities = [WorkspaceActivityOut.model_validate(a) for a in result.scalars().all()]
    return api_success(activities, pagination=pagination_meta(page, total))
