# bounty_workflows.py — Assignment, proof review and settlement workflows
# Each public coroutine loads what it needs, checks preconditions in a fixed
# order, then runs its mutations inside one ``atomic`` block.

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

import budget_ledger
from activity_log import record_bounty_activity
from auth import CurrentUser, get_membership, has_at_least_role, is_workspace_admin
from bounty_lifecycle import (
    CREATABLE_STATUSES, apply_transition, authorize_delete, authorize_edit,
    authorize_transition, change_amount, validate_transition,
)
from database import atomic
from errors import (
    ConflictError, ForbiddenError, InvalidStateError, InvalidTransitionError,
    InsufficientBudgetError, NotFoundError, ValidationError,
)
from models import (
    Bounty, BountyActivityAction, BountyProof, BountyRequest, BountyRequestStatus,
    BountyStatus, ProofStatus, User, WorkspaceRole, RESERVING_STATUSES, new_uuid, utcnow,
)

EDITABLE_FIELDS = (
    "title", "description", "deliverables", "tags",
    "estimated_hours", "github_issue_url", "loom_video_url",
)


# ============================================================
# LOADERS
# ============================================================

async def load_bounty(db: AsyncSession, bounty_id: str, workspace_id: Optional[str] = None) -> Bounty:
    stmt = select(Bounty).where(Bounty.id == bounty_id, Bounty.deleted_at.is_(None))
    if workspace_id is not None:
        stmt = stmt.where(Bounty.workspace_id == workspace_id)
    result = await db.execute(stmt)
    bounty = result.scalar_one_or_none()
    if not bounty:
        raise NotFoundError("Bounty")
    return bounty


async def load_visible_bounty(db: AsyncSession, bounty_id: str, user: Optional[CurrentUser]) -> Bounty:
    """Drafts are only visible to the creator and workspace members"""
    bounty = await load_bounty(db, bounty_id)
    if bounty.status == BountyStatus.DRAFT:
        allowed = user is not None and (
            bounty.creator_pubkey == user.pubkey
            or await get_membership(db, bounty.workspace_id, user.pubkey) is not None
        )
        if not allowed:
            raise ForbiddenError("Draft bounties are only visible to workspace members")
    return bounty


async def load_proof(db: AsyncSession, bounty_id: str, proof_id: str) -> BountyProof:
    result = await db.execute(select(BountyProof).where(BountyProof.id == proof_id))
    proof = result.scalar_one_or_none()
    if not proof:
        raise NotFoundError("Proof")
    if proof.bounty_id != bounty_id:
        raise ValidationError("Proof does not belong to this bounty")
    return proof


async def load_user(db: AsyncSession, pubkey: str) -> Optional[User]:
    stmt = select(User).where(User.pubkey == pubkey, User.deleted_at.is_(None))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _require_available(db: AsyncSession, bounty: Bounty) -> None:
    budget = await budget_ledger.get_budget(db, bounty.workspace_id)
    if budget.available_budget < bounty.amount:
        raise InsufficientBudgetError(required=bounty.amount, available=budget.available_budget)


# ============================================================
# CREATE / UPDATE / DELETE
# ============================================================

async def create_bounty(
    db: AsyncSession,
    workspace_id: str,
    actor: CurrentUser,
    fields: Dict[str, Any],
    status: BountyStatus = BountyStatus.DRAFT,
) -> Bounty:
    member = await get_membership(db, workspace_id, actor.pubkey)
    if member is None:
        raise ForbiddenError("Access denied to this workspace")
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace admins or owners can create bounties")
    status = BountyStatus(status)
    if status not in CREATABLE_STATUSES:
        raise ValidationError(
            "New bounties must start as DRAFT or OPEN",
            details={"status": status.value},
        )

    async with atomic(db):
        bounty = Bounty(
            id=new_uuid(),
            workspace_id=workspace_id,
            creator_pubkey=actor.pubkey,
            status=status,
            **fields,
        )
        db.add(bounty)
        await record_bounty_activity(
            db, bounty.id, actor.pubkey, BountyActivityAction.CREATED,
            {"title": bounty.title, "amount": bounty.amount, "status": status},
        )
    return bounty


async def update_bounty(
    db: AsyncSession,
    bounty_id: str,
    actor: CurrentUser,
    changes: Dict[str, Any],
    status: Optional[BountyStatus] = None,
) -> Bounty:
    """Partial update of fields, amount and (through the state machine) status"""
    bounty = await load_bounty(db, bounty_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    role = member.role if member else None
    is_creator = bounty.creator_pubkey == actor.pubkey

    field_changes = {
        key: value for key, value in changes.items()
        if key in EDITABLE_FIELDS and getattr(bounty, key) != value
    }
    new_amount = changes.get("amount")
    amount_changed = new_amount is not None and new_amount != bounty.amount

    target = BountyStatus(status) if status is not None else None
    if target == bounty.status:
        target = None

    if field_changes:
        authorize_edit(bounty.status, role, is_creator, changes_amount=False)
    if amount_changed:
        authorize_edit(bounty.status, role, is_creator, changes_amount=True)

    transition = None
    if target is not None:
        transition = validate_transition(bounty.status, target)
        if target == BountyStatus.ASSIGNED and bounty.status == BountyStatus.OPEN:
            raise ValidationError("Use the assign or claim endpoints to assign a bounty")
        if target == BountyStatus.IN_REVIEW:
            raise ValidationError("Submit a proof to move a bounty into review")
        authorize_transition(transition, role, is_creator, actor.pubkey, bounty.assignee_pubkey)

    if not field_changes and not amount_changed and transition is None:
        return bounty

    details: Dict[str, Any] = {"changes": sorted(field_changes)}
    async with atomic(db):
        for key, value in field_changes.items():
            setattr(bounty, key, value)
        if amount_changed:
            old_amount = await change_amount(db, bounty, new_amount)
            details["changes"].append("amount")
            details["amount"] = {"from": old_amount, "to": new_amount}
        if transition is not None:
            details["statusChange"] = {"from": transition.source, "to": transition.target}
            await apply_transition(db, bounty, target, actor.pubkey, record=False)
        await record_bounty_activity(db, bounty.id, actor.pubkey, BountyActivityAction.UPDATED, details)
    return bounty


async def delete_bounty(db: AsyncSession, bounty_id: str, actor: CurrentUser) -> Bounty:
    bounty = await load_bounty(db, bounty_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    authorize_delete(bounty.status, member.role if member else None, bounty.creator_pubkey == actor.pubkey)

    now = utcnow()
    async with atomic(db):
        result = await db.execute(
            update(Bounty)
            .where(Bounty.id == bounty.id, Bounty.status == bounty.status, Bounty.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Bounty changed while it was being deleted")
        set_committed_value(bounty, "deleted_at", now)
        await record_bounty_activity(
            db, bounty.id, actor.pubkey, BountyActivityAction.UPDATED, {"deleted": True},
        )
    return bounty


# ============================================================
# ASSIGNMENT
# ============================================================

async def assign_bounty(
    db: AsyncSession, bounty_id: str, actor: CurrentUser, assignee_pubkey: str,
) -> Tuple[Bounty, User]:
    bounty = await load_bounty(db, bounty_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace admins can assign bounties")

    assignee = await load_user(db, assignee_pubkey)
    if not assignee:
        raise NotFoundError("Assignee")
    if await get_membership(db, bounty.workspace_id, assignee_pubkey) is None:
        raise ForbiddenError("Assignee must be a workspace member")
    if bounty.status != BountyStatus.OPEN:
        raise ValidationError(
            "Can only assign bounties with OPEN status",
            details={"status": BountyStatus(bounty.status).value},
        )
    await _require_available(db, bounty)

    async with atomic(db):
        await apply_transition(
            db, bounty, BountyStatus.ASSIGNED, actor.pubkey,
            assignee_pubkey=assignee.pubkey,
            details={"assigneePubkey": assignee.pubkey, "assigneeUsername": assignee.username},
        )
    return bounty, assignee


async def claim_bounty(
    db: AsyncSession, workspace_id: str, bounty_id: str, actor: CurrentUser, message: Optional[str] = None,
) -> Bounty:
    member = await get_membership(db, workspace_id, actor.pubkey)
    if member is None:
        raise ForbiddenError("You must be a workspace member to claim bounties")
    if not has_at_least_role(member.role, WorkspaceRole.CONTRIBUTOR):
        raise ForbiddenError("Viewers cannot claim bounties")

    bounty = await load_bounty(db, bounty_id, workspace_id)
    if bounty.status != BountyStatus.OPEN:
        raise ValidationError(
            f"Cannot claim bounty with status {BountyStatus(bounty.status).value}. "
            "Only OPEN bounties can be claimed.",
        )
    await _require_available(db, bounty)

    details: Dict[str, Any] = {"assigneePubkey": actor.pubkey, "claimed": True}
    if message:
        details["message"] = message
    async with atomic(db):
        await apply_transition(
            db, bounty, BountyStatus.ASSIGNED, actor.pubkey,
            assignee_pubkey=actor.pubkey, details=details,
        )
    return bounty


async def unassign_bounty(
    db: AsyncSession, bounty_id: str, actor: CurrentUser, workspace_id: Optional[str] = None,
) -> Bounty:
    """Return an ASSIGNED or IN_REVIEW bounty to OPEN and release its reservation"""
    bounty = await load_bounty(db, bounty_id, workspace_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace admins can unassign bounties")
    if not bounty.assignee_pubkey or bounty.status not in RESERVING_STATUSES:
        raise ConflictError("Bounty is not assigned")

    previous = bounty.assignee_pubkey
    async with atomic(db):
        if bounty.status == BountyStatus.IN_REVIEW:
            await apply_transition(db, bounty, BountyStatus.ASSIGNED, actor.pubkey, record=False)
        await apply_transition(
            db, bounty, BountyStatus.OPEN, actor.pubkey,
            details={"previousAssigneePubkey": previous},
        )
    return bounty


# ============================================================
# PROOFS
# ============================================================

async def submit_proof(
    db: AsyncSession, bounty_id: str, actor: CurrentUser, proof_url: str, description: str,
) -> Tuple[BountyProof, Bounty]:
    bounty = await load_bounty(db, bounty_id)
    if bounty.assignee_pubkey != actor.pubkey:
        raise ForbiddenError("Only the assigned user can submit proof for this bounty")
    if bounty.status == BountyStatus.IN_REVIEW:
        raise ConflictError("A proof is already pending review for this bounty")
    if bounty.status != BountyStatus.ASSIGNED:
        raise InvalidStateError(
            f"Cannot submit proof for a bounty with status {BountyStatus(bounty.status).value}",
        )

    async with atomic(db):
        proof = BountyProof(
            id=new_uuid(),
            bounty_id=bounty.id,
            submitted_by_pubkey=actor.pubkey,
            proof_url=proof_url,
            description=description,
            status=ProofStatus.PENDING,
        )
        db.add(proof)
        await apply_transition(db, bounty, BountyStatus.IN_REVIEW, actor.pubkey, record=False)
        await record_bounty_activity(
            db, bounty.id, actor.pubkey, BountyActivityAction.PROOF_SUBMITTED,
            {"proofId": proof.id, "proofUrl": proof_url},
        )
    return proof, bounty


async def review_proof(
    db: AsyncSession,
    bounty_id: str,
    proof_id: str,
    actor: CurrentUser,
    approved: bool,
    feedback: Optional[str] = None,
) -> Tuple[BountyProof, Bounty]:
    """Accept or reject a PENDING proof. A proof is reviewed at most once."""
    proof = await load_proof(db, bounty_id, proof_id)
    bounty = await load_bounty(db, bounty_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace admins or owners can review proofs")
    if bounty.assignee_pubkey == actor.pubkey:
        raise ForbiddenError("The assignee cannot review their own proof")
    if proof.status != ProofStatus.PENDING:
        raise ConflictError("Proof has already been reviewed")

    new_status = ProofStatus.ACCEPTED if approved else ProofStatus.REJECTED
    now = utcnow()
    values = {
        "status": new_status,
        "review_notes": feedback,
        "reviewed_by_pubkey": actor.pubkey,
        "reviewed_at": now,
        "updated_at": now,
    }
    async with atomic(db):
        result = await db.execute(
            update(BountyProof)
            .where(BountyProof.id == proof.id, BountyProof.status == ProofStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Proof has already been reviewed")
        for key, value in values.items():
            set_committed_value(proof, key, value)

        if not approved and bounty.status == BountyStatus.IN_REVIEW:
            await apply_transition(db, bounty, BountyStatus.ASSIGNED, actor.pubkey, record=False)
        await record_bounty_activity(
            db, bounty.id, actor.pubkey, BountyActivityAction.PROOF_REVIEWED,
            {"proofId": proof.id, "status": new_status, "feedback": feedback},
        )
    return proof, bounty


async def delete_proof(db: AsyncSession, bounty_id: str, proof_id: str, actor: CurrentUser) -> Bounty:
    proof = await load_proof(db, bounty_id, proof_id)
    bounty = await load_bounty(db, bounty_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    if proof.submitted_by_pubkey != actor.pubkey and not is_workspace_admin(member):
        raise ForbiddenError("You can only delete your own proofs unless you are a workspace admin")
    if proof.status == ProofStatus.ACCEPTED:
        raise ConflictError("Cannot delete an accepted proof")

    was_pending = proof.status == ProofStatus.PENDING
    async with atomic(db):
        await db.delete(proof)
        await db.flush()
        if was_pending and bounty.status == BountyStatus.IN_REVIEW:
            await apply_transition(db, bounty, BountyStatus.ASSIGNED, actor.pubkey, record=False)
        await record_bounty_activity(
            db, bounty.id, actor.pubkey, BountyActivityAction.UPDATED, {"proofDeleted": proof_id},
        )
    return bounty


async def list_proofs(db: AsyncSession, bounty_id: str, offset: int, limit: int) -> Tuple[List[BountyProof], int]:
    total = (await db.execute(
        select(func.count(BountyProof.id)).where(BountyProof.bounty_id == bounty_id)
    )).scalar() or 0
    result = await db.execute(
        select(BountyProof)
        .where(BountyProof.bounty_id == bounty_id)
        .order_by(BountyProof.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


# ============================================================
# ASSIGNMENT REQUESTS
# ============================================================

async def load_request(db: AsyncSession, bounty_id: str, request_id: str) -> BountyRequest:
    result = await db.execute(select(BountyRequest).where(BountyRequest.id == request_id))
    request = result.scalar_one_or_none()
    if not request:
        raise NotFoundError("Request")
    if request.bounty_id != bounty_id:
        raise ValidationError("Request does not belong to this bounty")
    return request


async def request_assignment(
    db: AsyncSession, bounty_id: str, actor: CurrentUser, message: Optional[str] = None,
) -> BountyRequest:
    """Ask to be assigned an OPEN bounty; one request per user and bounty"""
    bounty = await load_bounty(db, bounty_id)
    if bounty.status != BountyStatus.OPEN:
        raise ValidationError(
            "Can only request assignment on bounties with OPEN status",
            details={"status": BountyStatus(bounty.status).value},
        )
    requester = await load_user(db, actor.pubkey)
    if not requester:
        raise NotFoundError("User")
    existing = (await db.execute(
        select(BountyRequest).where(
            BountyRequest.bounty_id == bounty.id,
            BountyRequest.requester_pubkey == actor.pubkey,
        )
    )).scalar_one_or_none()
    if existing:
        raise ConflictError(
            "You already have a request for this bounty",
            details={"requestId": existing.id, "status": BountyRequestStatus(existing.status).value},
        )

    try:
        async with atomic(db):
            request = BountyRequest(
                id=new_uuid(),
                bounty_id=bounty.id,
                requester_pubkey=actor.pubkey,
                status=BountyRequestStatus.PENDING,
                message=message,
            )
            db.add(request)
            await record_bounty_activity(
                db, bounty.id, actor.pubkey, BountyActivityAction.REQUESTED,
                {"requestId": request.id, "requesterUsername": requester.username, "message": message},
            )
    except IntegrityError:
        raise ConflictError("You already have a request for this bounty")
    return request


async def list_requests(
    db: AsyncSession,
    bounty_id: str,
    actor: CurrentUser,
    offset: int,
    limit: int,
    status: Optional[BountyRequestStatus] = None,
) -> Tuple[List[BountyRequest], int]:
    bounty = await load_bounty(db, bounty_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace admins can view bounty requests")

    filters = [BountyRequest.bounty_id == bounty.id]
    if status is not None:
        filters.append(BountyRequest.status == status)
    total = (await db.execute(select(func.count(BountyRequest.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(BountyRequest)
        .where(*filters)
        .order_by(BountyRequest.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def _close_request(
    db: AsyncSession, request: BountyRequest, status: BountyRequestStatus, actor_pubkey: str,
) -> None:
    now = utcnow()
    values = {"status": status, "reviewed_by_pubkey": actor_pubkey, "reviewed_at": now, "updated_at": now}
    result = await db.execute(
        update(BountyRequest)
        .where(BountyRequest.id == request.id, BountyRequest.status == BountyRequestStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Request has already been reviewed")
    for key, value in values.items():
        set_committed_value(request, key, value)


async def review_request(
    db: AsyncSession,
    bounty_id: str,
    request_id: str,
    actor: CurrentUser,
    approve: bool,
    review_note: Optional[str] = None,
) -> Tuple[BountyRequest, Bounty]:
    """Approve (assigning the bounty to the requester) or reject a PENDING request.

    Approval runs the same OPEN -> ASSIGNED transition as a direct assign, so
    the amount is reserved and every other pending request is rejected in the
    same transaction.
    """
    request = await load_request(db, bounty_id, request_id)
    bounty = await load_bounty(db, bounty_id)
    member = await get_membership(db, bounty.workspace_id, actor.pubkey)
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace admins can review requests")
    if request.status != BountyRequestStatus.PENDING:
        raise ConflictError(
            "Request has already been reviewed",
            details={"status": BountyRequestStatus(request.status).value},
        )

    requester = await load_user(db, request.requester_pubkey)
    if not requester:
        raise NotFoundError("Requester")
    details: Dict[str, Any] = {
        "requestId": request.id,
        "requesterPubkey": requester.pubkey,
        "requesterUsername": requester.username,
        "reviewNote": review_note,
    }

    if not approve:
        async with atomic(db):
            await _close_request(db, request, BountyRequestStatus.REJECTED, actor.pubkey)
            await record_bounty_activity(db, bounty.id, actor.pubkey, BountyActivityAction.REQUEST_REJECTED, details)
        return request, bounty

    if bounty.status != BountyStatus.OPEN:
        raise ValidationError(
            "Bounty is no longer open",
            details={"status": BountyStatus(bounty.status).value},
        )
    if await get_membership(db, bounty.workspace_id, requester.pubkey) is None:
        raise ForbiddenError("Requester must be a workspace member to be assigned")
    authorize_transition(
        validate_transition(bounty.status, BountyStatus.ASSIGNED),
        member.role, bounty.creator_pubkey == actor.pubkey, actor.pubkey, requester.pubkey,
    )
    await _require_available(db, bounty)

    now = utcnow()
    async with atomic(db):
        await _close_request(db, request, BountyRequestStatus.APPROVED, actor.pubkey)
        await db.execute(
            update(BountyRequest)
            .where(
                BountyRequest.bounty_id == bounty.id,
                BountyRequest.id != request.id,
                BountyRequest.status == BountyRequestStatus.PENDING,
            )
            .values(
                status=BountyRequestStatus.REJECTED,
                reviewed_by_pubkey=actor.pubkey,
                reviewed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await record_bounty_activity(db, bounty.id, actor.pubkey, BountyActivityAction.REQUEST_APPROVED, details)
        await apply_transition(
            db, bounty, BountyStatus.ASSIGNED, actor.pubkey,
            assignee_pubkey=requester.pubkey,
            details={
                "assigneePubkey": requester.pubkey,
                "assigneeUsername": requester.username,
                "requestId": request.id,
            },
        )
    return request, bounty


async def withdraw_request(db: AsyncSession, bounty_id: str, request_id: str, actor: CurrentUser) -> None:
    request = await load_request(db, bounty_id, request_id)
    if request.requester_pubkey != actor.pubkey:
        raise ForbiddenError("You can only cancel your own requests")
    if request.status != BountyRequestStatus.PENDING:
        raise ConflictError(
            "Can only cancel pending requests",
            details={"status": BountyRequestStatus(request.status).value},
        )
    async with atomic(db):
        await db.delete(request)


# ============================================================
# SETTLEMENT / CANCELLATION
# ============================================================

async def mark_paid(db: AsyncSession, workspace_id: str, bounty_id: str, actor: CurrentUser) -> Bounty:
    member = await get_membership(db, workspace_id, actor.pubkey)
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace owners and admins can mark bounties as paid")
    bounty = await load_bounty(db, bounty_id, workspace_id)
    _authorize_steps(bounty, actor, member, [BountyStatus.PAID])

    async with atomic(db):
        await apply_transition(db, bounty, BountyStatus.PAID, actor.pubkey)
    return bounty


async def complete_bounty(db: AsyncSession, workspace_id: str, bounty_id: str, actor: CurrentUser) -> Bounty:
    """Settle (if still IN_REVIEW) and complete a bounty in one transaction"""
    member = await get_membership(db, workspace_id, actor.pubkey)
    if not is_workspace_admin(member):
        raise ForbiddenError("Only workspace owners and admins can complete bounties")
    bounty = await load_bounty(db, bounty_id, workspace_id)

    if bounty.status == BountyStatus.IN_REVIEW:
        steps = [BountyStatus.PAID, BountyStatus.COMPLETED]
    elif bounty.status == BountyStatus.PAID:
        steps = [BountyStatus.COMPLETED]
    else:
        raise InvalidTransitionError(bounty.status, BountyStatus.COMPLETED)
    _authorize_steps(bounty, actor, member, steps)

    async with atomic(db):
        for target in steps:
            await apply_transition(db, bounty, target, actor.pubkey)
    return bounty


def _authorize_steps(bounty: Bounty, actor: CurrentUser, member, targets: List[BountyStatus]) -> None:
    source = BountyStatus(bounty.status)
    for target in targets:
        transition = validate_transition(source, target)
        authorize_transition(
            transition, member.role if member else None, bounty.creator_pubkey == actor.pubkey,
            actor.pubkey, bounty.assignee_pubkey,
        )
        source = target


async def cancel_bounty(
    db: AsyncSession, workspace_id: str, bounty_id: str, actor: CurrentUser, reason: Optional[str] = None,
) -> Bounty:
    bounty = await load_bounty(db, bounty_id, workspace_id)
    member = await get_membership(db, workspace_id, actor.pubkey)
    transition = validate_transition(bounty.status, BountyStatus.CANCELLED)
    authorize_transition(
        transition, member.role if member else None, bounty.creator_pubkey == actor.pubkey,
    )

    details: Dict[str, Any] = {}
    if reason:
        details["reason"] = reason
    if bounty.assignee_pubkey:
        details["previousAssigneePubkey"] = bounty.assignee_pubkey
    async with atomic(db):
        await apply_transition(db, bounty, BountyStatus.CANCELLED, actor.pubkey, details=details)
    return bounty
