# bounty_lifecycle.py — Bounty status state machine
"""
The transition table below is the single source of truth for bounty status
changes. Each entry names who may trigger it and the side effects applied
inside the caller's transaction:

    DRAFT      -> OPEN, CANCELLED
    OPEN       -> ASSIGNED, CANCELLED
    ASSIGNED   -> OPEN, IN_REVIEW, CANCELLED
    IN_REVIEW  -> ASSIGNED, PAID, CANCELLED
    PAID       -> COMPLETED
    COMPLETED  -> (terminal)
    CANCELLED  -> (terminal)

The status flip itself is a conditional UPDATE guarded by the status the
caller observed, so of two racing requests for the same bounty only one can
win; the loser gets a ValidationError and its whole transaction rolls back.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

import budget_ledger
from activity_log import record_bounty_activity
from auth import has_at_least_role
from errors import (
    ValidationError, InvalidTransitionError, ForbiddenError, ConflictError, InvalidStateError,
)
from models import (
    Bounty, BountyProof, BountyStatus, BountyActivityAction, ProofStatus,
    Transaction, TransactionStatus, TransactionType, WorkspaceRole,
    ASSIGNED_STATUSES, RESERVING_STATUSES, utcnow,
)


class Authority(str, Enum):
    """Who may request a transition"""
    CREATOR_OR_ADMIN = "creator_or_admin"
    # ADMIN/OWNER for any member, CONTRIBUTOR and above for themselves
    CLAIM = "claim"
    ADMIN = "admin"


class Effect(str, Enum):
    REQUIRE_ASSIGNEE = "require_assignee"
    REQUIRE_ACCEPTED_PROOF = "require_accepted_proof"
    RESERVE = "reserve"
    RELEASE = "release"
    SETTLE = "settle"
    CLEAR_ASSIGNEE = "clear_assignee"
    CLOSE_PENDING_PROOFS = "close_pending_proofs"
    STAMP_ASSIGNED = "stamp_assigned"
    STAMP_PAID = "stamp_paid"
    STAMP_COMPLETED = "stamp_completed"


@dataclass(frozen=True)
class Transition:
    source: BountyStatus
    target: BountyStatus
    authority: Authority
    activity: BountyActivityAction
    effects: Tuple[Effect, ...] = ()
    # The current assignee may not trigger it, whatever their role
    excludes_assignee: bool = False


S = BountyStatus
E = Effect

TRANSITIONS: Dict[Tuple[BountyStatus, BountyStatus], Transition] = {
    (t.source, t.target): t
    for t in (
        Transition(S.DRAFT, S.OPEN, Authority.CREATOR_OR_ADMIN, BountyActivityAction.UPDATED),
        Transition(S.DRAFT, S.CANCELLED, Authority.CREATOR_OR_ADMIN, BountyActivityAction.CANCELLED),
        Transition(S.OPEN, S.ASSIGNED, Authority.CLAIM, BountyActivityAction.ASSIGNED,
                   (E.REQUIRE_ASSIGNEE, E.RESERVE, E.STAMP_ASSIGNED)),
        Transition(S.OPEN, S.CANCELLED, Authority.CREATOR_OR_ADMIN, BountyActivityAction.CANCELLED),
        Transition(S.ASSIGNED, S.OPEN, Authority.ADMIN, BountyActivityAction.UNASSIGNED,
                   (E.RELEASE, E.CLEAR_ASSIGNEE)),
        Transition(S.ASSIGNED, S.IN_REVIEW, Authority.ADMIN, BountyActivityAction.UPDATED),
        Transition(S.ASSIGNED, S.CANCELLED, Authority.CREATOR_OR_ADMIN, BountyActivityAction.CANCELLED,
                   (E.RELEASE, E.CLEAR_ASSIGNEE)),
        Transition(S.IN_REVIEW, S.ASSIGNED, Authority.ADMIN, BountyActivityAction.UPDATED,
                   (E.CLOSE_PENDING_PROOFS,), excludes_assignee=True),
        Transition(S.IN_REVIEW, S.PAID, Authority.ADMIN, BountyActivityAction.PAID,
                   (E.REQUIRE_ACCEPTED_PROOF, E.SETTLE, E.STAMP_PAID), excludes_assignee=True),
        Transition(S.IN_REVIEW, S.CANCELLED, Authority.CREATOR_OR_ADMIN, BountyActivityAction.CANCELLED,
                   (E.CLOSE_PENDING_PROOFS, E.RELEASE, E.CLEAR_ASSIGNEE)),
        Transition(S.PAID, S.COMPLETED, Authority.ADMIN, BountyActivityAction.COMPLETED,
                   (E.STAMP_COMPLETED,), excludes_assignee=True),
    )
}

TERMINAL_STATUSES: FrozenSet[BountyStatus] = frozenset({S.COMPLETED, S.CANCELLED})
DELETABLE_STATUSES: FrozenSet[BountyStatus] = frozenset({S.DRAFT, S.OPEN, S.CANCELLED})
CREATABLE_STATUSES: FrozenSet[BountyStatus] = frozenset({S.DRAFT, S.OPEN})
# Field edits by a creator who is not a workspace admin
CREATOR_EDITABLE_STATUSES: FrozenSet[BountyStatus] = frozenset({S.DRAFT, S.OPEN})
# Amount is frozen once the payout is settled or the bounty is cancelled
AMOUNT_FROZEN_STATUSES: FrozenSet[BountyStatus] = frozenset({S.PAID, S.COMPLETED, S.CANCELLED})


def allowed_targets(source: BountyStatus) -> FrozenSet[BountyStatus]:
    return frozenset(target for (src, target) in TRANSITIONS if src == BountyStatus(source))


def validate_transition(source: BountyStatus, target: BountyStatus) -> Transition:
    transition = TRANSITIONS.get((BountyStatus(source), BountyStatus(target)))
    if transition is None:
        raise InvalidTransitionError(source, target)
    return transition


def can_transition(source: BountyStatus, target: BountyStatus) -> bool:
    return (BountyStatus(source), BountyStatus(target)) in TRANSITIONS


# ============================================================
# AUTHORIZATION
# ============================================================

def authorize_transition(
    transition: Transition,
    role: Optional[WorkspaceRole],
    is_creator: bool,
    actor_pubkey: Optional[str] = None,
    assignee_pubkey: Optional[str] = None,
) -> None:
    is_admin = has_at_least_role(role, WorkspaceRole.ADMIN)
    if transition.excludes_assignee and assignee_pubkey and assignee_pubkey == actor_pubkey:
        raise ForbiddenError(
            f"The assignee cannot move their own bounty to {transition.target.value}"
        )
    if transition.authority is Authority.CREATOR_OR_ADMIN:
        if is_admin or is_creator:
            return
        raise ForbiddenError(
            f"Only the creator or a workspace admin can move a bounty to {transition.target.value}"
        )
    if transition.authority is Authority.CLAIM:
        if is_admin:
            return
        if assignee_pubkey and assignee_pubkey == actor_pubkey and has_at_least_role(role, WorkspaceRole.CONTRIBUTOR):
            return
        raise ForbiddenError("Only workspace admins can assign bounties to other members")
    if not is_admin:
        raise ForbiddenError(
            f"Only workspace admins or owners can move a bounty to {transition.target.value}"
        )


def authorize_edit(
    status: BountyStatus,
    role: Optional[WorkspaceRole],
    is_creator: bool,
    changes_amount: bool,
) -> None:
    status = BountyStatus(status)
    is_admin = has_at_least_role(role, WorkspaceRole.ADMIN)
    if changes_amount:
        if not is_admin:
            raise ForbiddenError("Only workspace admins or owners can change the bounty amount")
        if status in AMOUNT_FROZEN_STATUSES:
            raise ConflictError(f"Cannot change the amount of a {status.value} bounty")
        return
    if status in TERMINAL_STATUSES:
        raise ConflictError(f"Cannot edit a {status.value} bounty")
    if is_admin:
        return
    if is_creator and status in CREATOR_EDITABLE_STATUSES:
        return
    raise ForbiddenError("Only the creator or workspace admin can update this bounty")


def authorize_delete(status: BountyStatus, role: Optional[WorkspaceRole], is_creator: bool) -> None:
    if not is_creator and role != WorkspaceRole.OWNER:
        raise ForbiddenError("Only the creator or workspace owner can delete this bounty")
    if BountyStatus(status) not in DELETABLE_STATUSES:
        raise ConflictError("Cannot delete bounty that is assigned or in progress")


# ============================================================
# INVARIANTS
# ============================================================

def check_invariants(bounty: Bounty) -> None:
    """assignee is set exactly when the status implies someone holds the work"""
    has_assignee = bounty.assignee_pubkey is not None
    if has_assignee != (BountyStatus(bounty.status) in ASSIGNED_STATUSES):
        raise InvalidStateError(
            "Bounty assignee does not match its status",
            details={"status": BountyStatus(bounty.status).value, "assigneePubkey": bounty.assignee_pubkey},
        )


def _current_assignment_proofs(bounty: Bounty, status: ProofStatus):
    """Proofs the current assignee submitted since they were assigned"""
    stmt = select(func.count(BountyProof.id)).where(
        BountyProof.bounty_id == bounty.id,
        BountyProof.status == status,
        BountyProof.submitted_by_pubkey == bounty.assignee_pubkey,
    )
    if bounty.assigned_at is not None:
        stmt = stmt.where(BountyProof.created_at >= bounty.assigned_at)
    return stmt


async def has_accepted_proof(db: AsyncSession, bounty: Bounty) -> bool:
    if not bounty.assignee_pubkey:
        return False
    result = await db.execute(_current_assignment_proofs(bounty, ProofStatus.ACCEPTED))
    return (result.scalar() or 0) > 0


async def ensure_payable(db: AsyncSession, bounty: Bounty) -> None:
    """Payment needs an accepted proof from the current assignee and nothing left unreviewed"""
    if not await has_accepted_proof(db, bounty):
        raise ValidationError("Bounty must have an accepted proof from its assignee before payment")
    pending = await db.execute(
        select(func.count(BountyProof.id)).where(
            BountyProof.bounty_id == bounty.id,
            BountyProof.status == ProofStatus.PENDING,
        )
    )
    if (pending.scalar() or 0) > 0:
        raise ValidationError("Review the pending proof before paying out this bounty")


async def close_pending_proofs(db: AsyncSession, bounty_id: str, actor_pubkey: str) -> int:
    stmt = (
        update(BountyProof)
        .where(BountyProof.bounty_id == bounty_id, BountyProof.status == ProofStatus.PENDING)
        .values(
            status=ProofStatus.REJECTED,
            review_notes="Closed without review: bounty left review",
            reviewed_by_pubkey=actor_pubkey,
            reviewed_at=utcnow(),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount


# ============================================================
# MUTATIONS (run inside the caller's transaction)
# ============================================================

async def _guarded_update(db: AsyncSession, bounty: Bounty, guard, values: Dict[str, Any]) -> None:
    stmt = (
        update(Bounty)
        .where(Bounty.id == bounty.id, Bounty.deleted_at.is_(None), *guard)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        raise ValidationError(
            f"Bounty is not {BountyStatus(bounty.status).value}",
            details={"bountyId": bounty.id},
        )
    for key, value in values.items():
        set_committed_value(bounty, key, value)


async def apply_transition(
    db: AsyncSession,
    bounty: Bounty,
    target: BountyStatus,
    actor_pubkey: str,
    assignee_pubkey: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    record: bool = True,
) -> Transition:
    """Move ``bounty`` to ``target`` and apply the transition's side effects.

    Authorization is the caller's job; this only enforces the table.
    """
    source = BountyStatus(bounty.status)
    target = BountyStatus(target)
    transition = validate_transition(source, target)
    effects = transition.effects
    now = utcnow()

    values: Dict[str, Any] = {"status": target, "updated_at": now}
    if E.REQUIRE_ASSIGNEE in effects:
        if not assignee_pubkey:
            raise ValidationError("An assignee is required to assign a bounty")
        values["assignee_pubkey"] = assignee_pubkey
    if E.REQUIRE_ACCEPTED_PROOF in effects:
        await ensure_payable(db, bounty)
    if E.STAMP_ASSIGNED in effects:
        values["assigned_at"] = now
    if E.CLEAR_ASSIGNEE in effects:
        values["assignee_pubkey"] = None
        values["assigned_at"] = None
    if E.STAMP_PAID in effects:
        values["paid_at"] = now
    if E.STAMP_COMPLETED in effects:
        values["completed_at"] = now

    previous_assignee = bounty.assignee_pubkey
    await _guarded_update(db, bounty, [Bounty.status == source], values)

    if E.CLOSE_PENDING_PROOFS in effects:
        await close_pending_proofs(db, bounty.id, actor_pubkey)
    if E.RESERVE in effects:
        await budget_ledger.reserve(db, bounty.workspace_id, bounty.amount)
    if E.RELEASE in effects and source in RESERVING_STATUSES:
        await budget_ledger.release(db, bounty.workspace_id, bounty.amount)
    if E.SETTLE in effects:
        await budget_ledger.settle(db, bounty.workspace_id, bounty.amount)
        db.add(Transaction(
            workspace_id=bounty.workspace_id,
            bounty_id=bounty.id,
            type=TransactionType.PAYMENT,
            amount=bounty.amount,
            from_user_pubkey=actor_pubkey,
            to_user_pubkey=previous_assignee,
            status=TransactionStatus.COMPLETED,
            memo=f"Bounty payout: {bounty.title}",
            completed_at=now,
        ))

    check_invariants(bounty)

    if record:
        await record_bounty_activity(
            db, bounty.id, actor_pubkey, transition.activity,
            {"from": source, "to": target, **(details or {})},
        )
    return transition


async def change_amount(db: AsyncSession, bounty: Bounty, new_amount: int) -> int:
    """Set a new amount; a held reservation moves by the difference only"""
    old_amount = bounty.amount
    if new_amount == old_amount:
        return old_amount
    status = BountyStatus(bounty.status)
    if status in AMOUNT_FROZEN_STATUSES:
        raise ConflictError(f"Cannot change the amount of a {status.value} bounty")
    await _guarded_update(
        db, bounty,
        [Bounty.status == status, Bounty.amount == old_amount],
        {"amount": new_amount, "updated_at": utcnow()},
    )
    if status in RESERVING_STATUSES:
        await budget_ledger.adjust_reservation(db, bounty.workspace_id, old_amount, new_amount)
    return old_amount
