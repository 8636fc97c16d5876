# schemas.py — Response models shared by several routers
from datetime import datetime
from typing import Any, Dict, List, Optional

from responses import CamelModel
from models import (
    BountyActivityAction, BountyRequestStatus, BountyStatus, ProofStatus, TransactionStatus,
    TransactionType, WorkspaceActivityAction, WorkspaceRole,
)


class UserOut(CamelModel):
    id: str
    pubkey: str
    username: str
    alias: Optional[str] = None
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class BountyOut(CamelModel):
    id: str
    workspace_id: str
    creator_pubkey: str
    assignee_pubkey: Optional[str] = None
    title: str
    description: str
    deliverables: str
    amount: int
    status: BountyStatus
    tags: List[str] = []
    estimated_hours: Optional[int] = None
    github_issue_url: Optional[str] = None
    loom_video_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class ProofOut(CamelModel):
    id: str
    bounty_id: str
    submitted_by_pubkey: str
    description: str
    proof_url: str
    status: ProofStatus
    review_notes: Optional[str] = None
    reviewed_by_pubkey: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BountyRequestOut(CamelModel):
    id: str
    bounty_id: str
    requester_pubkey: str
    status: BountyRequestStatus
    message: Optional[str] = None
    reviewed_by_pubkey: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CommentOut(CamelModel):
    id: str
    bounty_id: str
    author_pubkey: str
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BountyActivityOut(CamelModel):
    id: str
    bounty_id: str
    user_pubkey: str
    action: BountyActivityAction
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


class BountyDetailOut(BountyOut):
    proofs: List[ProofOut] = []
    activities: List[BountyActivityOut] = []


class BudgetOut(CamelModel):
    workspace_id: str
    total_budget: int
    available_budget: int
    reserved_budget: int
    paid_budget: int
    updated_at: Optional[datetime] = None


class WorkspaceOut(CamelModel):
    id: str
    name: str
    owner_pubkey: str
    description: Optional[str] = None
    mission: Optional[str] = None
    avatar_url: Optional[str] = None
    website_url: Optional[str] = None
    github_url: Optional[str] = None
    created_at: Optional[datetime] = None


class WorkspaceDetailOut(WorkspaceOut):
    role: Optional[WorkspaceRole] = None
    member_count: int = 0
    budget: Optional[BudgetOut] = None


class MemberOut(CamelModel):
    id: str
    workspace_id: str
    user_pubkey: str
    role: WorkspaceRole
    joined_at: Optional[datetime] = None
    username: Optional[str] = None


class TransactionOut(CamelModel):
    id: str
    workspace_id: str
    bounty_id: Optional[str] = None
    type: TransactionType
    amount: int
    from_user_pubkey: Optional[str] = None
    to_user_pubkey: Optional[str] = None
    status: TransactionStatus
    memo: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkspaceActivityOut(CamelModel):
    id: str
    workspace_id: str
    user_pubkey: str
    action: WorkspaceActivityAction
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


MAX_TAGS = 5


def normalize_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    """Strip, drop duplicates (first spelling wins) and bound the tag list"""
    if tags is None:
        return None
    seen = set()
    out: List[str] = []
    for tag in tags:
        tag = tag.strip()
        if not 2 <= len(tag) <= 30:
            raise ValueError("Each tag must be between 2 and 30 characters")
        if tag.lower() in seen:
            continue
        seen.add(tag.lower())
        out.append(tag)
    if len(out) > MAX_TAGS:
        raise ValueError(f"A bounty can have at most {MAX_TAGS} tags")
    return out
