# models.py — Database models for the bounty marketplace
# - UUID string primary keys everywhere
# - Workspace roles (OWNER > ADMIN > CONTRIBUTOR > VIEWER)
# - Budget conservation enforced by CHECK constraints
# - Soft deletes on users, workspaces, bounties and comments
# - Append-only activity tables (bounty + workspace)
# - One assignment request per (bounty, requester)

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, BigInteger, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# Postgres BIGINT is signed
MAX_SATS = 2**63 - 1


# ============================================================
# ENUMS
# ============================================================

class WorkspaceRole(str, PyEnum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    CONTRIBUTOR = "CONTRIBUTOR"
    VIEWER = "VIEWER"


class BountyStatus(str, PyEnum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    IN_REVIEW = "IN_REVIEW"
    COMPLETED = "COMPLETED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class ProofStatus(str, PyEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class BountyRequestStatus(str, PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class BountyActivityAction(str, PyEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    ASSIGNED = "ASSIGNED"
    UNASSIGNED = "UNASSIGNED"
    PROOF_SUBMITTED = "PROOF_SUBMITTED"
    PROOF_REVIEWED = "PROOF_REVIEWED"
    COMPLETED = "COMPLETED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REQUESTED = "REQUESTED"
    REQUEST_APPROVED = "REQUEST_APPROVED"
    REQUEST_REJECTED = "REQUEST_REJECTED"


class WorkspaceActivityAction(str, PyEnum):
    MEMBER_ADDED = "MEMBER_ADDED"
    MEMBER_REMOVED = "MEMBER_REMOVED"
    ROLE_CHANGED = "ROLE_CHANGED"
    BUDGET_DEPOSITED = "BUDGET_DEPOSITED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"


class TransactionType(str, PyEnum):
    DEPOSIT = "DEPOSIT"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


class TransactionStatus(str, PyEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Statuses in which a bounty must carry an assignee
ASSIGNED_STATUSES = frozenset({
    BountyStatus.ASSIGNED,
    BountyStatus.IN_REVIEW,
    BountyStatus.COMPLETED,
    BountyStatus.PAID,
})

# Statuses in which the bounty amount is held in reservedBudget
RESERVING_STATUSES = frozenset({BountyStatus.ASSIGNED, BountyStatus.IN_REVIEW})


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    pubkey = Column(String(66), unique=True, nullable=False, index=True)
    username = Column(String(20), unique=True, nullable=False, index=True)
    alias = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    avatar_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    last_login = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    memberships = relationship("WorkspaceMember", back_populates="user")


# ============================================================
# WORKSPACES
# ============================================================

class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(50), nullable=False, index=True)
    owner_pubkey = Column(String(66), ForeignKey("users.pubkey"), nullable=False, index=True)
    description = Column(String(120), nullable=True)
    mission = Column(Text, nullable=True)
    avatar_url = Column(String(2048), nullable=True)
    website_url = Column(String(2048), nullable=True)
    github_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    members = relationship("WorkspaceMember", back_populates="workspace", cascade="all, delete-orphan")
    budget = relationship("WorkspaceBudget", back_populates="workspace", uselist=False, cascade="all, delete-orphan")
    bounties = relationship("Bounty", back_populates="workspace", cascade="all, delete-orphan")


class WorkspaceMember(Base):
    """Junction between a workspace and a user, carrying the member's role"""
    __tablename__ = "workspace_members"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_pubkey = Column(String(66), ForeignKey("users.pubkey", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(WorkspaceRole), default=WorkspaceRole.CONTRIBUTOR, nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_pubkey", name="uq_member_workspace_user"),
    )


class WorkspaceBudget(Base):
    """Sat ledger of a workspace: total == available + reserved + paid"""
    __tablename__ = "workspace_budgets"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), unique=True, nullable=False)
    total_budget = Column(BigInteger, nullable=False, default=0)
    available_budget = Column(BigInteger, nullable=False, default=0)
    reserved_budget = Column(BigInteger, nullable=False, default=0)
    paid_budget = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    workspace = relationship("Workspace", back_populates="budget")

    __table_args__ = (
        CheckConstraint("available_budget >= 0", name="ck_budget_available_non_negative"),
        CheckConstraint("reserved_budget >= 0", name="ck_budget_reserved_non_negative"),
        CheckConstraint("paid_budget >= 0", name="ck_budget_paid_non_negative"),
        CheckConstraint(
            "total_budget = available_budget + reserved_budget + paid_budget",
            name="ck_budget_conservation",
        ),
    )


class WorkspaceActivity(Base):
    """Workspace-level audit trail (append-only: rows are never updated or deleted)"""
    __tablename__ = "workspace_activities"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_pubkey = Column(String(66), nullable=False)
    action = Column(SQLEnum(WorkspaceActivityAction), nullable=False)
    details = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_ws_activity_time", "workspace_id", "timestamp"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    bounty_id = Column(String, ForeignKey("bounties.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(SQLEnum(TransactionType), nullable=False)
    amount = Column(BigInteger, nullable=False)
    from_user_pubkey = Column(String(66), nullable=True)
    to_user_pubkey = Column(String(66), nullable=True)
    status = Column(SQLEnum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    memo = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


# ============================================================
# BOUNTIES
# ============================================================

class Bounty(Base):
    """Paid task posted by a workspace"""
    __tablename__ = "bounties"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_pubkey = Column(String(66), ForeignKey("users.pubkey"), nullable=False, index=True)
    assignee_pubkey = Column(String(66), ForeignKey("users.pubkey"), nullable=True, index=True)

    # Core fields
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    deliverables = Column(Text, nullable=False)
    amount = Column(BigInteger, nullable=False)
    status = Column(SQLEnum(BountyStatus), default=BountyStatus.DRAFT, nullable=False, index=True)
    tags = Column(JSON, default=list)
    estimated_hours = Column(Integer, nullable=True)
    github_issue_url = Column(String(2048), nullable=True)
    loom_video_url = Column(String(2048), nullable=True)

    # Lifecycle timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    workspace = relationship("Workspace", back_populates="bounties")
    creator = relationship("User", foreign_keys=[creator_pubkey])
    assignee = relationship("User", foreign_keys=[assignee_pubkey])
    proofs = relationship("BountyProof", back_populates="bounty", order_by="BountyProof.created_at.desc()")
    requests = relationship("BountyRequest", back_populates="bounty", order_by="BountyRequest.created_at.desc()")
    comments = relationship("BountyComment", back_populates="bounty", order_by="BountyComment.created_at.desc()")
    activities = relationship("BountyActivity", back_populates="bounty", order_by="BountyActivity.timestamp.desc()")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bounty_amount_positive"),
        Index("idx_bounty_workspace_status", "workspace_id", "status"),
    )


class BountyProof(Base):
    """Proof of work submitted against a bounty"""
    __tablename__ = "bounty_proofs"

    id = Column(String, primary_key=True, default=new_uuid)
    bounty_id = Column(String, ForeignKey("bounties.id", ondelete="CASCADE"), nullable=False, index=True)
    submitted_by_pubkey = Column(String(66), ForeignKey("users.pubkey"), nullable=False)
    description = Column(Text, nullable=False)
    proof_url = Column(String(2048), nullable=False)
    status = Column(SQLEnum(ProofStatus), default=ProofStatus.PENDING, nullable=False, index=True)
    review_notes = Column(Text, nullable=True)
    reviewed_by_pubkey = Column(String(66), ForeignKey("users.pubkey"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    bounty = relationship("Bounty", back_populates="proofs")
    submitter = relationship("User", foreign_keys=[submitted_by_pubkey])
    reviewer = relationship("User", foreign_keys=[reviewed_by_pubkey])


class BountyRequest(Base):
    """A member asking to be assigned an OPEN bounty"""
    __tablename__ = "bounty_requests"

    id = Column(String, primary_key=True, default=new_uuid)
    bounty_id = Column(String, ForeignKey("bounties.id", ondelete="CASCADE"), nullable=False, index=True)
    requester_pubkey = Column(String(66), ForeignKey("users.pubkey", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(BountyRequestStatus), default=BountyRequestStatus.PENDING, nullable=False, index=True)
    message = Column(Text, nullable=True)
    reviewed_by_pubkey = Column(String(66), ForeignKey("users.pubkey"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    bounty = relationship("Bounty", back_populates="requests")
    requester = relationship("User", foreign_keys=[requester_pubkey])

    __table_args__ = (
        UniqueConstraint("bounty_id", "requester_pubkey", name="uq_bounty_request_requester"),
    )


class BountyComment(Base):
    __tablename__ = "bounty_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    bounty_id = Column(String, ForeignKey("bounties.id", ondelete="CASCADE"), nullable=False, index=True)
    author_pubkey = Column(String(66), ForeignKey("users.pubkey"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    bounty = relationship("Bounty", back_populates="comments")
    author = relationship("User", foreign_keys=[author_pubkey])

    __table_args__ = (
        Index("idx_bounty_comment_time", "bounty_id", "created_at"),
    )


class BountyActivity(Base):
    """Bounty audit trail (append-only: rows are never updated or deleted)"""
    __tablename__ = "bounty_activities"

    id = Column(String, primary_key=True, default=new_uuid)
    bounty_id = Column(String, ForeignKey("bounties.id", ondelete="CASCADE"), nullable=False, index=True)
    user_pubkey = Column(String(66), nullable=False)
    action = Column(SQLEnum(BountyActivityAction), nullable=False, index=True)
    details = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow)

    bounty = relationship("Bounty", back_populates="activities")

    __table_args__ = (
        Index("idx_bounty_activity_time", "bounty_id", "timestamp"),
    )
