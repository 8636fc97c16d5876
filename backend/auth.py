# auth.py — Caller identity & workspace RBAC for the bounty service
# Features:
# - Upstream-verified identity header (x-user-pubkey)
# - Session tokens (HS256 JWT, sub = pubkey) for direct API clients
# - Total-ordered workspace roles (OWNER > ADMIN > CONTRIBUTOR > VIEWER)
# - Membership lookup + role gates shared by every router

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import UnauthorizedError, ForbiddenError, NotFoundError
from logging_system import bind_user, log_security
from models import User, Workspace, WorkspaceMember, WorkspaceRole

logger = logging.getLogger("bounties.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
SESSION_TOKEN_EXPIRE_MINUTES = int(os.getenv("SESSION_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))
TRUST_IDENTITY_HEADER = os.getenv("TRUST_IDENTITY_HEADER", "true").lower() == "true"
IDENTITY_HEADER = "x-user-pubkey"

security = HTTPBearer(auto_error=False)


# ============================================================
# ROLE HIERARCHY
# ============================================================

WORKSPACE_ROLE_HIERARCHY = {
    WorkspaceRole.OWNER: 4,
    WorkspaceRole.ADMIN: 3,
    WorkspaceRole.CONTRIBUTOR: 2,
    WorkspaceRole.VIEWER: 1,
}


def has_at_least_role(actual: Optional[WorkspaceRole], required: WorkspaceRole) -> bool:
    """True when ``actual`` ranks at or above ``required``. No role ranks below everything."""
    if actual is None:
        return False
    return WORKSPACE_ROLE_HIERARCHY[WorkspaceRole(actual)] >= WORKSPACE_ROLE_HIERARCHY[required]


def is_workspace_admin(member: Optional[WorkspaceMember]) -> bool:
    return member is not None and has_at_least_role(member.role, WorkspaceRole.ADMIN)


# ============================================================
# SCHEMAS
# ============================================================

class CurrentUser(BaseModel):
    id: str
    pubkey: str
    username: str


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Session token issuance and verification"""

    @staticmethod
    def create_session_token(pubkey: str, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        to_encode: Dict[str, Any] = {
            "sub": pubkey,
            "iat": now,
            "exp": now + (expires_delta or timedelta(minutes=SESSION_TOKEN_EXPIRE_MINUTES)),
            "type": "session",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise UnauthorizedError("Session expired")
        except JWTError:
            raise UnauthorizedError("Invalid session token")
        if payload.get("type") != "session" or not payload.get("sub"):
            raise UnauthorizedError("Invalid session token")
        return payload


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def _resolve_pubkey(
    x_user_pubkey: Optional[str],
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    if credentials is not None:
        return AuthService.verify_token(credentials.credentials)["sub"]
    if x_user_pubkey and TRUST_IDENTITY_HEADER:
        return x_user_pubkey
    return None


async def _load_user(pubkey: str, db: AsyncSession) -> Optional[User]:
    stmt = select(User).where(User.pubkey == pubkey, User.deleted_at.is_(None))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_current_user(
    x_user_pubkey: Optional[str] = Header(None, alias=IDENTITY_HEADER),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    pubkey = await _resolve_pubkey(x_user_pubkey, credentials)
    if not pubkey:
        raise UnauthorizedError("Authentication required")

    user = await _load_user(pubkey, db)
    if not user:
        log_security("unknown_identity", metadata={"pubkey": pubkey})
        raise UnauthorizedError("User not found or inactive")

    bind_user(user.pubkey)
    return CurrentUser(id=user.id, pubkey=user.pubkey, username=user.username)


async def get_identity_pubkey(
    x_user_pubkey: Optional[str] = Header(None, alias=IDENTITY_HEADER),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Verified pubkey of a caller that may not have a profile yet"""
    pubkey = await _resolve_pubkey(x_user_pubkey, credentials)
    if not pubkey:
        raise UnauthorizedError("Authentication required")
    bind_user(pubkey)
    return pubkey


async def get_optional_user(
    x_user_pubkey: Optional[str] = Header(None, alias=IDENTITY_HEADER),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[CurrentUser]:
    """Identity for public reads: anonymous callers get None instead of 401"""
    pubkey = await _resolve_pubkey(x_user_pubkey, credentials)
    if not pubkey:
        return None
    user = await _load_user(pubkey, db)
    if not user:
        return None
    bind_user(user.pubkey)
    return CurrentUser(id=user.id, pubkey=user.pubkey, username=user.username)


# ============================================================
# MEMBERSHIP HELPERS
# ============================================================

async def get_membership(db: AsyncSession, workspace_id: str, pubkey: str) -> Optional[WorkspaceMember]:
    stmt = select(WorkspaceMember).where(
        WorkspaceMember.workspace_id == workspace_id,
        WorkspaceMember.user_pubkey == pubkey,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_workspace(db: AsyncSession, workspace_id: str) -> Workspace:
    stmt = select(Workspace).where(Workspace.id == workspace_id, Workspace.deleted_at.is_(None))
    result = await db.execute(stmt)
    workspace = result.scalar_one_or_none()
    if not workspace:
        raise NotFoundError("Workspace")
    return workspace


async def require_workspace_role(
    db: AsyncSession,
    workspace_id: str,
    user: CurrentUser,
    min_role: WorkspaceRole = WorkspaceRole.VIEWER,
    message: Optional[str] = None,
) -> WorkspaceMember:
    """Membership of ``user`` in the workspace, ranked at least ``min_role``"""
    member = await get_membership(db, workspace_id, user.pubkey)
    if member is None:
        raise ForbiddenError("Access denied to this workspace")
    if not has_at_least_role(member.role, min_role):
        raise ForbiddenError(message or "Insufficient workspace role")
    return member
