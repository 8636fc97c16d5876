# activity_log.py — Append-only audit trail for bounties and workspaces
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from logging_system import log_audit
from models import (
    BountyActivity, BountyActivityAction,
    WorkspaceActivity, WorkspaceActivityAction,
)


def _plain(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Enum members are stored by value so the JSON column stays portable"""
    if details is None:
        return None
    out = {}
    for key, value in details.items():
        if hasattr(value, "value"):
            value = value.value
        elif isinstance(value, dict):
            value = _plain(value)
        out[key] = value
    return out


async def record_bounty_activity(
    db: AsyncSession,
    bounty_id: str,
    user_pubkey: str,
    action: BountyActivityAction,
    details: Optional[Dict[str, Any]] = None,
) -> BountyActivity:
    """Append a bounty activity row to the caller's open transaction"""
    entry = BountyActivity(
        bounty_id=bounty_id,
        user_pubkey=user_pubkey,
        action=action,
        details=_plain(details),
    )
    db.add(entry)
    log_audit(action.value, f"bounty:{bounty_id}", metadata=_plain(details) or {})
    return entry


async def record_workspace_activity(
    db: AsyncSession,
    workspace_id: str,
    user_pubkey: str,
    action: WorkspaceActivityAction,
    details: Optional[Dict[str, Any]] = None,
) -> WorkspaceActivity:
    entry = WorkspaceActivity(
        workspace_id=workspace_id,
        user_pubkey=user_pubkey,
        action=action,
        details=_plain(details),
    )
    db.add(entry)
    log_audit(action.value, f"workspace:{workspace_id}", metadata=_plain(details) or {})
    return entry
