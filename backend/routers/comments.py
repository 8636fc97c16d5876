# routers/comments.py — Discussion thread on a bounty
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field, field_validator
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

import bounty_workflows
from auth import CurrentUser, get_current_user, get_membership, get_optional_user, is_workspace_admin
from database import atomic, get_db_session
from errors import ForbiddenError, NotFoundError
from models import BountyComment, new_uuid, utcnow
from responses import CamelModel, PageParams, api_success, page_params, pagination_meta
from schemas import CommentOut

router = APIRouter(prefix="/api/v1/bounties/{bounty_id}/comments", tags=["Comments"])


# --- Schemas ---

class CommentBody(CamelModel):
    content: str = Field(..., max_length=5000)

    @field_validator("content")
    @classmethod
    def _content(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Comment cannot be empty")
        return value


# --- Helpers ---

async def _get_comment(db: AsyncSession, bounty_id: str, comment_id: str) -> BountyComment:
    result = await db.execute(
        select(BountyComment).where(
            BountyComment.id == comment_id,
            BountyComment.bounty_id == bounty_id,
            BountyComment.deleted_at.is_(None),
        )
    )
    comment = result.scalar_one_or_none()
    if not comment:
        raise NotFoundError("Comment")
    return comment


# --- Endpoints ---

@router.get("")
async def list_comments(
    bounty_id: str,
    page: PageParams = Depends(page_params),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.load_visible_bounty(db, bounty_id, user)
    filters = [BountyComment.bounty_id == bounty.id, BountyComment.deleted_at.is_(None)]
    total = (await db.execute(select(func.count(BountyComment.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(BountyComment)
        .where(*filters)
        .order_by(BountyComment.created_at.desc())
        .offset(page.offset)
        .limit(page.page_size)
    )
    comments = [CommentOut.model_validate(c) for c in result.scalars().all()]
    return api_success(comments, pagination=pagination_meta(page, total))


@router.post("", status_code=201)
async def create_comment(
    bounty_id: str,
    body: CommentBody,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.load_bounty(db, bounty_id)
    if await get_membership(db, bounty.workspace_id, user.pubkey) is None:
        raise ForbiddenError("You must be a workspace member to comment")

    comment = BountyComment(id=new_uuid(), bounty_id=bounty.id, author_pubkey=user.pubkey, content=body.content)
    async with atomic(db):
        db.add(comment)
    return api_success(CommentOut.model_validate(comment), status=201)


@router.patch("/{comment_id}")
async def edit_comment(
    bounty_id: str,
    comment_id: str,
    body: CommentBody,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment = await _get_comment(db, bounty_id, comment_id)
    if comment.author_pubkey != user.pubkey:
        raise ForbiddenError("You can only edit your own comments")
    async with atomic(db):
        comment.content = body.content
        comment.updated_at = utcnow()
    return api_success(CommentOut.model_validate(comment))


@router.delete("/{comment_id}")
async def delete_comment(
    bounty_id: str,
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Soft delete by the author or a workspace admin"""
    comment = await _get_comment(db, bounty_id, comment_id)
    if comment.author_pubkey != user.pubkey:
        bounty = await bounty_workflows.load_bounty(db, bounty_id)
        if not is_workspace_admin(await get_membership(db, bounty.workspace_id, user.pubkey)):
            raise ForbiddenError("You can only delete your own comments unless you are a workspace admin")

    now = utcnow()
    async with atomic(db):
        await db.execute(
            update(BountyComment)
            .where(BountyComment.id == comment.id)
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(comment, "deleted_at", now)
    return api_success({"id": comment.id, "deleted": True})
