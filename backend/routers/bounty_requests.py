# routers/bounty_requests.py — Members asking to be assigned an OPEN bounty
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

import bounty_workflows
from auth import CurrentUser, get_current_user
from database import get_db_session
from models import BountyRequestStatus
from responses import CamelModel, PageParams, api_success, page_params, pagination_meta
from schemas import BountyOut, BountyRequestOut

router = APIRouter(prefix="/api/v1/bounties/{bounty_id}/requests", tags=["Bounty Requests"])


class RequestCreate(CamelModel):
    message: Optional[str] = Field(None, max_length=1000)


class RequestReview(CamelModel):
    action: Literal["approve", "reject"]
    review_note: Optional[str] = Field(None, max_length=500)


@router.post("", status_code=201)
async def create_request(
    bounty_id: str,
    body: Optional[RequestCreate] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    request = await bounty_workflows.request_assignment(
        db, bounty_id, user, body.message if body else None,
    )
    return api_success(BountyRequestOut.model_validate(request), status=201)


@router.get("")
async def list_requests(
    bounty_id: str,
    status: Optional[BountyRequestStatus] = Query(None),
    page: PageParams = Depends(page_params),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Requests for a bounty, newest first (workspace admins and owners)"""
    requests, total = await bounty_workflows.list_requests(
        db, bounty_id, user, page.offset, page.page_size, status,
    )
    return api_success(
        [BountyRequestOut.model_validate(r) for r in requests],
        pagination=pagination_meta(page, total),
    )


@router.patch("/{request_id}")
async def review_request(
    bounty_id: str,
    request_id: str,
    body: RequestReview,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Approving assigns the bounty to the requester and reserves its amount"""
    request, bounty = await bounty_workflows.review_request(
        db, bounty_id, request_id, user, body.action == "approve", body.review_note,
    )
    return api_success({
        "request": BountyRequestOut.model_validate(request),
        "bounty": BountyOut.model_validate(bounty),
    })


@router.delete("/{request_id}")
async def withdraw_request(
    bounty_id: str,
    request_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await bounty_workflows.withdraw_request(db, bounty_id, request_id, user)
    return api_success({"id": request_id, "deleted": True})
