# routers/proofs.py — Proof-of-work submission and review
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

import bounty_workflows
from auth import CurrentUser, get_current_user, require_workspace_role
from database import get_db_session
from responses import CamelModel, PageParams, api_success, page_params, pagination_meta
from schemas import BountyOut, ProofOut

router = APIRouter(prefix="/api/v1/bounties/{bounty_id}/proofs", tags=["Proofs"])


class ProofSubmit(CamelModel):
    proof_url: str = Field(..., min_length=1, max_length=2048)
    description: str = Field(..., min_length=10, max_length=5000)


class ProofReview(CamelModel):
    approved: bool
    feedback: Optional[str] = Field(None, max_length=5000)


@router.post("", status_code=201)
async def submit_proof(
    bounty_id: str,
    body: ProofSubmit,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Assignee submits proof; the bounty moves to IN_REVIEW"""
    proof, bounty = await bounty_workflows.submit_proof(db, bounty_id, user, body.proof_url, body.description)
    return api_success(
        {"proof": ProofOut.model_validate(proof), "bounty": BountyOut.model_validate(bounty)},
        status=201,
    )


@router.get("")
async def list_proofs(
    bounty_id: str,
    page: PageParams = Depends(page_params),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.load_bounty(db, bounty_id)
    await require_workspace_role(db, bounty.workspace_id, user)
    proofs, total = await bounty_workflows.list_proofs(db, bounty.id, page.offset, page.page_size)
    return api_success(
        [ProofOut.model_validate(p) for p in proofs],
        pagination=pagination_meta(page, total),
    )


@router.patch("/{proof_id}")
async def review_proof(
    bounty_id: str,
    proof_id: str,
    body: ProofReview,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Accept or reject a pending proof (workspace admins and owners)"""
    proof, bounty = await bounty_workflows.review_proof(
        db, bounty_id, proof_id, user, body.approved, body.feedback,
    )
    return api_success({"proof": ProofOut.model_validate(proof), "bounty": BountyOut.model_validate(bounty)})


@router.delete("/{proof_id}")
async def delete_proof(
    bounty_id: str,
    proof_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    bounty = await bounty_workflows.delete_proof(db, bounty_id, proof_id, user)
    return api_success({"id": proof_id, "deleted": True, "bounty": BountyOut.model_validate(bounty)})
