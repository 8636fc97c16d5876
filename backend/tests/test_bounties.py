# tests/test_bounties.py — Bounty detail, update, delete and admin assignment
import pytest
from httpx import AsyncClient

import budget_ledger
from models import BountyStatus

from tests.conftest import (
    BOUNTY_AMOUNT, FUNDED_BUDGET, create_bounty, get_auth_headers, pubkey_headers,
)


async def _budget(client: AsyncClient, workspace_id: str, user) -> dict:
    resp = await client.get(f"/api/v1/workspaces/{workspace_id}/budget", headers=get_auth_headers(user))
    assert resp.status_code == 200
    return resp.json()["data"]


async def _assign(client: AsyncClient, bounty_id: str, caller, assignee_pubkey: str):
    return await client.post(
        f"/api/v1/bounties/{bounty_id}/assign",
        json={"assigneePubkey": assignee_pubkey},
        headers=get_auth_headers(caller),
    )


# --- Assignment ---

@pytest.mark.asyncio
async def test_admin_assigns_open_bounty(client: AsyncClient, workspace, open_bounty, admin, contributor):
    """Assigning reserves the bounty amount and records the assignee"""
    resp = await _assign(client, open_bounty.id, admin, contributor.pubkey)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["bounty"]["status"] == "ASSIGNED"
    assert body["data"]["bounty"]["assigneePubkey"] == contributor.pubkey
    assert body["data"]["bounty"]["assignedAt"] is not None
    assert body["data"]["assignee"]["username"] == "contributor"

    budget = await _budget(client, workspace.id, admin)
    assert budget["availableBudget"] == FUNDED_BUDGET - BOUNTY_AMOUNT
    assert budget["reservedBudget"] == BOUNTY_AMOUNT
    assert budget["totalBudget"] == FUNDED_BUDGET

    activities = await client.get(
        f"/api/v1/bounties/{open_bounty.id}/activities", headers=get_auth_headers(admin),
    )
    assert [a["action"] for a in activities.json()["data"]] == ["ASSIGNED"]


@pytest.mark.asyncio
async def test_assign_with_insufficient_budget(client: AsyncClient, db_session, workspace, open_bounty, admin, contributor):
    """available 3000 < amount 5000: rejected and nothing changes"""
    await budget_ledger.reserve(db_session, workspace.id, FUNDED_BUDGET - 3_000)
    await db_session.commit()

    resp = await _assign(client, open_bounty.id, admin, contributor.pubkey)
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "INSUFFICIENT_BUDGET"
    assert error["message"] == "Insufficient available budget"

    detail = await client.get(f"/api/v1/bounties/{open_bounty.id}", headers=get_auth_headers(admin))
    assert detail.json()["data"]["status"] == "OPEN"
    assert detail.json()["data"]["assigneePubkey"] is None
    budget = await _budget(client, workspace.id, admin)
    assert budget["availableBudget"] == 3_000


@pytest.mark.asyncio
async def test_assign_exact_available_budget(client: AsyncClient, db_session, workspace, admin, contributor):
    """amount == available succeeds; one sat more fails"""
    exact = await create_bounty(db_session, workspace, admin, amount=FUNDED_BUDGET)
    over = await create_bounty(db_session, workspace, admin, amount=FUNDED_BUDGET + 1)

    resp = await _assign(client, over.id, admin, contributor.pubkey)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INSUFFICIENT_BUDGET"

    resp = await _assign(client, exact.id, admin, contributor.pubkey)
    assert resp.status_code == 200
    budget = await _budget(client, workspace.id, admin)
    assert budget["availableBudget"] == 0
    assert budget["reservedBudget"] == FUNDED_BUDGET


@pytest.mark.asyncio
async def test_assign_then_unassign_restores_budget(client: AsyncClient, workspace, open_bounty, admin, contributor):
    before = await _budget(client, workspace.id, admin)
    assert (await _assign(client, open_bounty.id, admin, contributor.pubkey)).status_code == 200

    resp = await client.delete(f"/api/v1/bounties/{open_bounty.id}/assign", headers=get_auth_headers(admin))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "OPEN"
    assert data["assigneePubkey"] is None
    assert data["assignedAt"] is None
    after = await _budget(client, workspace.id, admin)
    for key in ("totalBudget", "availableBudget", "reservedBudget", "paidBudget"):
        assert after[key] == before[key]


@pytest.mark.asyncio
async def test_unassign_open_bounty_conflicts(client: AsyncClient, workspace, open_bounty, admin):
    resp = await client.delete(f"/api/v1/bounties/{open_bounty.id}/assign", headers=get_auth_headers(admin))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CONFLICT"
    assert resp.json()["error"]["message"] == "Bounty is not assigned"


@pytest.mark.asyncio
async def test_contributor_cannot_assign(client: AsyncClient, workspace, open_bounty, contributor):
    resp = await _assign(client, open_bounty.id, contributor, contributor.pubkey)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_assign_unknown_user(client: AsyncClient, workspace, open_bounty, admin):
    resp = await _assign(client, open_bounty.id, admin, "02" + "f" * 64)
    assert resp.status_code == 404
    assert resp.json()["error"]["message"] == "Assignee not found"


@pytest.mark.asyncio
async def test_assign_non_member(client: AsyncClient, workspace, open_bounty, admin, outsider):
    resp = await _assign(client, open_bounty.id, admin, outsider.pubkey)
    assert resp.status_code == 403
    assert resp.json()["error"]["message"] == "Assignee must be a workspace member"


@pytest.mark.asyncio
async def test_assign_draft_bounty(client: AsyncClient, workspace, draft_bounty, admin, contributor):
    resp = await _assign(client, draft_bounty.id, admin, contributor.pubkey)
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Can only assign bounties with OPEN status"


@pytest.mark.asyncio
async def test_second_assign_is_rejected(client: AsyncClient, workspace, open_bounty, admin, contributor, other_contributor):
    """Only one of two assigns succeeds and the amount is reserved once"""
    first = await _assign(client, open_bounty.id, admin, contributor.pubkey)
    second = await _assign(client, open_bounty.id, admin, other_contributor.pubkey)
    assert first.status_code == 200
    assert second.status_code == 400

    budget = await _budget(client, workspace.id, admin)
    assert budget["reservedBudget"] == BOUNTY_AMOUNT


# --- Update ---

@pytest.mark.asyncio
async def test_patch_invalid_transition(client: AsyncClient, workspace, draft_bounty, admin):
    """DRAFT -> COMPLETED is not in the transition table"""
    resp = await client.patch(
        f"/api/v1/bounties/{draft_bounty.id}",
        json={"status": "COMPLETED"},
        headers=get_auth_headers(admin),
    )
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "INVALID_TRANSITION"
    assert "DRAFT" in error["message"] and "COMPLETED" in error["message"]

    detail = await client.get(f"/api/v1/bounties/{draft_bounty.id}", headers=get_auth_headers(admin))
    assert detail.json()["data"]["status"] == "DRAFT"


@pytest.mark.asyncio
async def test_creator_publishes_and_edits_draft(client: AsyncClient, db_session, workspace, contributor):
    bounty = await create_bounty(db_session, workspace, contributor, status=BountyStatus.DRAFT)
    resp = await client.patch(
        f"/api/v1/bounties/{bounty.id}",
        json={"status": "OPEN", "title": "Fix the retry loop for good", "tags": ["go", "Go", "lightning"]},
        headers=get_auth_headers(contributor),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "OPEN"
    assert data["title"] == "Fix the retry loop for good"
    assert data["tags"] == ["go", "lightning"]


@pytest.mark.asyncio
async def test_creator_cannot_change_amount(client: AsyncClient, db_session, workspace, contributor):
    bounty = await create_bounty(db_session, workspace, contributor)
    resp = await client.patch(
        f"/api/v1/bounties/{bounty.id}", json={"amount": 9_000}, headers=get_auth_headers(contributor),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_amount_change_adjusts_reservation(client: AsyncClient, workspace, open_bounty, admin, contributor):
    await _assign(client, open_bounty.id, admin, contributor.pubkey)
    resp = await client.patch(
        f"/api/v1/bounties/{open_bounty.id}", json={"amount": 7_000}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["amount"] == 7_000
    budget = await _budget(client, workspace.id, admin)
    assert budget["reservedBudget"] == 7_000
    assert budget["availableBudget"] == FUNDED_BUDGET - 7_000


@pytest.mark.asyncio
async def test_patch_rejects_short_title(client: AsyncClient, workspace, open_bounty, admin):
    resp = await client.patch(
        f"/api/v1/bounties/{open_bounty.id}", json={"title": "Fix"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_patch_open_to_assigned_requires_assign_endpoint(client: AsyncClient, workspace, open_bounty, admin):
    resp = await client.patch(
        f"/api/v1/bounties/{open_bounty.id}", json={"status": "ASSIGNED"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_patch_into_review_requires_proof(client: AsyncClient, workspace, open_bounty, admin, contributor):
    await _assign(client, open_bounty.id, admin, contributor.pubkey)
    resp = await client.patch(
        f"/api/v1/bounties/{open_bounty.id}", json={"status": "IN_REVIEW"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    detail = await client.get(f"/api/v1/bounties/{open_bounty.id}", headers=get_auth_headers(admin))
    assert detail.json()["data"]["status"] == "ASSIGNED"


async def _admin_holds_accepted_work(client: AsyncClient, bounty_id: str, owner, admin):
    """Owner assigns the bounty to an admin and accepts the admin's proof"""
    assert (await _assign(client, bounty_id, owner, admin.pubkey)).status_code == 200
    proof = await client.post(
        f"/api/v1/bounties/{bounty_id}/proofs",
        json={"proofUrl": "https://github.com/acme/node/pull/11", "description": "Retry loop now backs off"},
        headers=get_auth_headers(admin),
    )
    assert proof.status_code == 201
    resp = await client.patch(
        f"/api/v1/bounties/{bounty_id}/proofs/{proof.json()['data']['proof']['id']}",
        json={"approved": True},
        headers=get_auth_headers(owner),
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_assignee_admin_cannot_pay_own_bounty_by_patch(client: AsyncClient, workspace, open_bounty, owner, admin):
    await _admin_holds_accepted_work(client, open_bounty.id, owner, admin)

    for status in ("PAID", "ASSIGNED"):
        resp = await client.patch(
            f"/api/v1/bounties/{open_bounty.id}", json={"status": status}, headers=get_auth_headers(admin),
        )
        assert resp.status_code == 403, status

    detail = await client.get(f"/api/v1/bounties/{open_bounty.id}", headers=get_auth_headers(admin))
    assert detail.json()["data"]["status"] == "IN_REVIEW"
    budget = await _budget(client, workspace.id, owner)
    assert budget["reservedBudget"] == BOUNTY_AMOUNT
    assert budget["paidBudget"] == 0


@pytest.mark.asyncio
async def test_assignee_admin_cannot_complete_own_bounty_by_patch(client: AsyncClient, workspace, open_bounty, owner, admin):
    await _admin_holds_accepted_work(client, open_bounty.id, owner, admin)
    resp = await client.patch(
        f"/api/v1/bounties/{open_bounty.id}", json={"status": "PAID"}, headers=get_auth_headers(owner),
    )
    assert resp.status_code == 200

    resp = await client.patch(
        f"/api/v1/bounties/{open_bounty.id}", json={"status": "COMPLETED"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 403
    resp = await client.patch(
        f"/api/v1/workspaces/{workspace.id}/bounties/{open_bounty.id}/complete", headers=get_auth_headers(admin),
    )
    assert resp.status_code == 403

    detail = await client.get(f"/api/v1/bounties/{open_bounty.id}", headers=get_auth_headers(owner))
    assert detail.json()["data"]["status"] == "PAID"
    assert detail.json()["data"]["completedAt"] is None


# --- Delete ---

@pytest.mark.asyncio
async def test_delete_open_bounty(client: AsyncClient, workspace, open_bounty, admin):
    """Soft-deleted bounties disappear from reads"""
    resp = await client.delete(f"/api/v1/bounties/{open_bounty.id}", headers=get_auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["data"]["deleted"] is True

    resp = await client.get(f"/api/v1/bounties/{open_bounty.id}", headers=get_auth_headers(admin))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_assigned_bounty_conflicts(client: AsyncClient, workspace, open_bounty, admin, contributor):
    await _assign(client, open_bounty.id, admin, contributor.pubkey)
    resp = await client.delete(f"/api/v1/bounties/{open_bounty.id}", headers=get_auth_headers(admin))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_non_creator_admin_cannot_delete(client: AsyncClient, db_session, workspace, owner, admin):
    bounty = await create_bounty(db_session, workspace, owner)
    resp = await client.delete(f"/api/v1/bounties/{bounty.id}", headers=get_auth_headers(admin))
    assert resp.status_code == 403


# --- Reads ---

@pytest.mark.asyncio
async def test_draft_hidden_from_non_members(client: AsyncClient, workspace, draft_bounty, outsider, viewer):
    resp = await client.get(f"/api/v1/bounties/{draft_bounty.id}", headers=get_auth_headers(outsider))
    assert resp.status_code == 403
    resp = await client.get(f"/api/v1/bounties/{draft_bounty.id}")
    assert resp.status_code == 403
    resp = await client.get(f"/api/v1/bounties/{draft_bounty.id}", headers=get_auth_headers(viewer))
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_open_bounty_detail_is_public(client: AsyncClient, workspace, open_bounty):
    resp = await client.get(f"/api/v1/bounties/{open_bounty.id}")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["amount"] == BOUNTY_AMOUNT
    assert data["proofs"] == []
    assert "activities" in data
    assert "requestId" in resp.json()["meta"]


@pytest.mark.asyncio
async def test_identity_header_is_accepted(client: AsyncClient, workspace, open_bounty, admin, contributor):
    resp = await client.post(
        f"/api/v1/bounties/{open_bounty.id}/assign",
        json={"assigneePubkey": contributor.pubkey},
        headers=pubkey_headers(admin),
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_mutation_requires_identity(client: AsyncClient, workspace, open_bounty, contributor):
    resp = await client.post(
        f"/api/v1/bounties/{open_bounty.id}/assign", json={"assigneePubkey": contributor.pubkey},
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_unknown_bounty(client: AsyncClient, workspace, admin):
    resp = await client.get("/api/v1/bounties/does-not-exist", headers=get_auth_headers(admin))
    assert resp.status_code == 404
    assert resp.json()["error"]["message"] == "Bounty not found"
