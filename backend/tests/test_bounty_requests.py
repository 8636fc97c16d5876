# tests/test_bounty_requests.py — Assignment requests and their review
import pytest
from httpx import AsyncClient

from tests.conftest import BOUNTY_AMOUNT, FUNDED_BUDGET, get_auth_headers


def _url(bounty_id: str, suffix: str = "") -> str:
    return f"/api/v1/bounties/{bounty_id}/requests{suffix}"


async def _request(client: AsyncClient, bounty_id: str, user, message=None):
    body = {"message": message} if message else None
    return await client.post(_url(bounty_id), json=body, headers=get_auth_headers(user))


async def _budget(client: AsyncClient, workspace_id: str, user) -> dict:
    resp = await client.get(f"/api/v1/workspaces/{workspace_id}/budget", headers=get_auth_headers(user))
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_member_requests_open_bounty(client: AsyncClient, workspace, open_bounty, contributor):
    resp = await _request(client, open_bounty.id, contributor, "I maintain the retry code")
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["status"] == "PENDING"
    assert data["requesterPubkey"] == contributor.pubkey
    assert data["message"] == "I maintain the retry code"

    activities = await client.get(f"/api/v1/bounties/{open_bounty.id}/activities")
    assert activities.json()["data"][0]["action"] == "REQUESTED"


@pytest.mark.asyncio
async def test_second_request_conflicts(client: AsyncClient, workspace, open_bounty, contributor):
    first = await _request(client, open_bounty.id, contributor)
    resp = await _request(client, open_bounty.id, contributor)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CONFLICT"
    assert resp.json()["error"]["details"]["requestId"] == first.json()["data"]["id"]


@pytest.mark.asyncio
async def test_request_on_draft_rejected(client: AsyncClient, workspace, draft_bounty, contributor):
    resp = await _request(client, draft_bounty.id, contributor)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_only_admins_list_requests(client: AsyncClient, workspace, open_bounty, admin, contributor, other_contributor):
    await _request(client, open_bounty.id, contributor)
    await _request(client, open_bounty.id, other_contributor)

    resp = await client.get(_url(open_bounty.id), headers=get_auth_headers(contributor))
    assert resp.status_code == 403

    resp = await client.get(_url(open_bounty.id), headers=get_auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["meta"]["pagination"]["totalCount"] == 2

    resp = await client.get(_url(open_bounty.id), params={"status": "APPROVED"}, headers=get_auth_headers(admin))
    assert resp.json()["data"] == []


@pytest.mark.asyncio
async def test_approve_assigns_and_rejects_the_rest(
    client: AsyncClient, workspace, open_bounty, admin, contributor, other_contributor,
):
    """Approval reserves the amount and closes every other pending request"""
    chosen = (await _request(client, open_bounty.id, contributor)).json()["data"]["id"]
    await _request(client, open_bounty.id, other_contributor)

    resp = await client.patch(
        _url(open_bounty.id, f"/{chosen}"),
        json={"action": "approve", "reviewNote": "Knows the code"},
        headers=get_auth_headers(admin),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["request"]["status"] == "APPROVED"
    assert data["request"]["reviewedByPubkey"] == admin.pubkey
    assert data["bounty"]["status"] == "ASSIGNED"
    assert data["bounty"]["assigneePubkey"] == contributor.pubkey

    budget = await _budget(client, workspace.id, admin)
    assert budget["reservedBudget"] == BOUNTY_AMOUNT
    assert budget["availableBudget"] == FUNDED_BUDGET - BOUNTY_AMOUNT

    listing = await client.get(_url(open_bounty.id), headers=get_auth_headers(admin))
    statuses = {r["requesterPubkey"]: r["status"] for r in listing.json()["data"]}
    assert statuses == {contributor.pubkey: "APPROVED", other_contributor.pubkey: "REJECTED"}

    actions = [a["action"] for a in (await client.get(f"/api/v1/bounties/{open_bounty.id}/activities")).json()["data"]]
    assert "REQUEST_APPROVED" in actions and "ASSIGNED" in actions


@pytest.mark.asyncio
async def test_approve_after_bounty_taken(client: AsyncClient, workspace, open_bounty, admin, contributor, other_contributor):
    request_id = (await _request(client, open_bounty.id, contributor)).json()["data"]["id"]
    await client.patch(
        f"/api/v1/workspaces/{workspace.id}/bounties/{open_bounty.id}/claim", headers=get_auth_headers(other_contributor),
    )

    resp = await client.patch(
        _url(open_bounty.id, f"/{request_id}"), json={"action": "approve"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 400
    assert (await _budget(client, workspace.id, admin))["reservedBudget"] == BOUNTY_AMOUNT


@pytest.mark.asyncio
async def test_approve_non_member_requester(client: AsyncClient, workspace, open_bounty, admin, outsider):
    request_id = (await _request(client, open_bounty.id, outsider)).json()["data"]["id"]
    resp = await client.patch(
        _url(open_bounty.id, f"/{request_id}"), json={"action": "approve"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 403
    assert (await _budget(client, workspace.id, admin))["reservedBudget"] == 0


@pytest.mark.asyncio
async def test_reject_leaves_bounty_open(client: AsyncClient, workspace, open_bounty, admin, contributor):
    request_id = (await _request(client, open_bounty.id, contributor)).json()["data"]["id"]
    resp = await client.patch(
        _url(open_bounty.id, f"/{request_id}"), json={"action": "reject"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["request"]["status"] == "REJECTED"
    assert resp.json()["data"]["bounty"]["status"] == "OPEN"

    resp = await client.patch(
        _url(open_bounty.id, f"/{request_id}"), json={"action": "approve"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_contributor_cannot_review(client: AsyncClient, workspace, open_bounty, contributor, other_contributor):
    request_id = (await _request(client, open_bounty.id, contributor)).json()["data"]["id"]
    resp = await client.patch(
        _url(open_bounty.id, f"/{request_id}"), json={"action": "approve"}, headers=get_auth_headers(other_contributor),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_invalid_review_action(client: AsyncClient, workspace, open_bounty, admin, contributor):
    request_id = (await _request(client, open_bounty.id, contributor)).json()["data"]["id"]
    resp = await client.patch(
        _url(open_bounty.id, f"/{request_id}"), json={"action": "maybe"}, headers=get_auth_headers(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_requester_withdraws_pending_request(client: AsyncClient, workspace, open_bounty, admin, contributor, other_contributor):
    request_id = (await _request(client, open_bounty.id, contributor)).json()["data"]["id"]

    resp = await client.delete(_url(open_bounty.id, f"/{request_id}"), headers=get_auth_headers(other_contributor))
    assert resp.status_code == 403

    resp = await client.delete(_url(open_bounty.id, f"/{request_id}"), headers=get_auth_headers(contributor))
    assert resp.status_code == 200
    listing = await client.get(_url(open_bounty.id), headers=get_auth_headers(admin))
    assert listing.json()["data"] == []

    # a withdrawn request can be made again
    assert (await _request(client, open_bounty.id, contributor)).status_code == 201
