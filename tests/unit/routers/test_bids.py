"""Tests for job posting and the bid endpoints."""

from __future__ import annotations

import asyncio

import pytest

from tests.unit.routers.conftest import auth, post_job, submit_bid


@pytest.mark.unit
async def test_post_and_get_job(client) -> None:
    job = await post_job(client)

    assert job["job_id"].startswith("job-")
    assert job["status"] == "open"
    response = await client.get(f"/jobs/{job['job_id']}", headers=auth("alice-token"))
    assert response.status_code == 200
    assert response.json()["title"] == "Landing page"


@pytest.mark.unit
async def test_freelancer_cannot_post_job(client) -> None:
    response = await client.post(
        "/jobs",
        json={"title": "T", "description": "D"},
        headers=auth("alice-token"),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "FORBIDDEN"


@pytest.mark.unit
async def test_get_unknown_job_is_404(client) -> None:
    response = await client.get("/jobs/job-missing", headers=auth("client-token"))

    assert response.status_code == 404
    assert response.json()["error"] == "JOB_NOT_FOUND"


@pytest.mark.unit
async def test_submit_bid_requires_job_id(client) -> None:
    response = await client.post(
        "/bids",
        json={"amount": 10, "proposal": "p", "timeline_days": 1},
        headers=auth("alice-token"),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.unit
async def test_duplicate_bid_is_409(client) -> None:
    job = await post_job(client)
    await submit_bid(client, job["job_id"])

    response = await client.post(
        "/bids",
        json={"job_id": job["job_id"], "amount": 1, "proposal": "again", "timeline_days": 1},
        headers=auth("alice-token"),
    )

    assert response.status_code == 409
    assert response.json()["error"] == "BID_ALREADY_EXISTS"


@pytest.mark.unit
async def test_accept_bid_rejects_siblings_and_opens_contract(client) -> None:
    """Two freelancers bid; accepting one rejects the other and opens a contract."""
    job = await post_job(client)
    alice_bid = await submit_bid(client, job["job_id"], "alice-token", 300)
    bob_bid = await submit_bid(client, job["job_id"], "bob-token", 250)

    response = await client.put(
        f"/bids/{alice_bid['bid_id']}/accept", headers=auth("client-token")
    )

    assert response.status_code == 200
    body = response.json()
    assert body["bid"]["status"] == "accepted"
    assert body["job"]["status"] == "in_progress"
    assert body["job"]["selected_bid_id"] == alice_bid["bid_id"]
    assert body["contract"]["amount"] == 300.0
    assert body["contract"]["freelancer_id"] == "u-alice"

    listing = (
        await client.get(f"/bids/job/{job['job_id']}", headers=auth("client-token"))
    ).json()
    statuses = {bid["bid_id"]: bid["status"] for bid in listing["bids"]}
    assert statuses == {alice_bid["bid_id"]: "accepted", bob_bid["bid_id"]: "rejected"}


@pytest.mark.unit
async def test_concurrent_accepts_pick_one_winner(client) -> None:
    """Only one of two concurrent acceptances on the same job succeeds."""
    job = await post_job(client)
    alice_bid = await submit_bid(client, job["job_id"], "alice-token")
    bob_bid = await submit_bid(client, job["job_id"], "bob-token")

    responses = await asyncio.gather(
        client.put(f"/bids/{alice_bid['bid_id']}/accept", headers=auth("client-token")),
        client.put(f"/bids/{bob_bid['bid_id']}/accept", headers=auth("client-token")),
    )

    assert sorted(r.status_code for r in responses) == [200, 409]
    contracts = (await client.get("/contracts/user", headers=auth("client-token"))).json()
    assert contracts["pagination"]["total"] == 1


@pytest.mark.unit
async def test_only_owner_can_accept(client) -> None:
    job = await post_job(client)
    bid = await submit_bid(client, job["job_id"])

    response = await client.put(f"/bids/{bid['bid_id']}/accept", headers=auth("bob-token"))

    assert response.status_code == 403


@pytest.mark.unit
async def test_reject_and_withdraw(client) -> None:
    job = await post_job(client)
    alice_bid = await submit_bid(client, job["job_id"], "alice-token")
    bob_bid = await submit_bid(client, job["job_id"], "bob-token")

    rejected = await client.put(
        f"/bids/{alice_bid['bid_id']}/reject", headers=auth("client-token")
    )
    withdrawn = await client.put(
        f"/bids/{bob_bid['bid_id']}/withdraw", headers=auth("bob-token")
    )

    assert rejected.json()["status"] == "rejected"
    assert withdrawn.json()["status"] == "withdrawn"
    again = await client.put(f"/bids/{bob_bid['bid_id']}/withdraw", headers=auth("bob-token"))
    assert again.status_code == 409
    assert again.json()["error"] == "INVALID_STATUS"


@pytest.mark.unit
async def test_list_my_bids_with_status_filter(client) -> None:
    first = await post_job(client, "First")
    second = await post_job(client, "Second")
    await submit_bid(client, first["job_id"])
    withdrawn = await submit_bid(client, second["job_id"])
    await client.put(f"/bids/{withdrawn['bid_id']}/withdraw", headers=auth("alice-token"))

    all_bids = (await client.get("/bids/freelancer", headers=auth("alice-token"))).json()
    pending = (
        await client.get("/bids/freelancer?status=pending", headers=auth("alice-token"))
    ).json()

    assert all_bids["pagination"]["total"] == 2
    assert [bid["job_id"] for bid in pending["bids"]] == [first["job_id"]]


@pytest.mark.unit
async def test_generate_proposal_without_ai_returns_fallback(client) -> None:
    """With no AI configured the endpoint still answers 200 with fallback text."""
    response = await client.post(
        "/bids/generate-proposal",
        json={"job_title": "Landing page", "job_description": "One page", "skills": ["html"]},
        headers=auth("alice-token"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["original_proposal"] is None
    assert "configuration" in body["proposal"]
