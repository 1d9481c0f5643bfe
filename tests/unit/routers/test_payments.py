"""Tests for payment intents, the signed webhook and payment reads."""

from __future__ import annotations

import pytest

from tests.helpers import intent_event, sign_webhook_payload
from tests.unit.routers.conftest import auth, open_contract


async def _post_webhook(client, payload: str, signature: str | None = None):
    headers = {"Content-Type": "application/json"}
    headers["Stripe-Signature"] = signature or sign_webhook_payload(payload)
    return await client.post("/payments/webhook", content=payload.encode(), headers=headers)


@pytest.mark.unit
async def test_create_payment_intent(client) -> None:
    contract = await open_contract(client, amount=300)

    response = await client.post(
        f"/contracts/{contract['contract_id']}/payment", headers=auth("client-token")
    )

    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == 300.0
    assert body["currency"] == "usd"
    assert body["payment_intent_id"] == f"pi_contract-{contract['contract_id']}-attempt-0"
    assert body["client_secret"].endswith("_secret")


@pytest.mark.unit
async def test_freelancer_cannot_create_payment_intent(client) -> None:
    contract = await open_contract(client)

    response = await client.post(
        f"/contracts/{contract['contract_id']}/payment", headers=auth("alice-token")
    )

    assert response.status_code == 403


@pytest.mark.unit
async def test_webhook_marks_contract_paid_once(client) -> None:
    """A signed success event settles the contract; a replay is acknowledged as duplicate."""
    contract = await open_contract(client)
    intent = (
        await client.post(
            f"/contracts/{contract['contract_id']}/payment", headers=auth("client-token")
        )
    ).json()
    payload = intent_event(
        "evt_1",
        "payment_intent.succeeded",
        intent["payment_intent_id"],
        contract["contract_id"],
    )

    first = await _post_webhook(client, payload)
    second = await _post_webhook(client, payload)

    assert first.status_code == 200
    assert first.json() == {"received": True, "duplicate": False}
    assert second.json() == {"received": True, "duplicate": True}

    detail = (
        await client.get(f"/contracts/{contract['contract_id']}", headers=auth("alice-token"))
    ).json()
    assert detail["payment_status"] == "paid"
    notifications = (await client.get("/notifications", headers=auth("alice-token"))).json()
    payment_types = [n["type"] for n in notifications["notifications"] if n["type"] == "payment"]
    assert len(payment_types) == 1


@pytest.mark.unit
async def test_webhook_bad_signature_is_400(client) -> None:
    contract = await open_contract(client)
    payload = intent_event("evt_2", "payment_intent.succeeded", "pi_x", contract["contract_id"])

    response = await _post_webhook(client, payload, signature=sign_webhook_payload(payload, "x"))

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_SIGNATURE"


@pytest.mark.unit
async def test_webhook_accepts_any_content_type(client) -> None:
    """The webhook body is verified as raw bytes, whatever its declared type."""
    payload = intent_event("evt_3", "customer.created", "cus_1", None)

    response = await client.post(
        "/payments/webhook",
        content=payload.encode(),
        headers={
            "Content-Type": "text/plain",
            "Stripe-Signature": sign_webhook_payload(payload),
        },
    )

    assert response.status_code == 200
    assert response.json()["duplicate"] is False


@pytest.mark.unit
async def test_payment_history_and_stats(client) -> None:
    contract = await open_contract(client, amount=300)

    history = (await client.get("/payments/history", headers=auth("client-token"))).json()
    client_stats = (await client.get("/payments/stats", headers=auth("client-token"))).json()
    freelancer_stats = (await client.get("/payments/stats", headers=auth("alice-token"))).json()

    assert [p["contract_id"] for p in history["payments"]] == [contract["contract_id"]]
    assert history["pagination"]["total"] == 1
    assert client_stats == {"role": "client", "total_paid": 0.0, "pending_payments": 1}
    assert freelancer_stats == {
        "role": "freelancer",
        "total_earned": 0.0,
        "pending_earnings": 300.0,
    }


@pytest.mark.unit
async def test_payment_history_is_paginated(client) -> None:
    await open_contract(client)
    newest = await open_contract(client)

    response = await client.get(
        "/payments/history", params={"page": 1, "limit": 1}, headers=auth("alice-token")
    )

    assert response.status_code == 200
    body = response.json()
    assert [p["contract_id"] for p in body["payments"]] == [newest["contract_id"]]
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
