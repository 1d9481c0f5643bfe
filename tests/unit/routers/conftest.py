"""Router test fixtures with mocked identity service and payment gateway."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from marketplace_service.app import create_app
from marketplace_service.clients.identity_client import Principal
from marketplace_service.config import clear_settings_cache
from marketplace_service.core.exceptions import AuthenticationError
from marketplace_service.core.lifespan import lifespan
from marketplace_service.core.state import get_app_state, reset_app_state
from tests.helpers import write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Fixed principals, keyed by the bearer token that resolves to them
# ---------------------------------------------------------------------------
PRINCIPALS: dict[str, Principal] = {
    "client-token": Principal(user_id="u-client", role="client"),
    "alice-token": Principal(user_id="u-alice", role="freelancer"),
    "bob-token": Principal(user_id="u-bob", role="freelancer"),
    "carol-token": Principal(user_id="u-carol", role="freelancer"),
}


def auth(token: str) -> dict[str, str]:
    """Build an Authorization header for a test token."""
    return {"Authorization": f"Bearer {token}"}


async def _verify_token(token: str) -> Principal:
    principal = PRINCIPALS.get(token)
    if principal is None:
        raise AuthenticationError("Session token is invalid or expired")
    return principal


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    monkeypatch.setenv("CONFIG_PATH", str(write_config(tmp_path)))
    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        mock_identity = AsyncMock()
        mock_identity.verify_token = AsyncMock(side_effect=_verify_token)
        mock_identity.close = AsyncMock()
        state.identity_client = mock_identity

        mock_gateway = AsyncMock()
        mock_gateway.create_payment_intent = AsyncMock(
            side_effect=lambda **kwargs: {
                "id": f"pi_{kwargs['idempotency_key']}",
                "client_secret": f"pi_{kwargs['idempotency_key']}_secret",
            }
        )
        mock_gateway.close = AsyncMock()
        # Assignment propagates the gateway to the reconciler
        state.payment_gateway = mock_gateway

        yield test_app

    reset_app_state()
    clear_settings_cache()


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Flow helpers
# ---------------------------------------------------------------------------
async def post_job(client: AsyncClient, title: str = "Landing page") -> dict[str, Any]:
    response = await client.post(
        "/jobs",
        json={"title": title, "description": "One responsive page", "skills": ["html"]},
        headers=auth("client-token"),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def submit_bid(
    client: AsyncClient,
    job_id: str,
    token: str = "alice-token",
    amount: float = 300,
) -> dict[str, Any]:
    response = await client.post(
        "/bids",
        json={
            "job_id": job_id,
            "amount": amount,
            "proposal": "I build landing pages",
            "timeline_days": 5,
        },
        headers=auth(token),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def open_contract(client: AsyncClient, amount: float = 300) -> dict[str, Any]:
    """Post a job, accept Alice's bid, and return the contract."""
    job = await post_job(client)
    bid = await submit_bid(client, job["job_id"], amount=amount)
    response = await client.put(f"/bids/{bid['bid_id']}/accept", headers=auth("client-token"))
    assert response.status_code == 200, response.text
    return response.json()["contract"]
