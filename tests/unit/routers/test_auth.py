"""Tests for authentication and request validation at the HTTP edge."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import auth


@pytest.mark.unit
@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("get", "/notifications"),
        ("get", "/notifications/stream"),
        ("get", "/presence"),
        ("get", "/contracts/user"),
        ("get", "/bids/freelancer"),
        ("get", "/payments/history"),
        ("put", "/bids/bid-1/accept"),
    ],
)
async def test_missing_authorization_is_401(client, method: str, path: str) -> None:
    """Every caller-scoped endpoint requires a bearer token."""
    response = await getattr(client, method)(path)

    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"


@pytest.mark.unit
async def test_non_bearer_scheme_is_401(client) -> None:
    response = await client.get("/notifications", headers={"Authorization": "Basic abc"})

    assert response.status_code == 401


@pytest.mark.unit
async def test_unknown_token_is_401(client) -> None:
    response = await client.get("/notifications", headers=auth("stolen-token"))

    assert response.status_code == 401


@pytest.mark.unit
async def test_non_json_content_type_is_415(client) -> None:
    response = await client.post(
        "/jobs",
        content=b"title=x",
        headers={**auth("client-token"), "Content-Type": "application/x-www-form-urlencoded"},
    )

    assert response.status_code == 415
    assert response.json()["error"] == "UNSUPPORTED_MEDIA_TYPE"


@pytest.mark.unit
async def test_oversized_body_is_413(client) -> None:
    response = await client.post(
        "/jobs",
        json={"title": "Big", "description": "x" * 5000},
        headers=auth("client-token"),
    )

    assert response.status_code == 413
    assert response.json()["error"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.unit
async def test_malformed_json_is_400(client) -> None:
    response = await client.post(
        "/jobs",
        content=b"{not json",
        headers={**auth("client-token"), "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_JSON"


@pytest.mark.unit
async def test_json_array_body_is_400(client) -> None:
    response = await client.post("/jobs", json=["title"], headers=auth("client-token"))

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_JSON"


@pytest.mark.unit
async def test_unknown_route_is_404(client) -> None:
    response = await client.get("/nowhere")

    assert response.status_code == 404
    assert response.json() == {
        "error": "NOT_FOUND",
        "message": "Resource not found",
        "details": {},
    }


@pytest.mark.unit
@pytest.mark.parametrize("query", ["page=0", "limit=abc", "page=-1"])
async def test_bad_pagination_is_400(client, query: str) -> None:
    response = await client.get(f"/notifications?{query}", headers=auth("alice-token"))

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
