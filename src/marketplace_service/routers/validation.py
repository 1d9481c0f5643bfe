"""Shared request validation helpers for marketplace routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import AuthenticationError, ServiceError, ValidationError
from marketplace_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from marketplace_service.clients.identity_client import Principal

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def require_string(data: dict[str, Any], field_name: str) -> str:
    """Extract a required non-empty string field from a parsed body."""
    value = data.get(field_name)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Field '{field_name}' must be a non-empty string")
    return value


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the session token from an Authorization header."""
    if authorization is None:
        raise AuthenticationError("Missing Authorization header")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :]
    if not token:
        raise AuthenticationError("Bearer token must not be empty")

    return token


async def require_principal(request: Request) -> Principal:
    """Resolve the caller's principal through the identity service."""
    token = extract_bearer_token(request.headers.get("authorization"))

    state = get_app_state()
    if state.identity_client is None:
        msg = "IdentityClient not initialized"
        raise RuntimeError(msg)

    return await state.identity_client.verify_token(token)


def parse_pagination(request: Request) -> tuple[int, int]:
    """Read ``page`` and ``limit`` query parameters."""
    page = _positive_int_param(request, "page", 1)
    limit = _positive_int_param(request, "limit", DEFAULT_PAGE_LIMIT)
    return page, min(limit, MAX_PAGE_LIMIT)


def _positive_int_param(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"Query parameter '{name}' must be a positive integer") from exc
    if value < 1:
        raise ValidationError(f"Query parameter '{name}' must be a positive integer")
    return value
