"""Async HTTP client for the session verification service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from marketplace_service.core.exceptions import AuthenticationError, ExternalServiceError
from marketplace_service.logging import get_logger

VALID_ROLES = frozenset({"client", "freelancer", "admin"})


@dataclass(frozen=True)
class Principal:
    """An already-verified caller identity."""

    user_id: str
    role: str

    @property
    def is_client(self) -> bool:
        return self.role == "client"

    @property
    def is_freelancer(self) -> bool:
        return self.role == "freelancer"


class IdentityClient:
    """
    Client for bearer session verification.

    Credential checks are delegated entirely to the identity service; this
    service only consumes the resulting ``{user_id, role}`` principal.
    """

    def __init__(
        self,
        base_url: str,
        verify_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_path = verify_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def verify_token(self, token: str) -> Principal:
        """
        Verify a bearer session token.

        Raises:
            AuthenticationError: UNAUTHORIZED (401) if the identity service says valid=false
            ExternalServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/
                unexpected responses
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(self._verify_path, json={"token": token})
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service request failed",
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service returned unexpected status",
            )

        try:
            result: dict[str, Any] = response.json()
        except ValueError as exc:
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service returned invalid JSON",
            ) from exc

        if not result.get("valid", False):
            raise AuthenticationError("Session token is invalid or expired")

        user_id = result.get("user_id")
        role = result.get("role")
        if not isinstance(user_id, str) or not user_id or role not in VALID_ROLES:
            logger.warning("Identity service returned malformed principal")
            raise ExternalServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service returned an unexpected principal",
            )

        return Principal(user_id=user_id, role=str(role))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
