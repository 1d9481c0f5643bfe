"""ASGI middleware enforcing JSON bodies and a request size ceiling."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Signed gateway deliveries are forwarded untouched; the signature covers raw bytes.
_RAW_BODY_ROUTES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/payments/webhook$")),
)


def _header(scope: Scope, name: bytes) -> str:
    for key, value in cast("list[tuple[bytes, bytes]]", scope.get("headers", [])):
        if key.lower() == name:
            return value.decode("latin-1")
    return ""


def _accepts_raw_body(method: str, path: str) -> bool:
    return any(
        route_method == method and pattern.match(path) is not None
        for route_method, pattern in _RAW_BODY_ROUTES
    )


async def _reject(
    scope: Scope,
    receive: Receive,
    send: Send,
    status_code: int,
    error: str,
    message: str,
) -> None:
    response = JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )
    await response(scope, receive, send)


class RequestValidationMiddleware:
    """
    Validate Content-Type and body size before routing.

    Write requests (POST/PUT/PATCH) that declare a Content-Type other than
    JSON get 415, except on raw-body routes such as the payment webhook.
    Bodies larger than ``max_body_size`` get 413, judged first on the
    declared Content-Length and then on the bytes actually received.
    Requests without a Content-Type (bodiless PUT transitions) pass through.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        method = cast("str", scope.get("method", "GET"))
        if scope["type"] != "http" or method not in _BODY_METHODS:
            await self.app(scope, receive, send)
            return

        path = cast("str", scope.get("path", ""))
        content_type = _header(scope, b"content-type").lower()
        if (
            content_type
            and not content_type.startswith("application/json")
            and not _accepts_raw_body(method, path)
        ):
            await _reject(
                scope,
                receive,
                send,
                415,
                "UNSUPPORTED_MEDIA_TYPE",
                "Content-Type must be application/json",
            )
            return

        declared = _header(scope, b"content-length")
        if declared.isdigit() and int(declared) > self.max_body_size:
            await self._too_large(scope, receive, send)
            return

        body = await self._read_body(receive)
        if body is None:
            await self._too_large(scope, receive, send)
            return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if replayed:
                return {"type": "http.disconnect"}
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}

        await self.app(scope, replay, send)

    async def _read_body(self, receive: Receive) -> bytes | None:
        """Buffer the request body, or return None once it exceeds the limit."""
        chunks: list[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            size += len(chunk)
            if size > self.max_body_size:
                return None
            chunks.append(chunk)
            more_body = bool(message.get("more_body", False))
        return b"".join(chunks)

    async def _too_large(self, scope: Scope, receive: Receive, send: Send) -> None:
        await _reject(
            scope,
            receive,
            send,
            413,
            "PAYLOAD_TOO_LARGE",
            "Request body exceeds maximum allowed size",
        )
