"""Notification inbox, real-time stream, and presence endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from marketplace_service.config import get_settings
from marketplace_service.core.exceptions import ValidationError
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import parse_pagination, require_principal
from marketplace_service.schemas import PresenceResponse

if TYPE_CHECKING:
    from marketplace_service.services.notifier import NotificationFanout

router = APIRouter()


def _notifier() -> NotificationFanout:
    state = get_app_state()
    if state.notifier is None:
        msg = "NotificationFanout not initialized"
        raise RuntimeError(msg)
    return state.notifier


def _parse_unread_only(request: Request) -> bool:
    raw = request.query_params.get("unread_only")
    if raw is None:
        return False
    if raw.lower() in ("true", "1"):
        return True
    if raw.lower() in ("false", "0"):
        return False
    raise ValidationError("Query parameter 'unread_only' must be a boolean")


@router.get("/notifications")
async def list_notifications(request: Request) -> dict[str, Any]:
    """List the caller's notifications, newest first."""
    principal = await require_principal(request)
    page, limit = parse_pagination(request)
    return await _notifier().list_notifications(
        principal.user_id,
        unread_only=_parse_unread_only(request),
        page=page,
        limit=limit,
    )


@router.get("/notifications/unread-count")
async def unread_count(request: Request) -> dict[str, Any]:
    """Count the caller's unread notifications."""
    principal = await require_principal(request)
    return await _notifier().unread_count(principal.user_id)


@router.get("/notifications/stream")
async def stream_notifications(request: Request) -> EventSourceResponse:
    """Server-Sent Events stream of the caller's notifications."""
    principal = await require_principal(request)

    state = get_app_state()
    if state.presence is None:
        msg = "PresenceRegistry not initialized"
        raise RuntimeError(msg)

    settings = get_settings()
    connection = await state.presence.connect(principal.user_id)
    return EventSourceResponse(
        state.presence.stream(connection, settings.notifications.keepalive_seconds),
        headers={"X-Accel-Buffering": "no"},
    )


# ---------------------------------------------------------------------------
# PUT /notifications/read-all MUST be before /notifications/{id}/read
# ---------------------------------------------------------------------------


@router.put("/notifications/read-all")
async def mark_all_read(request: Request) -> dict[str, Any]:
    """Mark every unread notification of the caller as read."""
    principal = await require_principal(request)
    return await _notifier().mark_all_read(principal.user_id)


@router.put("/notifications/{notification_id}/read")
async def mark_read(notification_id: str, request: Request) -> dict[str, Any]:
    """Mark one notification as read."""
    principal = await require_principal(request)
    return await _notifier().mark_read(notification_id, principal.user_id)


@router.get("/presence", response_model=PresenceResponse)
async def presence(request: Request) -> PresenceResponse:
    """List users with at least one live stream."""
    await require_principal(request)

    state = get_app_state()
    if state.presence is None:
        msg = "PresenceRegistry not initialized"
        raise RuntimeError(msg)

    return PresenceResponse(online_users=await state.presence.online_users())
