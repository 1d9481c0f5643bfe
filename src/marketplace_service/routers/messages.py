"""Conversation and message endpoints for contract parties."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    parse_json_body,
    parse_pagination,
    require_principal,
)

if TYPE_CHECKING:
    from marketplace_service.services.message_board import MessageBoard

router = APIRouter()


def _board() -> MessageBoard:
    state = get_app_state()
    if state.message_board is None:
        msg = "MessageBoard not initialized"
        raise RuntimeError(msg)
    return state.message_board


@router.get("/conversations")
async def list_conversations(request: Request) -> dict[str, Any]:
    """List the caller's conversations."""
    principal = await require_principal(request)
    return await _board().list_conversations(principal.user_id)


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, request: Request) -> dict[str, Any]:
    """Read a page of a conversation's messages and mark them read."""
    principal = await require_principal(request)
    page, limit = parse_pagination(request)
    return await _board().get_conversation(conversation_id, principal.user_id, page, limit)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def post_message(conversation_id: str, request: Request) -> JSONResponse:
    """Send a message to a conversation."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())
    message = await _board().post_message(
        conversation_id,
        principal.user_id,
        content=data.get("content"),
        message_type=data.get("type", "text"),
    )
    return JSONResponse(status_code=201, content=message)


@router.delete("/messages/{message_id}")
async def delete_message(message_id: str, request: Request) -> dict[str, Any]:
    """Delete one of the caller's messages."""
    principal = await require_principal(request)
    return await _board().delete_message(message_id, principal.user_id)
