"""Payment gateway webhook and payment read endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import parse_pagination, require_principal

if TYPE_CHECKING:
    from marketplace_service.services.payment_reconciler import PaymentReconciler

router = APIRouter()


def _reconciler() -> PaymentReconciler:
    state = get_app_state()
    if state.payment_reconciler is None:
        msg = "PaymentReconciler not initialized"
        raise RuntimeError(msg)
    return state.payment_reconciler


@router.post("/payments/webhook")
async def payment_webhook(request: Request) -> dict[str, Any]:
    """Receive a signed gateway event. The raw body is verified as-is."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return await _reconciler().handle_webhook_event(payload, signature)


@router.get("/payments/history")
async def payment_history(request: Request) -> dict[str, Any]:
    """List a page of the caller's contract payments, newest first."""
    principal = await require_principal(request)
    page, limit = parse_pagination(request)
    return await _reconciler().payment_history(principal, page, limit)


@router.get("/payments/stats")
async def payment_stats(request: Request) -> dict[str, Any]:
    """Summarize the caller's settled and outstanding payments."""
    principal = await require_principal(request)
    return await _reconciler().payment_stats(principal)
