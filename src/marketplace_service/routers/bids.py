"""Bid submission, listing, and transition endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    parse_json_body,
    parse_pagination,
    require_principal,
    require_string,
)

if TYPE_CHECKING:
    from marketplace_service.services.bid_ledger import BidLedger

router = APIRouter()


def _ledger() -> BidLedger:
    state = get_app_state()
    if state.bid_ledger is None:
        msg = "BidLedger not initialized"
        raise RuntimeError(msg)
    return state.bid_ledger


# ---------------------------------------------------------------------------
# POST /bids/generate-proposal MUST be before any /bids/{bid_id} route
# ---------------------------------------------------------------------------


@router.post("/bids/generate-proposal")
async def generate_proposal(request: Request) -> dict[str, Any]:
    """Draft or improve a proposal with the AI writer."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())

    state = get_app_state()
    if state.proposal_writer is None:
        msg = "ProposalWriter not initialized"
        raise RuntimeError(msg)

    return await state.proposal_writer.generate_proposal(
        principal,
        job_title=data.get("job_title"),
        job_description=data.get("job_description"),
        skills=data.get("skills"),
        current_proposal=data.get("current_proposal"),
    )


@router.post("/bids", status_code=201)
async def submit_bid(request: Request) -> JSONResponse:
    """Submit a bid on an open job."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())
    job_id = require_string(data, "job_id")

    bid = await _ledger().submit_bid(
        job_id,
        principal,
        amount=data.get("amount"),
        proposal=data.get("proposal"),
        timeline_days=data.get("timeline_days"),
        ai_generated=data.get("ai_generated", False),
        original_proposal=data.get("original_proposal"),
    )
    return JSONResponse(status_code=201, content=bid)


@router.get("/bids/job/{job_id}")
async def list_bids_for_job(job_id: str, request: Request) -> dict[str, Any]:
    """List every bid on a job. Job owner only."""
    principal = await require_principal(request)
    return await _ledger().list_bids_for_job(job_id, principal.user_id)


@router.get("/bids/freelancer")
async def list_my_bids(request: Request) -> dict[str, Any]:
    """List the caller's bids."""
    principal = await require_principal(request)
    page, limit = parse_pagination(request)
    status = request.query_params.get("status")
    return await _ledger().list_bids_for_freelancer(principal, status, page, limit)


@router.put("/bids/{bid_id}/accept")
async def accept_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Accept a bid, reject its siblings, and open the contract."""
    principal = await require_principal(request)
    return await _ledger().accept_bid(bid_id, principal.user_id)


@router.put("/bids/{bid_id}/reject")
async def reject_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Reject a pending bid."""
    principal = await require_principal(request)
    return await _ledger().reject_bid(bid_id, principal.user_id)


@router.put("/bids/{bid_id}/withdraw")
async def withdraw_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Withdraw the caller's pending bid."""
    principal = await require_principal(request)
    return await _ledger().withdraw_bid(bid_id, principal.user_id)
