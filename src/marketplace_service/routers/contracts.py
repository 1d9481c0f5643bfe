"""Contract, task, milestone, and payment-intent endpoints."""

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
    from marketplace_service.services.contract_factory import ContractFactory
    from marketplace_service.services.work_tracker import WorkTracker

router = APIRouter()


def _factory() -> ContractFactory:
    state = get_app_state()
    if state.contract_factory is None:
        msg = "ContractFactory not initialized"
        raise RuntimeError(msg)
    return state.contract_factory


def _tracker() -> WorkTracker:
    state = get_app_state()
    if state.work_tracker is None:
        msg = "WorkTracker not initialized"
        raise RuntimeError(msg)
    return state.work_tracker


# ---------------------------------------------------------------------------
# Contracts. Literal paths MUST be before /contracts/{contract_id}
# ---------------------------------------------------------------------------


@router.post("/contracts", status_code=201)
async def create_contract(request: Request) -> JSONResponse:
    """Create the contract for an accepted bid."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())
    job_id = require_string(data, "job_id")
    bid_id = require_string(data, "bid_id")

    contract = await _factory().create_contract(job_id, bid_id, principal.user_id)
    return JSONResponse(status_code=201, content=contract)


@router.get("/contracts/user")
async def list_my_contracts(request: Request) -> dict[str, Any]:
    """List contracts where the caller is a party."""
    principal = await require_principal(request)
    page, limit = parse_pagination(request)
    status = request.query_params.get("status")
    return await _factory().list_contracts(principal.user_id, status, page, limit)


@router.get("/contracts/job/{job_id}")
async def get_contract_for_job(job_id: str, request: Request) -> dict[str, Any]:
    """Fetch the contract of a job."""
    principal = await require_principal(request)
    return await _factory().get_contract_for_job(job_id, principal.user_id)


@router.get("/contracts/{contract_id}")
async def get_contract(contract_id: str, request: Request) -> dict[str, Any]:
    """Fetch a contract with its tasks and milestones."""
    principal = await require_principal(request)
    return await _factory().get_contract_for_party(contract_id, principal.user_id)


@router.put("/contracts/{contract_id}/complete")
async def complete_contract(contract_id: str, request: Request) -> dict[str, Any]:
    """Mark a contract completed. Client only."""
    principal = await require_principal(request)
    return await _factory().complete_contract(contract_id, principal.user_id)


# ---------------------------------------------------------------------------
# Tasks and milestones
# ---------------------------------------------------------------------------


@router.post("/contracts/{contract_id}/tasks", status_code=201)
async def add_task(contract_id: str, request: Request) -> JSONResponse:
    """Add a task to a contract."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())

    task = await _tracker().add_task(
        contract_id,
        principal.user_id,
        title=data.get("title"),
        description=data.get("description"),
        due_date=data.get("due_date"),
        assigned_to=data.get("assigned_to"),
    )
    return JSONResponse(status_code=201, content=task)


@router.put("/contracts/{contract_id}/tasks/{task_id}")
async def update_task(contract_id: str, task_id: str, request: Request) -> dict[str, Any]:
    """Move a task to a new status."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())
    return await _tracker().update_task_status(
        contract_id, task_id, principal.user_id, data.get("status")
    )


@router.post("/contracts/{contract_id}/milestones", status_code=201)
async def add_milestone(contract_id: str, request: Request) -> JSONResponse:
    """Add a milestone to a contract. Client only."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())

    milestone = await _tracker().add_milestone(
        contract_id,
        principal.user_id,
        title=data.get("title"),
        amount=data.get("amount"),
        description=data.get("description"),
        due_date=data.get("due_date"),
    )
    return JSONResponse(status_code=201, content=milestone)


@router.put("/contracts/{contract_id}/milestones/{milestone_id}/approve")
async def approve_milestone(
    contract_id: str,
    milestone_id: str,
    request: Request,
) -> dict[str, Any]:
    """Approve a pending milestone. Client only."""
    principal = await require_principal(request)
    return await _tracker().approve_milestone(contract_id, milestone_id, principal.user_id)


# ---------------------------------------------------------------------------
# POST /contracts/{contract_id}/payment: create payment intent
# ---------------------------------------------------------------------------


@router.post("/contracts/{contract_id}/payment")
async def create_payment_intent(contract_id: str, request: Request) -> dict[str, Any]:
    """Create a gateway payment intent for the contract amount."""
    principal = await require_principal(request)

    state = get_app_state()
    if state.payment_reconciler is None:
        msg = "PaymentReconciler not initialized"
        raise RuntimeError(msg)

    return await state.payment_reconciler.create_payment_intent(contract_id, principal.user_id)
