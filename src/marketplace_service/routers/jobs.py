"""Job posting endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import parse_json_body, require_principal

router = APIRouter()


@router.post("/jobs", status_code=201)
async def post_job(request: Request) -> JSONResponse:
    """Post an open job. Clients only."""
    principal = await require_principal(request)
    data = parse_json_body(await request.body())

    state = get_app_state()
    if state.job_coordinator is None:
        msg = "JobStatusCoordinator not initialized"
        raise RuntimeError(msg)

    job = await state.job_coordinator.post_job(
        principal,
        title=data.get("title"),
        description=data.get("description"),
        skills=data.get("skills"),
    )
    return JSONResponse(status_code=201, content=job)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, request: Request) -> dict[str, Any]:
    """Fetch one job."""
    await require_principal(request)

    state = get_app_state()
    if state.job_coordinator is None:
        msg = "JobStatusCoordinator not initialized"
        raise RuntimeError(msg)

    return await state.job_coordinator.get_job(job_id)
