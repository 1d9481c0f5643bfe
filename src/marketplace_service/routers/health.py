"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from marketplace_service.core.state import get_app_state
from marketplace_service.schemas import HealthResponse
from marketplace_service.services.contract_factory import CONTRACT_STATUSES
from marketplace_service.services.job_store import JOB_STATUSES

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    jobs_by_status = dict.fromkeys(sorted(JOB_STATUSES), 0)
    contracts_by_status = dict.fromkeys(sorted(CONTRACT_STATUSES), 0)
    if state.job_coordinator is not None:
        jobs_by_status.update(await state.job_coordinator.count_jobs_by_status())
    if state.contract_factory is not None:
        contracts_by_status.update(await state.contract_factory.count_contracts_by_status())
    online_users = 0
    if state.presence is not None:
        online_users = len(await state.presence.online_users())
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_jobs=sum(jobs_by_status.values()),
        jobs_by_status=jobs_by_status,
        total_contracts=sum(contracts_by_status.values()),
        contracts_by_status=contracts_by_status,
        online_users=online_users,
    )
