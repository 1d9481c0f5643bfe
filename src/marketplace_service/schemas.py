"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_jobs: int
    jobs_by_status: dict[str, int]
    total_contracts: int
    contracts_by_status: dict[str, int]
    online_users: int


class PresenceResponse(BaseModel):
    """Response model for GET /presence."""

    model_config = ConfigDict(extra="forbid")
    online_users: list[str]
