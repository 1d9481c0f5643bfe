"""API routers."""

from marketplace_service.routers import bids, contracts, health, jobs, notifications, payments

__all__ = ["bids", "contracts", "health", "jobs", "notifications", "payments"]
