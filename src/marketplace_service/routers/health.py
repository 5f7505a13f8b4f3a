"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from marketplace_service.core.state import get_app_state
from marketplace_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return marketplace counts."""
    state = get_app_state()
    total_workers = 0
    total_employers = 0
    total_tasks = 0
    applications_by_status: dict[str, int] = {}
    payments_by_status: dict[str, int] = {}
    if state.party_manager is not None:
        party_stats = state.party_manager.get_stats()
        total_workers = party_stats["total_workers"]
        total_employers = party_stats["total_employers"]
    if state.task_manager is not None:
        task_stats = state.task_manager.get_stats()
        total_tasks = task_stats["total_tasks"]
        applications_by_status = task_stats["applications_by_status"]
        payments_by_status = task_stats["payments_by_status"]
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_workers=total_workers,
        total_employers=total_employers,
        total_tasks=total_tasks,
        applications_by_status=applications_by_status,
        payments_by_status=payments_by_status,
    )
