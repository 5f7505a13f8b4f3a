"""Worker and employer registration and profile endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    authenticate,
    read_json,
    require_admin,
    success,
)
from marketplace_service.services.party_manager import PartyManager

router = APIRouter()


def _party_manager() -> PartyManager:
    state = get_app_state()
    if state.party_manager is None:
        msg = "PartyManager not initialized"
        raise RuntimeError(msg)
    return state.party_manager


@router.post("/api/workers", status_code=201)
async def register_worker(request: Request) -> JSONResponse:
    """Register a worker. Badges are assigned later by an admin."""
    data = await read_json(request)
    result = await _party_manager().register_worker(data)
    return JSONResponse(status_code=201, content=success(result, "Worker registered"))


@router.get("/api/workers/{worker_id}")
async def get_worker(worker_id: str, request: Request) -> dict[str, Any]:
    """Fetch a worker profile."""
    authenticate(request)
    return success(await _party_manager().get_worker(worker_id))


@router.put("/api/workers/{worker_id}/badge")
async def assign_badge(worker_id: str, request: Request) -> dict[str, Any]:
    """Assign or clear a worker's badge (admin only)."""
    principal = authenticate(request)
    require_admin(principal)
    data = await read_json(request)
    result = await _party_manager().assign_badge(worker_id, data)
    return success(result, "Badge updated")


@router.put("/api/workers/{worker_id}/upi")
async def set_upi_id(worker_id: str, request: Request) -> dict[str, Any]:
    """Set the UPI id released payments go to."""
    principal = authenticate(request)
    data = await read_json(request)
    result = await _party_manager().set_upi_id(principal, worker_id, data)
    return success(result, "UPI id updated")


@router.post("/api/employers", status_code=201)
async def register_employer(request: Request) -> JSONResponse:
    """Register an employer."""
    data = await read_json(request)
    result = await _party_manager().register_employer(data)
    return JSONResponse(status_code=201, content=success(result, "Employer registered"))


@router.get("/api/employers/{employer_id}")
async def get_employer(employer_id: str, request: Request) -> dict[str, Any]:
    """Fetch an employer profile."""
    authenticate(request)
    return success(await _party_manager().get_employer(employer_id))
