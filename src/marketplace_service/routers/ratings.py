"""Rating endpoints."""

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
from marketplace_service.services.rating_manager import RatingManager

router = APIRouter(prefix="/api/ratings")


def _rating_manager() -> RatingManager:
    state = get_app_state()
    if state.rating_manager is None:
        msg = "RatingManager not initialized"
        raise RuntimeError(msg)
    return state.rating_manager


@router.post("/submit", status_code=201)
async def submit_rating(request: Request) -> JSONResponse:
    """Rate the other party of a completed application."""
    principal = authenticate(request)
    data = await read_json(request)
    result = await _rating_manager().submit_rating(principal, data)
    return JSONResponse(status_code=201, content=success(result, "Rating submitted successfully"))


@router.get("/pending")
async def pending_ratings(request: Request) -> dict[str, Any]:
    """Completed applications the caller has not rated yet."""
    principal = authenticate(request)
    return success(await _rating_manager().pending_ratings(principal))


@router.get("/can-rate/{application_id}")
async def can_rate(application_id: str, request: Request) -> dict[str, Any]:
    """Whether the caller may rate an application."""
    principal = authenticate(request)
    return success(await _rating_manager().can_rate(principal, application_id))


@router.get("/statistics")
async def rating_statistics(request: Request) -> dict[str, Any]:
    """Platform-wide rating statistics (admin only)."""
    require_admin(authenticate(request))
    return success(await _rating_manager().rating_statistics())


@router.get("/details/{rating_id}")
async def rating_details(rating_id: str, request: Request) -> dict[str, Any]:
    """One rating with its context (admin only)."""
    require_admin(authenticate(request))
    return success(await _rating_manager().rating_details(rating_id))


@router.put("/{rating_id}/visibility")
async def set_visibility(rating_id: str, request: Request) -> dict[str, Any]:
    """Show or hide a rating (admin only)."""
    require_admin(authenticate(request))
    data = await read_json(request)
    result = await _rating_manager().set_visibility(rating_id, data)
    return success(result, "Rating visibility updated")


@router.get("/overview/{user_id}")
async def rating_overview(user_id: str, request: Request) -> dict[str, Any]:
    """Reputation summary for a worker or employer."""
    authenticate(request)
    result = await _rating_manager().rating_overview(
        user_id, request.query_params.get("userType")
    )
    return success(result)


# ---------------------------------------------------------------------------
# GET /{user_id} -- MUST be last, it shadows every single-segment GET above
# ---------------------------------------------------------------------------


@router.get("/{user_id}")
async def user_ratings(user_id: str, request: Request) -> dict[str, Any]:
    """Visible ratings a worker or employer received."""
    authenticate(request)
    result = await _rating_manager().user_ratings(user_id, request.query_params.get("userType"))
    return success(result)
