"""FastAPI application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from marketplace_service.config import get_settings
from marketplace_service.core.exceptions import register_exception_handlers
from marketplace_service.core.lifespan import lifespan
from marketplace_service.core.middleware import RequestValidationMiddleware
from marketplace_service.routers import health, parties, ratings, submissions, tasks
from marketplace_service.schemas import ErrorResponse

# Error envelopes documented on every /api router
_API_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status_code: {"model": ErrorResponse} for status_code in (400, 401, 403, 404, 409, 413, 415)
}


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(parties.router, tags=["Parties"], responses=_API_ERROR_RESPONSES)
    app.include_router(tasks.router, tags=["Bronze Tasks"], responses=_API_ERROR_RESPONSES)
    app.include_router(submissions.router, tags=["Submissions"], responses=_API_ERROR_RESPONSES)
    app.include_router(ratings.router, tags=["Ratings"], responses=_API_ERROR_RESPONSES)

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
