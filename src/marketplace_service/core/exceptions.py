"""Service exception type and handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace_service.config import get_settings
from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = ["ServiceError", "error_body", "register_exception_handlers"]


class ServiceError(Exception):
    """
    Error raised by the service layer and rendered as an error envelope.

    ``error`` is the short, stable string clients match on, ``message`` is
    human readable text.
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}


def error_body(error: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the JSON error envelope."""
    return {
        "success": False,
        "error": error,
        "message": message,
        "details": details if details is not None else {},
    }


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error, exc.message, exc.details),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle FastAPI request validation failures as 400 responses."""
    logger = get_logger(__name__)
    logger.warning("Request validation failed", extra={"path": str(request.url.path)})
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body("Validation error", "Request validation failed", {"errors": errors}),
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (404 for unknown routes, 405 from router)."""
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content=error_body("Not found", "Route not found"),
        )
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content=error_body("Method not allowed", "Method not allowed"),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body("HTTP error", str(exc.detail)),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    details: dict[str, Any] = {}
    if get_settings().service.debug:
        details = {"exception": f"{type(exc).__name__}: {exc}"}
    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error", "An unexpected error occurred", details),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(
        RequestValidationError,
        cast("ExceptionHandler", validation_exception_handler),
    )
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
