"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

from marketplace_service.core.exceptions import error_body

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


_JSON_VALIDATION_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/api/workers$")),
    ("PUT", re.compile(r"^/api/workers/[^/]+/badge$")),
    ("PUT", re.compile(r"^/api/workers/[^/]+/upi$")),
    ("POST", re.compile(r"^/api/employers$")),
    ("POST", re.compile(r"^/api/bronze-tasks/[^/]+/apply$")),
    ("PUT", re.compile(r"^/api/bronze-tasks/[^/]+/applications/[^/]+/status$")),
    ("POST", re.compile(r"^/api/bronze-tasks/[^/]+/complete$")),
    ("PUT", re.compile(r"^/api/task-submissions/[^/]+/review$")),
    ("POST", re.compile(r"^/api/ratings/submit$")),
    ("PUT", re.compile(r"^/api/ratings/[^/]+/visibility$")),
)
# Accept either a JSON body or multipart/form-data with files.
_UPLOAD_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/api/bronze-tasks$")),
    ("POST", re.compile(r"^/api/task-submissions/[^/]+$")),
)
_MULTIPART_ONLY_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/api/bronze-tasks/[^/]+/attachments$")),
)


def _matches(
    endpoints: tuple[tuple[str, re.Pattern[str]], ...], method: str, path: str
) -> bool:
    return any(
        candidate_method == method and pattern.match(path) is not None
        for candidate_method, pattern in endpoints
    )


def _unsupported_media_type(expected: str) -> JSONResponse:
    return JSONResponse(
        status_code=415,
        content=error_body(
            "Unsupported media type",
            f"Content-Type must be {expected}",
        ),
    )


class RequestValidationMiddleware:
    """
    ASGI middleware that validates Content-Type and body size.

    Runs before FastAPI routes. Returns 415 for wrong content-type
    on POST/PUT/PATCH, and 413 for oversized JSON bodies.

    - JSON endpoints accept application/json; an empty body without a
      Content-Type is let through so the router can report missing fields
    - upload endpoints accept application/json or multipart/form-data
    - the attachment endpoint accepts multipart/form-data only

    Multipart bodies are not size-checked here; per-file limits are
    enforced by the file storage layer.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = cast("str", scope.get("method", "GET"))

        if method not in ("POST", "PUT", "PATCH"):
            await self.app(scope, receive, send)
            return

        path = cast("str", scope.get("path", ""))
        raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
        headers: dict[bytes, bytes] = dict(raw_headers)
        content_type = headers.get(b"content-type", b"").decode().lower()
        is_multipart = content_type.startswith("multipart/form-data")
        is_json = content_type.startswith("application/json")

        if _matches(_MULTIPART_ONLY_ENDPOINTS, method, path):
            # If Content-Type is omitted, let the router report the missing files.
            if content_type != "" and not is_multipart:
                await _unsupported_media_type("multipart/form-data")(scope, receive, send)
                return
            await self.app(scope, receive, send)
            return

        accepts_upload = _matches(_UPLOAD_ENDPOINTS, method, path)
        expects_json = _matches(_JSON_VALIDATION_ENDPOINTS, method, path)

        # Unknown endpoint/method combos should be handled by router as 404/405.
        if not accepts_upload and not expects_json:
            await self.app(scope, receive, send)
            return

        if accepts_upload and is_multipart:
            await self.app(scope, receive, send)
            return

        if content_type != "" and not is_json:
            expected = (
                "application/json or multipart/form-data" if accepts_upload else "application/json"
            )
            await _unsupported_media_type(expected)(scope, receive, send)
            return

        # Read and buffer body, checking size
        body_parts: list[bytes] = []
        body_size = 0

        while True:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            body_parts.append(chunk)
            body_size += len(chunk)

            if body_size > self.max_body_size:
                response = JSONResponse(
                    status_code=413,
                    content=error_body(
                        "Payload too large",
                        "Request body exceeds maximum allowed size",
                    ),
                )
                await response(scope, receive, send)
                return

            if not message.get("more_body", False):
                break

        full_body = b"".join(body_parts)
        if content_type == "" and full_body.strip() != b"":
            await _unsupported_media_type("application/json")(scope, receive, send)
            return

        # Replay buffered body for downstream app
        body_sent = False

        async def buffered_receive() -> dict[str, Any]:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": full_body, "more_body": False}
            return {"type": "http.disconnect"}

        await self.app(scope, buffered_receive, send)
