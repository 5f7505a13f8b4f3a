"""Shared request parsing and authentication helpers for marketplace routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from starlette.datastructures import UploadFile as StarletteUploadFile

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.core.state import get_app_state
from marketplace_service.services.file_storage import IncomingFile

if TYPE_CHECKING:
    from fastapi import Request

    from marketplace_service.services.token_validator import Principal


def _reject_constant(name: str) -> Any:
    msg = f"{name} is not valid JSON"
    raise ValueError(msg)


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure. NaN and Infinity are rejected."""
    try:
        data = json.loads(raw_body, parse_constant=_reject_constant)
    except ValueError as exc:
        raise ServiceError(
            "Validation error",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "Validation error",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


async def read_json(request: Request) -> dict[str, Any]:
    """Read the request body as a JSON object; an empty body is ``{}``."""
    body = await request.body()
    return {} if body == b"" else parse_json_body(body)


def extract_bearer_token(authorization: str | None, *, required: bool) -> str | None:
    """Extract the JWT from an Authorization header."""
    if authorization is None or authorization.strip() == "":
        if required:
            raise ServiceError(
                "Access denied",
                "No token provided",
                401,
                {},
            )
        return None

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "Token verification failed",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise ServiceError(
            "Access denied",
            "No token provided",
            401,
            {},
        )

    return token


def authenticate(request: Request) -> Principal:
    """Verify the bearer token and return the caller."""
    token = extract_bearer_token(request.headers.get("authorization"), required=True)
    state = get_app_state()
    if state.token_validator is None:
        msg = "TokenValidator not initialized"
        raise RuntimeError(msg)
    return state.token_validator.verify(str(token))


def authenticate_optional(request: Request) -> Principal | None:
    """Like ``authenticate`` but anonymous callers get None."""
    token = extract_bearer_token(request.headers.get("authorization"), required=False)
    if token is None:
        return None
    state = get_app_state()
    if state.token_validator is None:
        msg = "TokenValidator not initialized"
        raise RuntimeError(msg)
    return state.token_validator.verify(token)


def require_admin(principal: Principal) -> None:
    """Reject non-admin callers."""
    if not principal.is_admin:
        raise ServiceError("Access denied", "Admin access required", 403, {})


def _is_multipart(request: Request) -> bool:
    content_type = request.headers.get("content-type", "").lower()
    return content_type.startswith("multipart/form-data")


async def read_fields_and_files(
    request: Request, file_field: str
) -> tuple[dict[str, Any], list[IncomingFile]]:
    """
    Read a JSON body, or a multipart form with files under ``file_field``.

    Multipart files may be sent as ``file_field`` or ``file_field[]``. Text
    form fields are returned as strings; repeated fields keep their last value.
    """
    if not _is_multipart(request):
        return await read_json(request), []

    form = await request.form()
    fields: dict[str, Any] = {}
    files: list[IncomingFile] = []
    for key, value in form.multi_items():
        if isinstance(value, StarletteUploadFile):
            if key not in (file_field, f"{file_field}[]"):
                raise ServiceError(
                    "Validation error",
                    f"Unexpected file field '{key}'",
                    400,
                    {"field": key},
                )
            # Browsers send an empty part when no file was picked.
            if not value.filename:
                continue
            files.append(
                IncomingFile(
                    filename=value.filename,
                    content_type=value.content_type or "application/octet-stream",
                    content=await value.read(),
                )
            )
        else:
            fields[key] = value
    return fields, files


def success(data: Any, message: str | None = None) -> dict[str, Any]:
    """Wrap a result in the success envelope."""
    return {"success": True, "data": data, "message": message}
