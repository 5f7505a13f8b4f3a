"""Work submission and review endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    authenticate,
    read_fields_and_files,
    read_json,
    success,
)
from marketplace_service.services.submission_manager import SubmissionManager

router = APIRouter(prefix="/api/task-submissions")


def _submission_manager() -> SubmissionManager:
    state = get_app_state()
    if state.submission_manager is None:
        msg = "SubmissionManager not initialized"
        raise RuntimeError(msg)
    return state.submission_manager


# ---------------------------------------------------------------------------
# GET /application/{application_id}/history
# MUST be before GET /{submission_id}
# ---------------------------------------------------------------------------


@router.get("/application/{application_id}/history")
async def submission_history(application_id: str, request: Request) -> dict[str, Any]:
    """All submission versions of an application, newest first."""
    principal = authenticate(request)
    return success(await _submission_manager().history(principal, application_id))


@router.post("/{application_id}", status_code=201)
async def submit_work(application_id: str, request: Request) -> JSONResponse:
    """Submit work as JSON, or as multipart with ``submissions[]``."""
    principal = authenticate(request)
    fields, files = await read_fields_and_files(request, "submissions")
    result = await _submission_manager().submit(principal, application_id, fields, files)
    return JSONResponse(
        status_code=201, content=success(result, "Work submitted successfully")
    )


@router.get("/{submission_id}")
async def get_submission(submission_id: str, request: Request) -> dict[str, Any]:
    """Fetch one submission with its files."""
    principal = authenticate(request)
    return success(await _submission_manager().get_submission(principal, submission_id))


@router.put("/{submission_id}/review")
async def review_submission(submission_id: str, request: Request) -> dict[str, Any]:
    """Review the latest submission; APPROVED completes the application."""
    principal = authenticate(request)
    data = await read_json(request)
    result = await _submission_manager().review(principal, submission_id, data)
    return success(result, f"Submission {result['submission']['status'].lower()}")


@router.get("/{submission_id}/files/{file_id}/download")
async def download_file(submission_id: str, file_id: str, request: Request) -> Response:
    """Download a submitted file."""
    principal = authenticate(request)
    content, content_type, filename = await _submission_manager().download_file(
        principal, submission_id, file_id
    )
    return Response(
        content=content,
        media_type=content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
    )
