"""Bronze-task endpoints: postings, attachments, applications and completion."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    authenticate,
    authenticate_optional,
    read_fields_and_files,
    read_json,
    success,
)
from marketplace_service.services.submission_manager import SubmissionManager
from marketplace_service.services.task_manager import TaskManager

router = APIRouter(prefix="/api/bronze-tasks")

_LIST_FILTERS: tuple[str, ...] = (
    "category",
    "workerId",
    "maxBudget",
    "difficulty",
    "industry",
    "limit",
)


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


def _submission_manager() -> SubmissionManager:
    state = get_app_state()
    if state.submission_manager is None:
        msg = "SubmissionManager not initialized"
        raise RuntimeError(msg)
    return state.submission_manager


# ---------------------------------------------------------------------------
# Catalog and listing (MUST be before /{task_id}/... routes)
# ---------------------------------------------------------------------------


@router.get("/categories")
async def get_categories() -> dict[str, Any]:
    """Category catalog with live task counts."""
    categories = await _task_manager().get_categories()
    return success({"categories": categories, "total": len(categories)})


@router.get("")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters."""
    query = {name: request.query_params.get(name) for name in _LIST_FILTERS}
    return success(await _task_manager().list_tasks(query))


@router.post("", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a task as JSON, or as multipart with ``attachments[]``."""
    principal = authenticate(request)
    fields, files = await read_fields_and_files(request, "attachments")
    result = await _task_manager().create_task(principal, fields, files)
    return JSONResponse(status_code=201, content=success(result, "Task created successfully"))


# ---------------------------------------------------------------------------
# Worker views
# ---------------------------------------------------------------------------


@router.get("/worker/{worker_id}/applications")
async def worker_applications(worker_id: str, request: Request) -> dict[str, Any]:
    """List the worker's applications."""
    principal = authenticate(request)
    result = await _task_manager().worker_applications(
        principal,
        worker_id,
        request.query_params.get("status"),
        request.query_params.get("category"),
    )
    return success(result)


@router.get("/worker/{worker_id}/metrics")
async def worker_metrics(worker_id: str, request: Request) -> dict[str, Any]:
    """Completion rate, earnings and category breakdown for a worker."""
    principal = authenticate(request)
    result = await _task_manager().worker_metrics(
        principal, worker_id, request.query_params.get("category")
    )
    return success(result)


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------


@router.get("/{task_id}/details")
async def get_task_details(task_id: str, request: Request) -> dict[str, Any]:
    """Task details; the view depends on who is asking."""
    principal = authenticate_optional(request)
    return success(await _task_manager().get_task_details(task_id, principal))


@router.post("/{task_id}/attachments", status_code=201)
async def upload_attachments(task_id: str, request: Request) -> JSONResponse:
    """Add attachments to a task (multipart ``attachments[]``)."""
    principal = authenticate(request)
    fields, files = await read_fields_and_files(request, "attachments")
    result = await _task_manager().upload_attachments(principal, task_id, files, fields)
    return JSONResponse(
        status_code=201,
        content=success(result, f"{len(result['attachments'])} attachment(s) uploaded"),
    )


@router.get("/{task_id}/attachments/{attachment_id}/download")
async def download_attachment(task_id: str, attachment_id: str) -> Response:
    """Download a task attachment."""
    content, content_type, filename = await _task_manager().download_attachment(
        task_id, attachment_id
    )
    return Response(
        content=content,
        media_type=content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
    )


@router.post("/{task_id}/apply", status_code=201)
async def apply(task_id: str, request: Request) -> JSONResponse:
    """Apply to a task as the calling worker."""
    principal = authenticate(request)
    data = await read_json(request)
    result = await _task_manager().apply(principal, task_id, data)
    return JSONResponse(
        status_code=201, content=success(result, "Application submitted successfully")
    )


@router.get("/{task_id}/applications")
async def list_applications(task_id: str, request: Request) -> dict[str, Any]:
    """List applications to the caller's task."""
    principal = authenticate(request)
    result = await _task_manager().list_applications(
        principal, task_id, request.query_params.get("status")
    )
    return success(result)


@router.put("/{task_id}/applications/{application_id}/status")
async def update_application_status(
    task_id: str, application_id: str, request: Request
) -> dict[str, Any]:
    """Accept, reject or complete an application."""
    principal = authenticate(request)
    data = await read_json(request)
    result, message = await _task_manager().update_application_status(
        principal, task_id, application_id, data
    )
    return success(result, message)


@router.post("/{task_id}/complete")
async def complete_task(task_id: str, request: Request) -> dict[str, Any]:
    """Complete a worker's application, release payment and optionally rate."""
    principal = authenticate(request)
    data = await read_json(request)
    result = await _task_manager().complete_task(principal, task_id, data)
    return success(result, "Task completed and payment released")


@router.get("/{task_id}/submissions")
async def list_submissions(task_id: str, request: Request) -> dict[str, Any]:
    """List the latest submission of every application to the caller's task."""
    principal = authenticate(request)
    result = await _submission_manager().list_for_task(
        principal, task_id, request.query_params.get("status")
    )
    return success(result)
