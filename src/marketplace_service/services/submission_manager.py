"""Versioned work submissions and employer review."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.field_parsing import optional_text, string_list
from marketplace_service.services.file_storage import SUBMISSIONS
from marketplace_service.services.lifecycle import (
    ACCEPTED,
    APPROVED,
    COMPLETED,
    SUBMISSION_STATUSES,
    SUBMITTED,
    check_submission_transition,
)
from marketplace_service.services.token_validator import ROLE_EMPLOYER, ROLE_WORKER

if TYPE_CHECKING:
    from marketplace_service.services.file_storage import FileStorage, IncomingFile
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.token_validator import Principal
    from marketplace_service.services.workflow import WorkflowEngine

SUBMISSION_TYPES: tuple[str, ...] = ("file", "text", "link", "mixed")


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def file_to_response(record: dict[str, Any], id_key: str) -> dict[str, Any]:
    """Format an attachment or submission file record."""
    return {
        "id": record[id_key],
        "fileName": record["file_name"],
        "fileType": record["file_type"],
        "fileSize": record["file_size"],
        "mimeType": record["mime_type"],
        "description": record["description"],
        "uploadedAt": record["uploaded_at"],
    }


def submission_to_response(
    submission: dict[str, Any], files: list[dict[str, Any]]
) -> dict[str, Any]:
    """Format a submission row and its files."""
    return {
        "id": submission["submission_id"],
        "applicationId": submission["application_id"],
        "taskId": submission["task_id"],
        "workerId": submission["worker_id"],
        "submissionType": submission["submission_type"],
        "textContent": submission["text_content"],
        "links": submission["links"],
        "status": submission["status"],
        "version": submission["version"],
        "isLatest": submission["is_latest"],
        "previousVersionId": submission["previous_version_id"],
        "reviewNote": submission["review_note"],
        "submittedAt": submission["submitted_at"],
        "reviewedAt": submission["reviewed_at"],
        "files": [file_to_response(record, "file_id") for record in files],
    }


def _infer_submission_type(text: str | None, links: list[str], has_files: bool) -> str:
    kinds = sum(1 for present in (bool(text), bool(links), has_files) if present)
    if kinds > 1:
        return "mixed"
    if has_files:
        return "file"
    if links:
        return "link"
    return "text"


class SubmissionManager:
    """
    Handles work submission, versioning, review and file access.

    Submitting again creates version n+1 and clears ``is_latest`` on the
    previous version. Only the latest version can be reviewed.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        workflow: WorkflowEngine,
        file_storage: FileStorage,
        max_file_size: int,
        max_files: int,
    ) -> None:
        self._store = store
        self._workflow = workflow
        self._files = file_storage
        self._max_file_size = max_file_size
        self._max_files = max_files
        self._logger = get_logger(__name__)

    def _with_files(self, submission: dict[str, Any]) -> dict[str, Any]:
        files = self._store.get_files_for_submission(submission["submission_id"])
        return submission_to_response(submission, files)

    def _load_participant_context(
        self, principal: Principal, application_id: str
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        application = self._store.get_application(application_id)
        if application is None:
            raise ServiceError("Application not found", "Application not found", 404)
        task = self._store.get_task(application["task_id"])
        if task is None:
            raise ServiceError("Task not found", "Task not found", 404)
        is_worker = principal.role == ROLE_WORKER and principal.principal_id == application["worker_id"]
        is_employer = principal.role == ROLE_EMPLOYER and principal.principal_id == task["employer_id"]
        if not (is_worker or is_employer or principal.is_admin):
            raise ServiceError("Access denied", "Not a participant in this task", 403)
        return application, task

    async def submit(
        self,
        principal: Principal,
        application_id: str,
        fields: dict[str, Any],
        files: list[IncomingFile],
    ) -> dict[str, Any]:
        """
        Submit work for an accepted application.

        Error precedence:
        1. Application not found (404)
        2. Access denied (403): caller is not the applicant
        3. Application not accepted (400)
        4. Validation error (400): bad submissionType, empty submission
        5. Too many files / Invalid file type (400), File too large (413)
        """
        application = self._store.get_application(application_id)
        if application is None:
            raise ServiceError("Application not found", "Application not found", 404)
        if principal.role != ROLE_WORKER or principal.principal_id != application["worker_id"]:
            raise ServiceError("Access denied", "Only the applicant can submit work", 403)
        if application["status"] != ACCEPTED:
            raise ServiceError(
                "Application not accepted",
                "Work can only be submitted for accepted applications",
                400,
                {"status": application["status"]},
            )

        text_content = optional_text(fields, "textContent")
        if text_content is not None:
            text_content = text_content.strip() or None
        links = string_list(fields.get("links"), "links")
        descriptions = string_list(fields.get("fileDescriptions"), "fileDescriptions")

        submission_type = optional_text(fields, "submissionType")
        if submission_type is None:
            submission_type = _infer_submission_type(text_content, links, len(files) > 0)
        elif submission_type not in SUBMISSION_TYPES:
            raise ServiceError(
                "Validation error",
                f"submissionType must be one of: {', '.join(SUBMISSION_TYPES)}",
                400,
                {"field": "submissionType"},
            )

        if text_content is None and len(links) == 0 and len(files) == 0:
            raise ServiceError(
                "Validation error",
                "A submission needs text, links or files",
                400,
                {},
            )

        self._files.validate(files, self._max_file_size, self._max_files)

        submission_id = f"sub-{uuid.uuid4()}"
        records = self._files.save(
            SUBMISSIONS, submission_id, files, descriptions, "Submission file"
        )
        now = _now_iso()
        try:
            with self._store.transaction():
                previous = self._store.get_latest_submission(application_id)
                if previous is not None:
                    self._store.update_submission(
                        previous["submission_id"], {"is_latest": 0}, expected_status=None
                    )
                submission = {
                    "submission_id": submission_id,
                    "application_id": application_id,
                    "task_id": application["task_id"],
                    "worker_id": application["worker_id"],
                    "submission_type": submission_type,
                    "text_content": text_content,
                    "links": links,
                    "status": SUBMITTED,
                    "version": previous["version"] + 1 if previous is not None else 1,
                    "is_latest": 1,
                    "previous_version_id": (
                        previous["submission_id"] if previous is not None else None
                    ),
                    "review_note": None,
                    "submitted_at": now,
                    "reviewed_at": None,
                }
                self._store.insert_submission(submission)
                for record in records:
                    self._store.insert_submission_file({**record, "submission_id": submission_id})
        except Exception:
            self._files.cleanup(SUBMISSIONS, submission_id, records)
            raise

        self._logger.info(
            "Work submitted",
            extra={
                "submission_id": submission_id,
                "application_id": application_id,
                "version": submission["version"],
                "file_count": len(records),
            },
        )
        submission["is_latest"] = True
        return submission_to_response(
            submission, [{**record, "submission_id": submission_id} for record in records]
        )

    async def get_submission(self, principal: Principal, submission_id: str) -> dict[str, Any]:
        """Fetch one submission version with its files."""
        submission = self._store.get_submission(submission_id)
        if submission is None:
            raise ServiceError("Submission not found", "Submission not found", 404)
        _, task = self._load_participant_context(principal, submission["application_id"])
        response = self._with_files(submission)
        response["taskTitle"] = task["title"]
        return response

    async def history(self, principal: Principal, application_id: str) -> dict[str, Any]:
        """List every submission version of an application, newest first."""
        application, _ = self._load_participant_context(principal, application_id)
        versions = [
            self._with_files(submission)
            for submission in self._store.list_submissions_for_application(application_id)
        ]
        return {
            "applicationId": application_id,
            "applicationStatus": application["status"],
            "submissions": versions,
            "count": len(versions),
        }

    async def list_for_task(
        self, principal: Principal, task_id: str, status: str | None
    ) -> dict[str, Any]:
        """List the latest submission of every application to the caller's task."""
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("Task not found", "Task not found", 404)
        if not principal.is_admin and (
            principal.role != ROLE_EMPLOYER or principal.principal_id != task["employer_id"]
        ):
            raise ServiceError("Access denied", "Only the task owner can view submissions", 403)
        if status is not None and status not in SUBMISSION_STATUSES:
            raise ServiceError(
                "Invalid status",
                f"status must be one of: {', '.join(SUBMISSION_STATUSES)}",
                400,
                {"status": status},
            )

        submissions = []
        for submission in self._store.list_submissions_for_task(task_id, status):
            response = self._with_files(submission)
            response["workerName"] = submission["worker_name"]
            submissions.append(response)
        return {"taskId": task_id, "submissions": submissions, "count": len(submissions)}

    async def review(
        self, principal: Principal, submission_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Review the latest submission of an application.

        APPROVED completes the application in the same transaction: the
        escrow is released and the worker credited. If any step fails the
        review is not stored.

        Error precedence:
        1. Submission not found (404)
        2. Access denied (403): caller does not own the task
        3. Submission superseded (409): a newer version exists
        4. Invalid status (400) / Invalid status transition (409)
        5. Invalid status transition (409) / Payment release failed (409)
           from completing the application
        """
        now = _now_iso()
        transition = None
        with self._store.transaction():
            submission = self._store.get_submission(submission_id)
            if submission is None:
                raise ServiceError("Submission not found", "Submission not found", 404)
            task = self._store.get_task(submission["task_id"])
            if task is None:
                raise ServiceError("Task not found", "Task not found", 404)
            if principal.role != ROLE_EMPLOYER or principal.principal_id != task["employer_id"]:
                raise ServiceError("Access denied", "Only the task owner can review work", 403)
            if not submission["is_latest"]:
                raise ServiceError(
                    "Submission superseded",
                    "A newer version of this submission exists",
                    409,
                    {"submission_id": submission_id},
                )

            target = check_submission_transition(submission["status"], body.get("status"))
            review_note = optional_text(body, "reviewNote")
            changed = self._store.update_submission(
                submission_id,
                {"status": target, "review_note": review_note, "reviewed_at": now},
                expected_status=submission["status"],
            )
            if changed == 0:
                raise ServiceError(
                    "Invalid status transition",
                    "Submission was reviewed concurrently",
                    409,
                    {"submission_id": submission_id},
                )
            if target == APPROVED:
                transition = self._workflow.transition_application(
                    submission["application_id"], COMPLETED, note=review_note
                )

        self._logger.info(
            "Submission reviewed",
            extra={
                "submission_id": submission_id,
                "application_id": submission["application_id"],
                "status": target,
            },
        )
        submission.update({"status": target, "review_note": review_note, "reviewed_at": now})
        response: dict[str, Any] = {"submission": self._with_files(submission)}
        if transition is not None:
            response["applicationStatus"] = transition.application["status"]
            payment = transition.payment or {}
            response["payment"] = {
                "status": payment.get("status"),
                "amount": payment.get("amount"),
                "transactionId": payment.get("transaction_id"),
            }
        return response

    async def download_file(
        self, principal: Principal, submission_id: str, file_id: str
    ) -> tuple[bytes, str, str]:
        """
        Read a submission file.

        Returns (file_content, mime_type, file_name).
        """
        submission = self._store.get_submission(submission_id)
        if submission is None:
            raise ServiceError("Submission not found", "Submission not found", 404)
        self._load_participant_context(principal, submission["application_id"])
        record = self._store.get_submission_file(file_id, submission_id)
        if record is None:
            raise ServiceError("File not found", "File not found", 404)
        content = self._files.read(SUBMISSIONS, submission_id, record["stored_name"])
        return content, record["mime_type"], record["file_name"]
