"""Bronze-task postings, applications and completion: business logic for the task routes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.catalog import (
    DIFFICULTIES,
    category_display,
    list_categories,
    parse_category,
    to_category_slug,
)
from marketplace_service.services.field_parsing import (
    optional_text,
    parse_limit,
    positive_amount,
    positive_int,
    require_text,
    round_half_up,
    string_list,
)
from marketplace_service.services.file_storage import ATTACHMENTS
from marketplace_service.services.lifecycle import (
    ACCEPTED,
    APPLICATION_STATUSES,
    APPLIED,
    COMPLETED,
    REJECTED,
)
from marketplace_service.services.marketplace_store import DuplicateApplicationError
from marketplace_service.services.rating_manager import validate_stars
from marketplace_service.services.submission_manager import (
    file_to_response,
    submission_to_response,
)
from marketplace_service.services.token_validator import ROLE_EMPLOYER, ROLE_WORKER

if TYPE_CHECKING:
    from marketplace_service.config import MarketplaceConfig
    from marketplace_service.services.escrow_coordinator import EscrowCoordinator
    from marketplace_service.services.file_storage import FileStorage, IncomingFile
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.token_validator import Principal
    from marketplace_service.services.workflow import TransitionResult, WorkflowEngine

_STATUS_MESSAGES: dict[str, str] = {
    ACCEPTED: "Application accepted and payment escrowed",
    REJECTED: "Application rejected",
    COMPLETED: "Task completed and payment released",
}

_LOW_COMPLETION_RATE = 70
_LOW_EARNINGS = 1000


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _status_counts(applications: list[dict[str, Any]]) -> dict[str, int]:
    counts = dict.fromkeys(APPLICATION_STATUSES, 0)
    for application in applications:
        counts[application["status"]] += 1
    return counts


class TaskManager:
    """
    Manages bronze tasks from posting to completion.

    Status changes go through ``WorkflowEngine`` so escrow, payment and
    worker statistics move together with the application.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        workflow: WorkflowEngine,
        escrow_coordinator: EscrowCoordinator,
        file_storage: FileStorage,
        rules: MarketplaceConfig,
        attachment_max_file_size: int,
        attachment_max_files: int,
    ) -> None:
        self._store = store
        self._workflow = workflow
        self._escrow = escrow_coordinator
        self._files = file_storage
        self._rules = rules
        self._attachment_max_file_size = attachment_max_file_size
        self._attachment_max_files = attachment_max_files
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _task_to_response(self, row: dict[str, Any]) -> dict[str, Any]:
        """Convert a task row to its public representation."""
        hours = row["duration"] / 60
        return {
            "id": row["task_id"],
            "employerId": row["employer_id"],
            "title": row["title"],
            "description": row["description"],
            "category": row["category"],
            "categoryDisplay": category_display(row["category"]),
            "payAmount": row["pay_amount"],
            "hourlyRate": round_half_up(row["pay_amount"] / hours),
            "duration": row["duration"],
            "estimatedHours": round_half_up(hours),
            "difficulty": row["difficulty"],
            "skillTags": row["skill_tags"],
            "industry": row["industry"],
            "requiredBadge": self._rules.qualifying_badges[0],
            "createdAt": row["created_at"],
        }

    def _application_to_response(self, row: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": row["application_id"],
            "taskId": row["task_id"],
            "workerId": row["worker_id"],
            "status": row["status"],
            "message": row["message"],
            "note": row["note"],
            "appliedAt": row["applied_at"],
            "updatedAt": row["updated_at"],
            "completedAt": row["completed_at"],
        }

    def _payment_to_response(self, payment: dict[str, Any] | None) -> dict[str, Any] | None:
        if payment is None:
            return None
        return {
            "id": payment["payment_id"],
            "status": payment["status"],
            "amount": payment["amount"],
            "transactionId": payment["transaction_id"],
            "workerUpiId": payment["worker_upi_id"],
            "paymentNote": payment["payment_note"],
        }

    def _latest_submission(self, application_id: str) -> dict[str, Any] | None:
        submission = self._store.get_latest_submission(application_id)
        if submission is None:
            return None
        files = self._store.get_files_for_submission(submission["submission_id"])
        return submission_to_response(submission, files)

    def _require_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("Task not found", "Invalid task ID", 404, {"task_id": task_id})
        return task

    def _require_owner(self, principal: Principal, task: dict[str, Any]) -> None:
        if principal.role != ROLE_EMPLOYER or principal.principal_id != task["employer_id"]:
            raise ServiceError("Access denied", "Only the task owner can do this", 403)

    def _require_self_or_admin(self, principal: Principal, worker_id: str) -> None:
        if principal.is_admin:
            return
        if principal.role != ROLE_WORKER or principal.principal_id != worker_id:
            raise ServiceError("Access denied", "Workers can only view their own data", 403)

    def _store_attachments(
        self,
        task_id: str,
        files: list[IncomingFile],
        descriptions: list[str],
    ) -> list[dict[str, Any]]:
        records = self._files.save(ATTACHMENTS, task_id, files, descriptions, "Attachment")
        attachments = [
            {
                "attachment_id": record["file_id"],
                "task_id": task_id,
                **{key: value for key, value in record.items() if key != "file_id"},
            }
            for record in records
        ]
        return attachments

    # ------------------------------------------------------------------
    # Public methods, called by routers
    # ------------------------------------------------------------------

    async def get_categories(self) -> list[dict[str, Any]]:
        """Return the category catalog with live task counts."""
        return list_categories(self._store.count_tasks_by_category())

    async def create_task(
        self,
        principal: Principal,
        fields: dict[str, Any],
        files: list[IncomingFile],
    ) -> dict[str, Any]:
        """
        Post a bronze task, optionally with attachments.

        Error precedence:
        1. Access denied (403): caller is not an employer, or employerId
           names someone else
        2. Validation error (400): missing or malformed fields
        3. Too many files / Invalid file type (400), File too large (413)
        4. Employer not found (404)
        """
        if principal.role != ROLE_EMPLOYER:
            raise ServiceError("Access denied", "Only employers can post tasks", 403)
        employer_id = fields.get("employerId", principal.principal_id)
        if employer_id != principal.principal_id:
            raise ServiceError("Access denied", "employerId does not match the caller", 403)

        title = require_text(fields, "title")
        description = require_text(fields, "description")
        category = parse_category(fields.get("category"))
        duration = positive_int(fields, "duration")
        pay_amount = positive_amount(fields, "payAmount")

        difficulty = optional_text(fields, "difficulty") or "beginner"
        if difficulty not in DIFFICULTIES:
            raise ServiceError(
                "Validation error",
                f"difficulty must be one of: {', '.join(DIFFICULTIES)}",
                400,
                {"field": "difficulty"},
            )
        skill_tags = string_list(fields.get("skillTags"), "skillTags")
        industry = optional_text(fields, "industry") or "general"
        descriptions = string_list(fields.get("attachmentDescriptions"), "attachmentDescriptions")

        self._files.validate(files, self._attachment_max_file_size, self._attachment_max_files)

        if self._store.get_employer(principal.principal_id) is None:
            raise ServiceError("Employer not found", "Employer not found", 404)

        task_id = f"task-{uuid.uuid4()}"
        task = {
            "task_id": task_id,
            "employer_id": principal.principal_id,
            "title": title,
            "description": description,
            "category": category,
            "pay_amount": pay_amount,
            "duration": duration,
            "difficulty": difficulty,
            "skill_tags": skill_tags,
            "industry": industry,
            "created_at": _now_iso(),
        }
        attachments = self._store_attachments(task_id, files, descriptions)
        try:
            with self._store.transaction():
                self._store.insert_task(task)
                for attachment in attachments:
                    self._store.insert_attachment(attachment)
        except Exception:
            self._files.cleanup(ATTACHMENTS, task_id, attachments)
            raise

        self._logger.info(
            "Task created",
            extra={
                "task_id": task_id,
                "employer_id": principal.principal_id,
                "category": category,
                "attachment_count": len(attachments),
            },
        )
        response = self._task_to_response(task)
        response["attachments"] = [file_to_response(a, "attachment_id") for a in attachments]
        return response

    async def list_tasks(self, query: dict[str, str | None]) -> dict[str, Any]:
        """
        List tasks with optional category, budget, difficulty and industry filters.

        When ``workerId`` is given, each task reports whether that worker
        can still apply.
        """
        raw_category = query.get("category")
        category = None
        if raw_category is not None and raw_category != "all":
            category = parse_category(raw_category)

        max_budget: float | None = None
        if query.get("maxBudget") is not None:
            max_budget = positive_amount(query, "maxBudget")
        limit = parse_limit(
            query.get("limit"), self._rules.default_list_limit, self._rules.max_list_limit
        )

        worker = None
        worker_id = query.get("workerId")
        if worker_id is not None:
            worker = self._store.get_worker(worker_id)
            if worker is None:
                raise ServiceError("Worker not found", "Invalid worker ID", 404)

        rows = self._store.list_tasks(
            category=category,
            max_budget=max_budget,
            difficulty=query.get("difficulty"),
            industry=query.get("industry"),
            limit=limit,
        )

        worker_applications: dict[str, dict[str, Any]] = {}
        if worker is not None:
            worker_applications = {
                row["task_id"]: row
                for row in self._store.list_applications_for_worker(worker["worker_id"], None, None)
            }
        qualified = worker is None or worker["badge"] in self._rules.qualifying_badges

        tasks = []
        for row in rows:
            application = worker_applications.get(row["task_id"])
            can_apply = (
                worker is not None
                and qualified
                and application is None
                and row["application_count"] < self._rules.max_applications_per_task
            )
            response = self._task_to_response(row)
            response["employer"] = {"name": row["employer_name"], "isVerified": row["is_verified"]}
            response["applications"] = {
                "total": row["application_count"],
                "canApply": can_apply,
                "workerHasApplied": application is not None,
                "workerApplication": (
                    {"id": application["application_id"], "status": application["status"]}
                    if application is not None
                    else None
                ),
            }
            response["compatibility"] = (
                {
                    "qualified": qualified,
                    "badgeMatch": "perfect" if worker["badge"] == "BRONZE" else "qualified",
                }
                if worker is not None
                else None
            )
            tasks.append(response)

        category_info = None
        if category is not None:
            slug = to_category_slug(category)
            category_info = next(c for c in await self.get_categories() if c["id"] == slug)
        return {"tasks": tasks, "total": len(tasks), "category": category_info}

    async def get_task_details(self, task_id: str, principal: Principal | None) -> dict[str, Any]:
        """
        Role-aware task details.

        The owner sees every application with its latest submission, an
        applicant sees their own application, everyone else sees the
        public view.
        """
        task = self._require_task(task_id)
        employer = self._store.get_employer(task["employer_id"])
        applications = self._store.list_applications_for_task(task_id, None)

        user_role = "public"
        user_application = None
        if principal is not None:
            if principal.role == ROLE_EMPLOYER and principal.principal_id == task["employer_id"]:
                user_role = "employer"
            elif principal.role == ROLE_WORKER:
                user_application = next(
                    (a for a in applications if a["worker_id"] == principal.principal_id), None
                )
                if user_application is not None:
                    user_role = "applicant"

        counts = _status_counts(applications)
        response = self._task_to_response(task)
        response["employer"] = {
            "name": employer["name"] if employer is not None else None,
            "isVerified": employer["is_verified"] if employer is not None else False,
        }
        if user_role != "public" and employer is not None:
            response["employer"]["phone"] = employer["phone"]
        response["attachments"] = [
            file_to_response(a, "attachment_id")
            for a in self._store.get_attachments_for_task(task_id)
        ]
        response["applications"] = {
            "total": len(applications),
            "pending": counts[APPLIED],
            "accepted": counts[ACCEPTED],
            "completed": counts[COMPLETED],
            "canApply": user_role == "public"
            and len(applications) < self._rules.max_applications_per_task,
        }
        payment = self._escrow.payment_summary(task)
        response["payment"] = payment if user_role != "public" else {"status": payment["status"]}
        response["userRole"] = user_role
        response["userApplication"] = None
        if user_application is not None:
            response["userApplication"] = {
                **self._application_to_response(user_application),
                "submission": self._latest_submission(user_application["application_id"]),
            }
        if user_role == "employer":
            response["allApplications"] = [
                {
                    **self._application_to_response(application),
                    "worker": {
                        "id": application["worker_id"],
                        "name": application["worker_name"],
                        "badge": application["worker_badge"],
                        "tasksCompleted": application["worker_tasks_completed"],
                        "averageRating": application["worker_average_rating"] or 0,
                    },
                    "submission": self._latest_submission(application["application_id"]),
                }
                for application in applications
            ]
        return response

    async def upload_attachments(
        self,
        principal: Principal,
        task_id: str,
        files: list[IncomingFile],
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        """Add attachments to the caller's task."""
        task = self._require_task(task_id)
        self._require_owner(principal, task)
        if len(files) == 0:
            raise ServiceError("Validation error", "No files uploaded", 400, {"field": "attachments"})
        self._files.validate(files, self._attachment_max_file_size, self._attachment_max_files)

        descriptions = string_list(fields.get("attachmentDescriptions"), "attachmentDescriptions")
        attachments = self._store_attachments(task_id, files, descriptions)
        try:
            with self._store.transaction():
                for attachment in attachments:
                    self._store.insert_attachment(attachment)
        except Exception:
            self._files.cleanup(ATTACHMENTS, task_id, attachments)
            raise

        self._logger.info(
            "Attachments uploaded",
            extra={"task_id": task_id, "attachment_count": len(attachments)},
        )
        return {
            "taskId": task_id,
            "attachments": [file_to_response(a, "attachment_id") for a in attachments],
        }

    async def download_attachment(self, task_id: str, attachment_id: str) -> tuple[bytes, str, str]:
        """
        Read an attachment file.

        Returns (file_content, mime_type, file_name).
        """
        self._require_task(task_id)
        attachment = self._store.get_attachment(attachment_id, task_id)
        if attachment is None:
            raise ServiceError("Attachment not found", "Attachment not found", 404)
        content = self._files.read(ATTACHMENTS, task_id, attachment["stored_name"])
        return content, attachment["mime_type"], attachment["file_name"]

    async def apply(
        self, principal: Principal, task_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Apply to a task as the calling worker.

        Error precedence:
        1. Access denied (403): caller is not a worker, or workerId names
           someone else
        2. Task not found (404)
        3. Worker not found (404)
        4. Insufficient badge level (403)
        5. Application already exists (409)
        6. Application limit reached (409)
        """
        if principal.role != ROLE_WORKER:
            raise ServiceError("Access denied", "Only workers can apply to tasks", 403)
        if body.get("workerId", principal.principal_id) != principal.principal_id:
            raise ServiceError("Access denied", "workerId does not match the caller", 403)

        task = self._require_task(task_id)
        worker = self._store.get_worker(principal.principal_id)
        if worker is None:
            raise ServiceError("Worker not found", "Worker not found", 404)
        if worker["badge"] not in self._rules.qualifying_badges:
            raise ServiceError(
                "Insufficient badge level",
                "Bronze badge or higher is required to apply for this task",
                403,
                {"badge": worker["badge"]},
            )

        message = optional_text(body, "message")
        if not message:
            readable = task["category"].lower().replace("_", " ")
            message = (
                f"I'm interested in this {readable} task and believe I have "
                "the necessary skills."
            )

        now = _now_iso()
        application = {
            "application_id": f"app-{uuid.uuid4()}",
            "task_id": task_id,
            "worker_id": worker["worker_id"],
            "status": APPLIED,
            "message": message,
            "note": None,
            "applied_at": now,
            "updated_at": now,
            "completed_at": None,
        }
        duplicate = ServiceError(
            "Application already exists",
            "You have already applied for this task",
            409,
            {"task_id": task_id},
        )
        with self._store.transaction():
            if self._store.get_worker_application(task_id, worker["worker_id"]) is not None:
                raise duplicate
            if self._store.count_applications(task_id) >= self._rules.max_applications_per_task:
                raise ServiceError(
                    "Application limit reached",
                    "This task is no longer accepting applications",
                    409,
                    {"max_applications": self._rules.max_applications_per_task},
                )
            try:
                self._store.insert_application(application)
            except DuplicateApplicationError as exc:
                raise duplicate from exc

        self._logger.info(
            "Application submitted",
            extra={"task_id": task_id, "application_id": application["application_id"]},
        )
        response = self._application_to_response(application)
        response["task"] = {"title": task["title"], "payAmount": task["pay_amount"]}
        return response

    async def list_applications(
        self, principal: Principal, task_id: str, status: str | None
    ) -> dict[str, Any]:
        """List applications to the caller's task with per-status counts."""
        task = self._require_task(task_id)
        self._require_owner(principal, task)
        if status is not None and status not in APPLICATION_STATUSES:
            raise ServiceError(
                "Invalid status",
                f"status must be one of: {', '.join(APPLICATION_STATUSES)}",
                400,
                {"status": status},
            )

        all_applications = self._store.list_applications_for_task(task_id, None)
        selected = [a for a in all_applications if status is None or a["status"] == status]
        return {
            "task": {"id": task_id, "title": task["title"]},
            "applications": [
                {
                    **self._application_to_response(application),
                    "worker": {
                        "id": application["worker_id"],
                        "name": application["worker_name"],
                        "badge": application["worker_badge"],
                        "tasksCompleted": application["worker_tasks_completed"],
                        "averageRating": application["worker_average_rating"] or 0,
                    },
                }
                for application in selected
            ],
            "stats": {"total": len(all_applications), "byStatus": _status_counts(all_applications)},
        }

    def _transition_response(self, result: TransitionResult) -> dict[str, Any]:
        response: dict[str, Any] = {
            "application": self._application_to_response(result.application),
            "previousStatus": result.previous_status,
            "payment": self._payment_to_response(result.payment),
        }
        if result.rating is not None:
            response["rating"] = {
                "id": result.rating["rating_id"],
                "stars": result.rating["stars"],
                "newAverageRating": result.rating["new_average"],
            }
        return response

    async def update_application_status(
        self,
        principal: Principal,
        task_id: str,
        application_id: str,
        body: dict[str, Any],
    ) -> tuple[dict[str, Any], str]:
        """
        Accept, reject or complete an application of the caller's task.

        Returns (response, message).
        """
        task = self._require_task(task_id)
        self._require_owner(principal, task)
        application = self._store.get_application(application_id)
        if application is None:
            raise ServiceError("Application not found", "Application not found", 404)
        if application["task_id"] != task_id:
            raise ServiceError(
                "Task ID mismatch",
                "Application does not belong to this task",
                400,
                {"task_id": task_id, "application_id": application_id},
            )

        note = optional_text(body, "note")
        result = self._workflow.transition_application(
            application_id, body.get("status"), note=note
        )
        message = _STATUS_MESSAGES.get(result.application["status"], "Application updated")
        return self._transition_response(result), message

    async def complete_task(
        self, principal: Principal, task_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Complete the worker's accepted application, release payment and
        rate the worker. The rating defaults to 5 stars.
        """
        task = self._require_task(task_id)
        self._require_owner(principal, task)

        worker_id = body.get("workerId")
        if not isinstance(worker_id, str) or worker_id == "":
            raise ServiceError("Validation error", "workerId is required", 400, {"field": "workerId"})
        rating = validate_stars(body["rating"]) if body.get("rating") is not None else 5
        feedback = optional_text(body, "feedback") or "Task completed successfully"

        application = self._store.get_worker_application(task_id, worker_id)
        if application is None:
            raise ServiceError(
                "Application not found",
                "No application from this worker for this task",
                404,
            )

        result = self._workflow.transition_application(
            application["application_id"], COMPLETED, note=feedback, rating=rating
        )
        return self._transition_response(result)

    async def worker_applications(
        self,
        principal: Principal,
        worker_id: str,
        status: str | None,
        category: str | None,
    ) -> dict[str, Any]:
        """List a worker's own applications with task details."""
        self._require_self_or_admin(principal, worker_id)
        if self._store.get_worker(worker_id) is None:
            raise ServiceError("Worker not found", "Worker not found", 404)
        if status is not None and status not in APPLICATION_STATUSES:
            raise ServiceError(
                "Invalid status",
                f"status must be one of: {', '.join(APPLICATION_STATUSES)}",
                400,
                {"status": status},
            )
        category_enum = parse_category(category) if category is not None else None

        rows = self._store.list_applications_for_worker(worker_id, status, category_enum)
        applications = [
            {
                **self._application_to_response(row),
                "task": {
                    "id": row["task_id"],
                    "title": row["task_title"],
                    "category": row["category"],
                    "payAmount": row["pay_amount"],
                    "duration": row["duration"],
                    "difficulty": row["difficulty"],
                },
                "submission": self._latest_submission(row["application_id"]),
            }
            for row in rows
        ]
        return {
            "applications": applications,
            "stats": {"total": len(rows), "byStatus": _status_counts(rows)},
        }

    async def worker_metrics(
        self, principal: Principal, worker_id: str, category: str | None
    ) -> dict[str, Any]:
        """Success metrics: completion rate, earnings and a per-category breakdown."""
        self._require_self_or_admin(principal, worker_id)
        if self._store.get_worker(worker_id) is None:
            raise ServiceError("Worker not found", "Worker not found", 404)
        category_enum = parse_category(category) if category is not None else None

        rows = self._store.list_applications_for_worker(worker_id, None, category_enum)
        completed = [row for row in rows if row["status"] == COMPLETED]
        total_earnings = round(sum(float(row["pay_amount"]) for row in completed), 2)
        completion_rate = round(len(completed) / len(rows) * 100, 1) if rows else 0

        breakdown: dict[str, dict[str, Any]] = {}
        for row in rows:
            slug = to_category_slug(row["category"])
            entry = breakdown.setdefault(slug, {"applied": 0, "completed": 0, "earnings": 0.0})
            entry["applied"] += 1
            if row["status"] == COMPLETED:
                entry["completed"] += 1
                entry["earnings"] = round(entry["earnings"] + float(row["pay_amount"]), 2)

        recommendations = []
        if completion_rate < _LOW_COMPLETION_RATE:
            recommendations.append("Focus on task quality to improve completion rate")
        if total_earnings < _LOW_EARNINGS:
            recommendations.append("Take on more tasks to increase monthly earnings")

        return {
            "totalApplications": len(rows),
            "completedTasks": len(completed),
            "totalEarnings": total_earnings,
            "completionRate": completion_rate,
            "categoryBreakdown": breakdown,
            "recommendedImprovement": recommendations,
        }

    def get_stats(self) -> dict[str, Any]:
        """Collect counts for the health endpoint."""
        return {
            "total_tasks": self._store.count_tasks(),
            "applications_by_status": {
                status: self._store.count_applications_by_status().get(status, 0)
                for status in APPLICATION_STATUSES
            },
            "payments_by_status": self._store.count_payments_by_status(),
        }
