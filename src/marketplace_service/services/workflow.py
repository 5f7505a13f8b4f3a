"""Application status transitions and their side effects, applied atomically."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.lifecycle import (
    ACCEPTED,
    COMPLETED,
    REJECTED,
    check_application_transition,
)
from marketplace_service.services.rating_manager import EMPLOYER

if TYPE_CHECKING:
    from marketplace_service.services.escrow_coordinator import EscrowCoordinator
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.rating_manager import RatingManager


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass
class TransitionResult:
    """Outcome of one application transition."""

    application: dict[str, Any]
    previous_status: str
    payment: dict[str, Any] | None = None
    rating: dict[str, Any] | None = None


class WorkflowEngine:
    """
    Single entry point for application status changes.

    Side effects per transition:

    - APPLIED -> ACCEPTED: lock an escrow for the task pay amount
    - APPLIED -> REJECTED: none
    - ACCEPTED -> REJECTED: return the escrow to the employer
    - ACCEPTED -> COMPLETED: release the escrow to the worker, credit the
      worker's completed-task count and earnings once, and record the
      optional employer rating

    Everything runs in one store transaction. Any failure rolls back the
    status change together with its side effects.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        escrow_coordinator: EscrowCoordinator,
        rating_manager: RatingManager,
    ) -> None:
        self._store = store
        self._escrow = escrow_coordinator
        self._ratings = rating_manager
        self._logger = get_logger(__name__)

    def transition_application(
        self,
        application_id: str,
        target_status: object,
        *,
        note: str | None = None,
        rating: int | None = None,
    ) -> TransitionResult:
        """
        Move an application to ``target_status`` and fire its side effects.

        ``rating`` is only used on completion; pass it already validated.

        Raises:
            ServiceError: Application not found (404), Invalid status (400),
                Invalid status transition (409), Task already assigned (409),
                Payment release failed (409), Rating already submitted (409)
        """
        with self._store.transaction():
            application = self._store.get_application(application_id)
            if application is None:
                raise ServiceError("Application not found", "Application not found", 404)

            previous_status = application["status"]
            target = check_application_transition(previous_status, target_status)

            task = self._store.get_task(application["task_id"])
            if task is None:
                raise ServiceError("Task not found", "Task not found", 404)

            if target == ACCEPTED:
                assigned = self._store.get_assigned_application(task["task_id"])
                if assigned is not None:
                    raise ServiceError(
                        "Task already assigned",
                        "Another application for this task is already accepted",
                        409,
                        {"application_id": assigned["application_id"]},
                    )

            now = _now_iso()
            updates: dict[str, Any] = {"status": target, "updated_at": now}
            if note is not None:
                updates["note"] = note
            if target == COMPLETED:
                updates["completed_at"] = now

            changed = self._store.update_application(
                application_id, updates, expected_status=previous_status
            )
            if changed == 0:
                raise ServiceError(
                    "Invalid status transition",
                    "Application status changed concurrently",
                    409,
                    {"from": previous_status, "to": target},
                )
            application.update(updates)
            result = TransitionResult(application=application, previous_status=previous_status)

            if target == ACCEPTED:
                result.payment = self._escrow.lock_escrow(task, application, now)
            elif target == REJECTED and previous_status == ACCEPTED:
                result.payment = self._escrow.return_escrow(
                    application, now, note or "Acceptance withdrawn by employer"
                )
            elif target == COMPLETED:
                worker = self._store.get_worker(application["worker_id"])
                if worker is None:
                    raise ServiceError("Worker not found", "Worker not found", 404)
                result.payment = self._escrow.release_escrow(application, worker, now, rating)
                self._store.credit_worker(
                    worker["worker_id"], float(result.payment["amount"]), worker["upi_id"]
                )
                if rating is not None:
                    result.rating = self._ratings.record_rating(
                        task, application, EMPLOYER, rating, now
                    )

        self._logger.info(
            "Application status changed",
            extra={
                "application_id": application_id,
                "task_id": application["task_id"],
                "from_status": previous_status,
                "to_status": target,
            },
        )
        return result
