"""
Rating ledger: one rating per (application, rater type), with running
averages kept on the rated worker or employer.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.lifecycle import COMPLETED
from marketplace_service.services.marketplace_store import DuplicateRatingError

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.token_validator import Principal

WORKER = "WORKER"
EMPLOYER = "EMPLOYER"
RATER_TYPES: frozenset[str] = frozenset({WORKER, EMPLOYER})

_RECENT_RATINGS_LIMIT = 10


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def validate_stars(value: object) -> int:
    """
    Return ``value`` if it is an integer from 1 to 5.

    Booleans, floats and numeric strings are rejected.
    """
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ServiceError(
            "Validation error",
            "Rating must be an integer between 1 and 5",
            400,
            {"field": "stars", "value": value},
        )
    return value


def average_stars(stars: list[int]) -> float | None:
    """Mean of ``stars`` rounded half-up to one decimal, or None when empty."""
    if len(stars) == 0:
        return None
    mean = Decimal(sum(stars)) / Decimal(len(stars))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def star_distribution(stars: list[int]) -> dict[str, int]:
    """Count ratings per star value 1-5."""
    distribution = {str(value): 0 for value in range(1, 6)}
    for value in stars:
        distribution[str(value)] += 1
    return distribution


def parse_user_type(value: str | None) -> str:
    """Normalize a ``userType`` query value to WORKER or EMPLOYER."""
    normalized = (value or "").strip().upper()
    if normalized not in RATER_TYPES:
        raise ServiceError(
            "Validation error",
            "userType must be WORKER or EMPLOYER",
            400,
            {"field": "userType", "value": value},
        )
    return normalized


class RatingManager:
    """Submits ratings, recomputes averages, and answers rating queries."""

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Ledger writes (run inside a store transaction)
    # ------------------------------------------------------------------

    def record_rating(
        self,
        task: dict[str, Any],
        application: dict[str, Any],
        rater_type: str,
        stars: int,
        now: str,
    ) -> dict[str, Any]:
        """
        Insert a rating and refresh the rated party's average.

        Raises:
            ServiceError: 409 "Rating already submitted" on a duplicate
        """
        if rater_type == EMPLOYER:
            rater_id = task["employer_id"]
            rated_worker_id: str | None = application["worker_id"]
            rated_employer_id: str | None = None
        else:
            rater_id = application["worker_id"]
            rated_worker_id = None
            rated_employer_id = task["employer_id"]

        rating = {
            "rating_id": f"rt-{uuid.uuid4()}",
            "task_id": task["task_id"],
            "application_id": application["application_id"],
            "rater_type": rater_type,
            "rater_id": rater_id,
            "rated_worker_id": rated_worker_id,
            "rated_employer_id": rated_employer_id,
            "stars": stars,
            "is_visible": 1,
            "rated_at": now,
        }
        with self._store.transaction():
            try:
                self._store.insert_rating(rating)
            except DuplicateRatingError as exc:
                raise ServiceError(
                    "Rating already submitted",
                    "You have already rated this task",
                    409,
                    {"application_id": application["application_id"], "rater_type": rater_type},
                ) from exc
            average = self._refresh_average(rated_worker_id, rated_employer_id)

        self._logger.info(
            "Rating recorded",
            extra={
                "rating_id": rating["rating_id"],
                "application_id": application["application_id"],
                "rater_type": rater_type,
                "stars": stars,
            },
        )
        rating["is_visible"] = True
        rating["new_average"] = average
        return rating

    def _refresh_average(
        self, rated_worker_id: str | None, rated_employer_id: str | None
    ) -> float | None:
        if rated_worker_id is not None:
            average = average_stars(self._store.visible_stars("rated_worker_id", rated_worker_id))
            self._store.set_worker_rating(rated_worker_id, average)
            return average
        if rated_employer_id is not None:
            average = average_stars(
                self._store.visible_stars("rated_employer_id", rated_employer_id)
            )
            self._store.set_employer_rating(rated_employer_id, average)
            return average
        return None

    # ------------------------------------------------------------------
    # Public methods, called by routers
    # ------------------------------------------------------------------

    def _rater_type_for(
        self, principal: Principal, task: dict[str, Any], application: dict[str, Any]
    ) -> str | None:
        if principal.role == WORKER and principal.principal_id == application["worker_id"]:
            return WORKER
        if principal.role == EMPLOYER and principal.principal_id == task["employer_id"]:
            return EMPLOYER
        return None

    async def submit_rating(self, principal: Principal, body: dict[str, Any]) -> dict[str, Any]:
        """
        Rate the other party of a completed application.

        Error precedence:
        1. Validation error (400): missing applicationId, stars not an int 1-5
        2. Application not found (404)
        3. Access denied (403): caller is not a participant
        4. Can only rate completed tasks (400)
        5. Rating already submitted (409)
        """
        application_id = body.get("applicationId")
        if not isinstance(application_id, str) or application_id == "":
            raise ServiceError(
                "Validation error",
                "applicationId is required",
                400,
                {"field": "applicationId"},
            )
        stars = validate_stars(body.get("stars"))

        application = self._store.get_application(application_id)
        if application is None:
            raise ServiceError("Application not found", "Task application not found", 404)
        task = self._store.get_task(application["task_id"])
        if task is None:
            raise ServiceError("Task not found", "Task not found", 404)

        rater_type = self._rater_type_for(principal, task, application)
        if rater_type is None:
            raise ServiceError("Access denied", "Not a participant in this task", 403)

        if application["status"] != COMPLETED:
            raise ServiceError(
                "Can only rate completed tasks",
                "Ratings are accepted only after the task is completed",
                400,
                {"status": application["status"]},
            )

        rating = self.record_rating(task, application, rater_type, stars, _now_iso())
        return {
            "id": rating["rating_id"],
            "applicationId": application_id,
            "raterType": rater_type,
            "stars": stars,
            "ratedAt": rating["rated_at"],
            "newAverageRating": rating["new_average"],
        }

    async def can_rate(self, principal: Principal, application_id: str) -> dict[str, Any]:
        """Report whether the caller may rate an application, with the reason if not."""
        application = self._store.get_application(application_id)
        if application is None:
            return {"canRate": False, "reason": "Task application not found"}
        task = self._store.get_task(application["task_id"])
        if task is None:
            return {"canRate": False, "reason": "Task application not found"}
        if application["status"] != COMPLETED:
            return {"canRate": False, "reason": "Task not completed yet"}

        rater_type = self._rater_type_for(principal, task, application)
        if rater_type is None:
            return {"canRate": False, "reason": "Not a participant in this task"}

        existing = self._store.get_application_rating(application_id, rater_type)
        if existing is not None:
            return {
                "canRate": False,
                "reason": "Already rated this task",
                "existingRating": existing["stars"],
            }
        return {"canRate": True, "raterType": rater_type, "taskTitle": task["title"]}

    async def pending_ratings(self, principal: Principal) -> dict[str, Any]:
        """List completed applications the caller has not rated yet."""
        if principal.role == WORKER:
            applications = self._store.list_completed_applications(
                "worker_id", principal.principal_id
            )
        elif principal.role == EMPLOYER:
            applications = self._store.list_completed_applications(
                "employer_id", principal.principal_id
            )
        else:
            applications = []

        pending = [
            {
                "applicationId": application["application_id"],
                "taskId": application["task_id"],
                "taskTitle": application["task_title"],
                "completedAt": application["completed_at"],
                "rateeId": (
                    application["employer_id"]
                    if principal.role == WORKER
                    else application["worker_id"]
                ),
                "canRate": True,
            }
            for application in applications
            if self._store.get_application_rating(application["application_id"], principal.role)
            is None
        ]
        return {"pendingRatings": pending, "count": len(pending)}

    def _ratings_for(self, user_id: str, user_type: str) -> tuple[list[dict[str, Any]], Any]:
        if user_type == WORKER:
            party = self._store.get_worker(user_id)
            if party is None:
                raise ServiceError("Worker not found", "Worker not found", 404)
            ratings = self._store.list_ratings_received(
                "rated_worker_id", user_id, visible_only=True
            )
        else:
            party = self._store.get_employer(user_id)
            if party is None:
                raise ServiceError("Employer not found", "Employer not found", 404)
            ratings = self._store.list_ratings_received(
                "rated_employer_id", user_id, visible_only=True
            )
        return ratings, party["average_rating"]

    async def user_ratings(self, user_id: str, user_type: str | None) -> dict[str, Any]:
        """List the visible ratings a worker or employer received."""
        normalized = parse_user_type(user_type)
        ratings, average = self._ratings_for(user_id, normalized)
        return {
            "ratings": [
                {
                    "id": rating["rating_id"],
                    "stars": rating["stars"],
                    "taskTitle": rating["task_title"],
                    "raterType": rating["rater_type"],
                    "raterId": rating["rater_id"],
                    "ratedAt": rating["rated_at"],
                }
                for rating in ratings
            ],
            "averageRating": average,
            "totalRatings": len(ratings),
            "ratingDistribution": star_distribution([rating["stars"] for rating in ratings]),
        }

    async def rating_overview(self, user_id: str, user_type: str | None) -> dict[str, Any]:
        """Summarize a party's reputation for accept/apply decisions."""
        normalized = parse_user_type(user_type)
        ratings, average = self._ratings_for(user_id, normalized)
        total = len(ratings)
        return {
            "averageRating": average if average is not None else 0,
            "totalRatings": total,
            "ratingDistribution": star_distribution([rating["stars"] for rating in ratings]),
            "displayRating": average if total > 0 else None,
            "isNewUser": total == 0,
        }

    async def rating_statistics(self) -> dict[str, Any]:
        """Platform-wide rating statistics over visible ratings."""
        visible = [
            (rater_type, stars)
            for rater_type, stars, is_visible in self._store.all_rating_stars()
            if is_visible
        ]
        stars = [value for _, value in visible]
        recent = self._store.list_recent_ratings(_RECENT_RATINGS_LIMIT)
        return {
            "totalRatings": len(stars),
            "platformAverageRating": average_stars(stars) or 0,
            "ratingDistribution": star_distribution(stars),
            "byRaterType": {
                rater_type: sum(1 for kind, _ in visible if kind == rater_type)
                for rater_type in sorted(RATER_TYPES)
            },
            "recentRatings": [
                {
                    "id": rating["rating_id"],
                    "stars": rating["stars"],
                    "taskTitle": rating["task_title"],
                    "raterType": rating["rater_type"],
                    "ratedAt": rating["rated_at"],
                }
                for rating in recent
            ],
        }

    async def rating_details(self, rating_id: str) -> dict[str, Any]:
        """Return one rating with its task and application context."""
        rating = self._store.get_rating(rating_id)
        if rating is None:
            raise ServiceError("Rating not found", "Rating not found", 404)
        task = self._store.get_task(rating["task_id"])
        return {
            "id": rating["rating_id"],
            "taskId": rating["task_id"],
            "taskTitle": task["title"] if task is not None else None,
            "applicationId": rating["application_id"],
            "raterType": rating["rater_type"],
            "raterId": rating["rater_id"],
            "ratedWorkerId": rating["rated_worker_id"],
            "ratedEmployerId": rating["rated_employer_id"],
            "stars": rating["stars"],
            "isVisible": rating["is_visible"],
            "ratedAt": rating["rated_at"],
        }

    async def set_visibility(self, rating_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """Show or hide a rating and recompute the rated party's average."""
        is_visible = body.get("isVisible")
        if not isinstance(is_visible, bool):
            raise ServiceError(
                "Validation error",
                "isVisible must be a boolean",
                400,
                {"field": "isVisible"},
            )

        with self._store.transaction():
            rating = self._store.get_rating(rating_id)
            if rating is None:
                raise ServiceError("Rating not found", "Rating not found", 404)
            self._store.set_rating_visibility(rating_id, is_visible)
            average = self._refresh_average(rating["rated_worker_id"], rating["rated_employer_id"])

        self._logger.info(
            "Rating visibility changed",
            extra={"rating_id": rating_id, "is_visible": is_visible},
        )
        return {"id": rating_id, "isVisible": is_visible, "newAverageRating": average}
