"""Worker and employer registry."""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.field_parsing import require_text, string_list
from marketplace_service.services.marketplace_store import DuplicatePartyError
from marketplace_service.services.token_validator import ROLE_WORKER

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.token_validator import Principal

BADGES: tuple[str, ...] = ("BRONZE", "SILVER", "GOLD", "PLATINUM")

_PHONE_RE = re.compile(r"^[6-9]\d{9}$")
_UPI_RE = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9]+$")


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _require_phone(body: dict[str, Any]) -> str:
    phone = re.sub(r"\D", "", require_text(body, "phone"))
    if _PHONE_RE.match(phone) is None:
        raise ServiceError(
            "Validation error",
            "phone must be a valid 10-digit Indian mobile number",
            400,
            {"field": "phone"},
        )
    return phone


def validate_upi_id(value: object) -> str:
    """Return ``value`` if it looks like ``handle@bank``."""
    if not isinstance(value, str) or _UPI_RE.match(value.strip()) is None:
        raise ServiceError(
            "Validation error",
            "upiId must look like name@bank",
            400,
            {"field": "upiId"},
        )
    return value.strip()


def worker_profile(worker: dict[str, Any]) -> dict[str, Any]:
    """Format a worker row for responses."""
    return {
        "id": worker["worker_id"],
        "name": worker["name"],
        "phone": worker["phone"],
        "badge": worker["badge"],
        "upiId": worker["upi_id"],
        "skills": worker["skills"],
        "tasksCompleted": worker["tasks_completed"],
        "totalEarnings": worker["total_earnings"],
        "averageRating": worker["average_rating"],
        "createdAt": worker["created_at"],
    }


def employer_profile(employer: dict[str, Any]) -> dict[str, Any]:
    """Format an employer row for responses."""
    return {
        "id": employer["employer_id"],
        "name": employer["name"],
        "phone": employer["phone"],
        "companyName": employer["company_name"],
        "isVerified": employer["is_verified"],
        "tasksPosted": employer["tasks_posted"],
        "averageRating": employer["average_rating"],
        "createdAt": employer["created_at"],
    }


class PartyManager:
    """Registers workers and employers and maintains their profiles."""

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    async def register_worker(self, body: dict[str, Any]) -> dict[str, Any]:
        """Create a worker profile with no badge."""
        name = require_text(body, "name")
        phone = _require_phone(body)

        skills = string_list(body.get("skills"), "skills")
        upi_id = validate_upi_id(body["upiId"]) if body.get("upiId") is not None else None

        worker = {
            "worker_id": f"wkr-{uuid.uuid4()}",
            "name": name,
            "phone": phone,
            "badge": None,
            "upi_id": upi_id,
            "skills": skills,
            "tasks_completed": 0,
            "total_earnings": 0.0,
            "average_rating": None,
            "created_at": _now_iso(),
        }
        try:
            self._store.insert_worker(worker)
        except DuplicatePartyError as exc:
            raise ServiceError(
                "Worker already exists",
                "A worker with this phone number is already registered",
                409,
            ) from exc

        self._logger.info("Worker registered", extra={"worker_id": worker["worker_id"]})
        return worker_profile(worker)

    async def register_employer(self, body: dict[str, Any]) -> dict[str, Any]:
        """Create an unverified employer profile."""
        name = require_text(body, "name")
        phone = _require_phone(body)
        company_name = body.get("companyName")
        if company_name is not None and not isinstance(company_name, str):
            raise ServiceError(
                "Validation error",
                "companyName must be a string",
                400,
                {"field": "companyName"},
            )

        employer = {
            "employer_id": f"emp-{uuid.uuid4()}",
            "name": name,
            "phone": phone,
            "company_name": company_name,
            "is_verified": 0,
            "tasks_posted": 0,
            "average_rating": None,
            "created_at": _now_iso(),
        }
        try:
            self._store.insert_employer(employer)
        except DuplicatePartyError as exc:
            raise ServiceError(
                "Employer already exists",
                "An employer with this phone number is already registered",
                409,
            ) from exc

        self._logger.info("Employer registered", extra={"employer_id": employer["employer_id"]})
        employer["is_verified"] = False
        return employer_profile(employer)

    async def get_worker(self, worker_id: str) -> dict[str, Any]:
        """Fetch a worker profile."""
        worker = self._store.get_worker(worker_id)
        if worker is None:
            raise ServiceError("Worker not found", "Worker not found", 404)
        return worker_profile(worker)

    async def get_employer(self, employer_id: str) -> dict[str, Any]:
        """Fetch an employer profile."""
        employer = self._store.get_employer(employer_id)
        if employer is None:
            raise ServiceError("Employer not found", "Employer not found", 404)
        return employer_profile(employer)

    async def assign_badge(self, worker_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """Set or clear a worker's badge. Admin only, checked by the router."""
        badge = body.get("badge")
        if badge is not None and badge not in BADGES:
            raise ServiceError(
                "Validation error",
                f"badge must be one of: {', '.join(BADGES)} or null",
                400,
                {"field": "badge"},
            )
        if self._store.set_worker_badge(worker_id, badge) == 0:
            raise ServiceError("Worker not found", "Worker not found", 404)

        self._logger.info("Worker badge assigned", extra={"worker_id": worker_id, "badge": badge})
        return await self.get_worker(worker_id)

    async def set_upi_id(
        self, principal: Principal, worker_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Store the UPI id that released payments are sent to."""
        if principal.role != ROLE_WORKER or principal.principal_id != worker_id:
            raise ServiceError("Access denied", "Workers can only update their own UPI id", 403)
        upi_id = validate_upi_id(body.get("upiId"))
        if self._store.set_worker_upi(worker_id, upi_id) == 0:
            raise ServiceError("Worker not found", "Worker not found", 404)
        return await self.get_worker(worker_id)

    def get_stats(self) -> dict[str, int]:
        """Count registered parties."""
        return {
            "total_workers": self._store.count_workers(),
            "total_employers": self._store.count_employers(),
        }
