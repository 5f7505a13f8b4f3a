"""Unit test fixtures: auto-clear caches between tests."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest

from marketplace_service.config import clear_settings_cache
from marketplace_service.core.state import reset_app_state
from marketplace_service.services.marketplace_store import MarketplaceStore

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@pytest.fixture
def store(tmp_path: Path) -> Iterator[MarketplaceStore]:
    """A fresh store backed by a temp database."""
    marketplace_store = MarketplaceStore(db_path=str(tmp_path / "marketplace.db"))
    yield marketplace_store
    marketplace_store.close()


def seed_worker(
    store: MarketplaceStore,
    *,
    badge: str | None = "BRONZE",
    upi_id: str | None = "worker@upi",
) -> dict[str, Any]:
    """Insert a worker row and return it."""
    worker = {
        "worker_id": f"wkr-{uuid.uuid4()}",
        "name": "Asha",
        "phone": f"9{uuid.uuid4().int % 10**9:09d}",
        "badge": badge,
        "upi_id": upi_id,
        "skills": ["typing"],
        "tasks_completed": 0,
        "total_earnings": 0.0,
        "average_rating": None,
        "created_at": now_iso(),
    }
    store.insert_worker(worker)
    return worker


def seed_employer(store: MarketplaceStore) -> dict[str, Any]:
    """Insert an employer row and return it."""
    employer = {
        "employer_id": f"emp-{uuid.uuid4()}",
        "name": "Ravi Traders",
        "phone": f"8{uuid.uuid4().int % 10**9:09d}",
        "company_name": "Ravi Traders Pvt Ltd",
        "is_verified": 0,
        "tasks_posted": 0,
        "average_rating": None,
        "created_at": now_iso(),
    }
    store.insert_employer(employer)
    return employer


def seed_task(
    store: MarketplaceStore, employer_id: str, *, pay_amount: float = 300.0
) -> dict[str, Any]:
    """Insert a task row and return it."""
    task = {
        "task_id": f"task-{uuid.uuid4()}",
        "employer_id": employer_id,
        "title": "Enter 200 invoices",
        "description": "Copy invoice totals into the sheet",
        "category": "DATA_ENTRY",
        "pay_amount": pay_amount,
        "duration": 120,
        "difficulty": "beginner",
        "skill_tags": ["excel"],
        "industry": "retail",
        "created_at": now_iso(),
    }
    store.insert_task(task)
    return task


def seed_application(
    store: MarketplaceStore, task_id: str, worker_id: str, *, status: str = "APPLIED"
) -> dict[str, Any]:
    """Insert an application row and return it."""
    timestamp = now_iso()
    application = {
        "application_id": f"app-{uuid.uuid4()}",
        "task_id": task_id,
        "worker_id": worker_id,
        "status": status,
        "message": "I can do this",
        "note": None,
        "applied_at": timestamp,
        "updated_at": timestamp,
        "completed_at": None,
    }
    store.insert_application(application)
    return application
