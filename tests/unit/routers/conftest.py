"""Router test fixtures running the real lifespan against a temp config."""

from __future__ import annotations

import os
import random
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from marketplace_service.app import create_app
from marketplace_service.config import clear_settings_cache
from marketplace_service.core.lifespan import lifespan
from marketplace_service.core.state import reset_app_state
from tests.helpers import auth_headers, write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

ADMIN_ID = "adm-root"


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database and upload directory."""
    config_path = write_config(tmp_path)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(ADMIN_ID, "ADMIN")


# ---------------------------------------------------------------------------
# Marketplace helper functions
# ---------------------------------------------------------------------------
def random_phone() -> str:
    """A valid 10-digit Indian mobile number."""
    return f"9{random.randint(0, 999_999_999):09d}"  # noqa: S311  # nosec B311


async def register_worker(
    client: AsyncClient,
    *,
    badge: str | None = "BRONZE",
    upi_id: str | None = "asha@okbank",
    name: str = "Asha",
) -> tuple[str, dict[str, str]]:
    """Register a worker, optionally have an admin assign a badge; return (id, headers)."""
    body: dict[str, Any] = {"name": name, "phone": random_phone(), "skills": ["typing"]}
    if upi_id is not None:
        body["upiId"] = upi_id
    response = await client.post("/api/workers", json=body)
    assert response.status_code == 201, response.text
    worker_id = response.json()["data"]["id"]

    if badge is not None:
        badge_response = await client.put(
            f"/api/workers/{worker_id}/badge",
            json={"badge": badge},
            headers=auth_headers(ADMIN_ID, "ADMIN"),
        )
        assert badge_response.status_code == 200, badge_response.text
    return worker_id, auth_headers(worker_id, "WORKER")


async def register_employer(client: AsyncClient) -> tuple[str, dict[str, str]]:
    """Register an employer; return (id, headers)."""
    response = await client.post(
        "/api/employers",
        json={"name": "Ravi", "phone": random_phone(), "companyName": "Ravi Traders"},
    )
    assert response.status_code == 201, response.text
    employer_id = response.json()["data"]["id"]
    return employer_id, auth_headers(employer_id, "EMPLOYER")


def task_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "title": "Enter 200 invoices",
        "description": "Copy invoice totals from PDFs into the shared sheet",
        "category": "data-entry",
        "duration": 120,
        "payAmount": 300,
        "difficulty": "beginner",
        "skillTags": ["excel", "typing"],
        "industry": "retail",
    }
    body.update(overrides)
    return body


async def create_task(
    client: AsyncClient, employer_headers: dict[str, str], **overrides: Any
) -> str:
    """Post a task as JSON and return its id."""
    response = await client.post(
        "/api/bronze-tasks", json=task_body(**overrides), headers=employer_headers
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]["id"]


async def apply(
    client: AsyncClient, task_id: str, worker_headers: dict[str, str], message: str | None = None
) -> Any:
    """Apply to a task and return the response."""
    body = {} if message is None else {"message": message}
    return await client.post(
        f"/api/bronze-tasks/{task_id}/apply", json=body, headers=worker_headers
    )


async def set_application_status(
    client: AsyncClient,
    task_id: str,
    application_id: str,
    employer_headers: dict[str, str],
    status: str,
    note: str | None = None,
) -> Any:
    body: dict[str, Any] = {"status": status}
    if note is not None:
        body["note"] = note
    return await client.put(
        f"/api/bronze-tasks/{task_id}/applications/{application_id}/status",
        json=body,
        headers=employer_headers,
    )


async def setup_accepted_application(client: AsyncClient) -> dict[str, Any]:
    """
    Employer posts a task, a bronze worker applies and is accepted.

    Returns a dict with task_id, application_id, worker_id, employer_id and
    both parties' headers.
    """
    employer_id, employer_headers = await register_employer(client)
    worker_id, worker_headers = await register_worker(client)
    task_id = await create_task(client, employer_headers)

    applied = await apply(client, task_id, worker_headers)
    assert applied.status_code == 201, applied.text
    application_id = applied.json()["data"]["id"]

    accepted = await set_application_status(
        client, task_id, application_id, employer_headers, "ACCEPTED"
    )
    assert accepted.status_code == 200, accepted.text
    return {
        "task_id": task_id,
        "application_id": application_id,
        "worker_id": worker_id,
        "employer_id": employer_id,
        "worker_headers": worker_headers,
        "employer_headers": employer_headers,
    }


async def submit_text(
    client: AsyncClient, application_id: str, worker_headers: dict[str, str], text: str
) -> Any:
    return await client.post(
        f"/api/task-submissions/{application_id}",
        json={"textContent": text},
        headers=worker_headers,
    )
