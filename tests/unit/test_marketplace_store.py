"""Unit tests for MarketplaceStore."""

from __future__ import annotations

import sqlite3

import pytest

from marketplace_service.services.marketplace_store import (
    DuplicateApplicationError,
    DuplicatePartyError,
    DuplicatePaymentError,
    DuplicateRatingError,
)
from tests.unit.conftest import (
    now_iso,
    seed_application,
    seed_employer,
    seed_task,
    seed_worker,
)


def _payment(task: dict, application: dict, payment_id: str, status: str = "ESCROWED") -> dict:
    timestamp = now_iso()
    return {
        "payment_id": payment_id,
        "task_id": task["task_id"],
        "application_id": application["application_id"],
        "employer_id": task["employer_id"],
        "worker_id": None,
        "amount": task["pay_amount"],
        "status": status,
        "transaction_id": f"TXN-{payment_id}",
        "worker_upi_id": None,
        "payment_note": None,
        "created_at": timestamp,
        "escrowed_at": timestamp,
        "completed_at": None,
        "failed_at": None,
    }


@pytest.mark.unit
def test_party_crud_and_json_columns(store) -> None:
    """Workers round-trip skills as a list and employers count posted tasks."""
    worker = seed_worker(store)
    employer = seed_employer(store)

    loaded = store.get_worker(worker["worker_id"])
    assert loaded is not None
    assert loaded["skills"] == ["typing"]
    assert loaded["badge"] == "BRONZE"

    seed_task(store, employer["employer_id"])
    seed_task(store, employer["employer_id"])
    loaded_employer = store.get_employer(employer["employer_id"])
    assert loaded_employer is not None
    assert loaded_employer["tasks_posted"] == 2
    assert loaded_employer["is_verified"] is False

    assert store.count_workers() == 1
    assert store.count_employers() == 1


@pytest.mark.unit
def test_duplicate_phone_raises(store) -> None:
    """Two workers cannot share a phone number."""
    worker = seed_worker(store)
    clone = dict(worker, worker_id="wkr-other")
    with pytest.raises(DuplicatePartyError):
        store.insert_worker(clone)


@pytest.mark.unit
def test_credit_worker_adds_earnings_and_count(store) -> None:
    """credit_worker bumps tasks_completed by one and adds the amount."""
    worker = seed_worker(store, upi_id=None)
    store.credit_worker(worker["worker_id"], 250.5, "new@upi")
    store.credit_worker(worker["worker_id"], 100.0, None)

    loaded = store.get_worker(worker["worker_id"])
    assert loaded is not None
    assert loaded["tasks_completed"] == 2
    assert loaded["total_earnings"] == pytest.approx(350.5)
    assert loaded["upi_id"] == "new@upi"


@pytest.mark.unit
def test_list_tasks_filters_and_counts(store) -> None:
    """list_tasks filters by budget and reports application counts."""
    employer = seed_employer(store)
    cheap = seed_task(store, employer["employer_id"], pay_amount=200.0)
    seed_task(store, employer["employer_id"], pay_amount=900.0)
    worker = seed_worker(store)
    seed_application(store, cheap["task_id"], worker["worker_id"])

    rows = store.list_tasks(
        category="DATA_ENTRY", max_budget=500.0, difficulty=None, industry=None, limit=10
    )
    assert [row["task_id"] for row in rows] == [cheap["task_id"]]
    assert rows[0]["application_count"] == 1
    assert rows[0]["employer_name"] == employer["name"]

    assert store.count_tasks_by_category() == {"DATA_ENTRY": 2}


@pytest.mark.unit
def test_duplicate_application_raises(store) -> None:
    """A worker can apply to a task only once."""
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"])
    worker = seed_worker(store)
    seed_application(store, task["task_id"], worker["worker_id"])

    with pytest.raises(DuplicateApplicationError):
        seed_application(store, task["task_id"], worker["worker_id"])


@pytest.mark.unit
def test_conditional_update_respects_expected_status(store) -> None:
    """update_application only changes rows still in the expected status."""
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"])
    worker = seed_worker(store)
    application = seed_application(store, task["task_id"], worker["worker_id"])

    changed = store.update_application(
        application["application_id"], {"status": "ACCEPTED"}, expected_status="APPLIED"
    )
    assert changed == 1
    stale = store.update_application(
        application["application_id"], {"status": "REJECTED"}, expected_status="APPLIED"
    )
    assert stale == 0

    with pytest.raises(ValueError, match="unknown applications column"):
        store.update_application(
            application["application_id"], {"worker_id": "x"}, expected_status=None
        )


@pytest.mark.unit
def test_one_escrowed_payment_per_task(store) -> None:
    """A task can hold at most one ESCROWED payment."""
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"])
    first = seed_application(store, task["task_id"], seed_worker(store)["worker_id"])
    second = seed_application(store, task["task_id"], seed_worker(store)["worker_id"])

    store.insert_payment(_payment(task, first, "pay-1"))
    with pytest.raises(DuplicatePaymentError):
        store.insert_payment(_payment(task, second, "pay-2"))

    store.update_payment("pay-1", {"status": "FAILED"}, expected_status="ESCROWED")
    store.insert_payment(_payment(task, second, "pay-2"))
    assert store.count_payments_by_status() == {"FAILED": 1, "ESCROWED": 1}


@pytest.mark.unit
def test_transaction_rolls_back_all_writes(store) -> None:
    """An exception inside a nested transaction undoes every write."""
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"])
    worker = seed_worker(store)
    application = seed_application(store, task["task_id"], worker["worker_id"])

    with pytest.raises(RuntimeError), store.transaction():
        store.update_application(
            application["application_id"], {"status": "ACCEPTED"}, expected_status="APPLIED"
        )
        with store.transaction():
            store.insert_payment(_payment(task, application, "pay-1"))
        raise RuntimeError("boom")

    loaded = store.get_application(application["application_id"])
    assert loaded is not None
    assert loaded["status"] == "APPLIED"
    assert store.get_payment("pay-1") is None


@pytest.mark.unit
def test_ratings_unique_and_visible_stars(store) -> None:
    """One rating per (application, rater type); hidden ratings drop out of visible_stars."""
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"])
    worker = seed_worker(store)
    application = seed_application(store, task["task_id"], worker["worker_id"])
    rating = {
        "rating_id": "rt-1",
        "task_id": task["task_id"],
        "application_id": application["application_id"],
        "rater_type": "EMPLOYER",
        "rater_id": employer["employer_id"],
        "rated_worker_id": worker["worker_id"],
        "rated_employer_id": None,
        "stars": 4,
        "is_visible": 1,
        "rated_at": now_iso(),
    }
    store.insert_rating(rating)
    with pytest.raises(DuplicateRatingError):
        store.insert_rating(dict(rating, rating_id="rt-2"))

    assert store.visible_stars("rated_worker_id", worker["worker_id"]) == [4]
    assert store.set_rating_visibility("rt-1", False) == 1
    assert store.visible_stars("rated_worker_id", worker["worker_id"]) == []
    assert store.all_rating_stars() == [("EMPLOYER", 4, False)]


@pytest.mark.unit
def test_latest_submission_is_unique(store) -> None:
    """Only one submission per application can be flagged latest."""
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"])
    worker = seed_worker(store)
    application = seed_application(store, task["task_id"], worker["worker_id"])

    def _submission(submission_id: str, version: int) -> dict:
        return {
            "submission_id": submission_id,
            "application_id": application["application_id"],
            "task_id": task["task_id"],
            "worker_id": worker["worker_id"],
            "submission_type": "text",
            "text_content": "done",
            "links": [],
            "status": "SUBMITTED",
            "version": version,
            "is_latest": 1,
            "previous_version_id": None,
            "review_note": None,
            "submitted_at": now_iso(),
            "reviewed_at": None,
        }

    store.insert_submission(_submission("sub-1", 1))
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_submission(_submission("sub-2", 2))

    store.update_submission("sub-1", {"is_latest": 0}, expected_status=None)
    store.insert_submission(_submission("sub-2", 2))
    latest = store.get_latest_submission(application["application_id"])
    assert latest is not None
    assert latest["submission_id"] == "sub-2"
    assert latest["links"] == []

