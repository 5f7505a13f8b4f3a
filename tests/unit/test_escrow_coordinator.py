"""Unit tests for EscrowCoordinator."""

from __future__ import annotations

import re

import pytest
from freezegun import freeze_time

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.services.escrow_coordinator import (
    EscrowCoordinator,
    new_transaction_id,
    payout_upi_id,
)
from tests.unit.conftest import (
    now_iso,
    seed_application,
    seed_employer,
    seed_task,
    seed_worker,
)


@pytest.fixture
def escrow(store) -> EscrowCoordinator:
    return EscrowCoordinator(store=store)


@pytest.fixture
def assigned(store):
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"], pay_amount=450.0)
    worker = seed_worker(store)
    application = seed_application(store, task["task_id"], worker["worker_id"])
    return task, worker, application


@pytest.mark.unit
def test_transaction_id_format() -> None:
    """TXN + last six digits of epoch millis + six uppercase/digit characters."""
    with freeze_time("2024-05-01T10:00:00Z"):
        txn = new_transaction_id()
    assert re.fullmatch(r"TXN\d{6}[A-Z0-9]{6}", txn)
    # 2024-05-01T10:00:00Z is 1714557600000 ms
    assert txn[3:9] == "600000"


@pytest.mark.unit
def test_lock_escrow_creates_escrowed_payment(store, escrow, assigned) -> None:
    task, _worker, application = assigned
    payment = escrow.lock_escrow(task, application, now_iso())

    assert payment["status"] == "ESCROWED"
    assert payment["amount"] == 450.0
    assert payment["worker_id"] is None
    stored = store.get_payment_for_application(application["application_id"])
    assert stored is not None
    assert stored["transaction_id"] == payment["transaction_id"]


@pytest.mark.unit
def test_second_lock_for_task_is_rejected(store, escrow, assigned) -> None:
    task, _worker, application = assigned
    other = seed_application(store, task["task_id"], seed_worker(store)["worker_id"])
    escrow.lock_escrow(task, application, now_iso())

    with pytest.raises(ServiceError) as exc_info:
        escrow.lock_escrow(task, other, now_iso())
    assert exc_info.value.status_code == 409
    assert exc_info.value.error == "Task already assigned"


@pytest.mark.unit
def test_release_assigns_worker_and_new_transaction(store, escrow, assigned) -> None:
    task, worker, application = assigned
    locked = escrow.lock_escrow(task, application, now_iso())

    released = escrow.release_escrow(application, worker, now_iso(), rating=4)

    assert released["status"] == "COMPLETED"
    assert released["worker_id"] == worker["worker_id"]
    assert released["worker_upi_id"] == "worker@upi"
    assert released["transaction_id"] != locked["transaction_id"]
    assert released["payment_note"] == "Payment released to worker - Rating: 4/5"


@pytest.mark.unit
def test_release_without_upi_pays_phone_handle(store, escrow) -> None:
    employer = seed_employer(store)
    task = seed_task(store, employer["employer_id"])
    worker = seed_worker(store, upi_id=None)
    application = seed_application(store, task["task_id"], worker["worker_id"])
    escrow.lock_escrow(task, application, now_iso())

    released = escrow.release_escrow(application, worker, now_iso())

    assert released["worker_upi_id"] == f"{worker['phone']}@paytm"


@pytest.mark.unit
def test_payout_upi_id_is_lowercased() -> None:
    assert payout_upi_id({"upi_id": "Asha.K@OKSBI", "phone": "9876543210"}) == "asha.k@oksbi"


@pytest.mark.unit
def test_release_twice_fails(escrow, assigned) -> None:
    task, worker, application = assigned
    escrow.lock_escrow(task, application, now_iso())
    escrow.release_escrow(application, worker, now_iso())

    with pytest.raises(ServiceError) as exc_info:
        escrow.release_escrow(application, worker, now_iso())
    assert exc_info.value.error == "Payment release failed"


@pytest.mark.unit
def test_return_escrow_marks_failed(store, escrow, assigned) -> None:
    task, _worker, application = assigned
    escrow.lock_escrow(task, application, now_iso())

    returned = escrow.return_escrow(application, now_iso(), "Worker unavailable")

    assert returned["status"] == "FAILED"
    assert returned["failed_at"] is not None
    summary = escrow.payment_summary(task)
    assert summary["status"] == "FAILED"
    assert summary["paymentNote"] == "Escrow returned to employer: Worker unavailable"


@pytest.mark.unit
def test_payment_summary_without_payment_is_pending(escrow, assigned) -> None:
    task, _worker, _application = assigned
    summary = escrow.payment_summary(task)
    assert summary["status"] == "PENDING"
    assert summary["amount"] == 450.0
    assert summary["transactionId"] is None
