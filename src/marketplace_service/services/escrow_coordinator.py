"""Nominal escrow ledger: lock on acceptance, release on completion, return on withdrawal."""

from __future__ import annotations

import secrets
import string
import time
import uuid
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.lifecycle import (
    PAYMENT_COMPLETED,
    PAYMENT_ESCROWED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    check_payment_transition,
)
from marketplace_service.services.marketplace_store import DuplicatePaymentError

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def new_transaction_id() -> str:
    """Return ``TXN`` + last six digits of the epoch millis + six random characters."""
    millis = str(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(6))
    return f"TXN{millis[-6:]}{suffix}"


def payout_upi_id(worker: dict[str, Any]) -> str:
    """Return the worker's UPI id, or ``{phone}@paytm`` when none is set, lowercased."""
    upi_id = worker["upi_id"] or f"{worker['phone']}@paytm"
    return upi_id.lower()


class EscrowCoordinator:
    """
    Records escrow movements as payment rows.

    No money moves: a payment row is the whole escrow record. Methods are
    synchronous and expect to run inside ``MarketplaceStore.transaction()``
    so they commit or roll back with the status change that triggered them.
    """

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def lock_escrow(
        self,
        task: dict[str, Any],
        application: dict[str, Any],
        now: str,
    ) -> dict[str, Any]:
        """
        Create an ESCROWED payment for the task's pay amount.

        Raises:
            ServiceError: 409 if the task already holds an active escrow
        """
        check_payment_transition(PAYMENT_PENDING, PAYMENT_ESCROWED)
        payment = {
            "payment_id": f"pay-{uuid.uuid4()}",
            "task_id": task["task_id"],
            "application_id": application["application_id"],
            "employer_id": task["employer_id"],
            "worker_id": None,
            "amount": float(task["pay_amount"]),
            "status": PAYMENT_ESCROWED,
            "transaction_id": new_transaction_id(),
            "worker_upi_id": None,
            "payment_note": "Task payment escrowed automatically on task acceptance",
            "created_at": now,
            "escrowed_at": now,
            "completed_at": None,
            "failed_at": None,
        }
        try:
            self._store.insert_payment(payment)
        except DuplicatePaymentError as exc:
            raise ServiceError(
                "Task already assigned",
                "This task already holds an escrowed payment",
                409,
                {"task_id": task["task_id"]},
            ) from exc

        self._logger.info(
            "Escrow locked",
            extra={
                "task_id": task["task_id"],
                "application_id": application["application_id"],
                "transaction_id": payment["transaction_id"],
                "amount": payment["amount"],
            },
        )
        return payment

    def _escrowed_payment(self, application_id: str) -> dict[str, Any]:
        payment = self._store.get_payment_for_application(application_id)
        if payment is None or payment["status"] != PAYMENT_ESCROWED:
            raise ServiceError(
                "Payment release failed",
                "No escrowed payment found for this application",
                409,
                {"application_id": application_id},
            )
        return payment

    def release_escrow(
        self,
        application: dict[str, Any],
        worker: dict[str, Any],
        now: str,
        rating: int | None = None,
    ) -> dict[str, Any]:
        """
        Move the application's escrow to COMPLETED and assign it to the worker.

        Raises:
            ServiceError: 409 "Payment release failed" when no ESCROWED
                payment exists or another caller released it first
        """
        payment = self._escrowed_payment(application["application_id"])
        check_payment_transition(payment["status"], PAYMENT_COMPLETED)

        note = "Payment released to worker"
        if rating is not None:
            note += f" - Rating: {rating}/5"
        updates = {
            "status": PAYMENT_COMPLETED,
            "worker_id": worker["worker_id"],
            "worker_upi_id": payout_upi_id(worker),
            "transaction_id": new_transaction_id(),
            "payment_note": note,
            "completed_at": now,
        }
        changed = self._store.update_payment(
            payment["payment_id"], updates, expected_status=PAYMENT_ESCROWED
        )
        if changed == 0:
            raise ServiceError(
                "Payment release failed",
                "Payment was released concurrently",
                409,
                {"application_id": application["application_id"]},
            )

        payment.update(updates)
        self._logger.info(
            "Escrow released",
            extra={
                "application_id": application["application_id"],
                "worker_id": worker["worker_id"],
                "transaction_id": payment["transaction_id"],
                "amount": payment["amount"],
            },
        )
        return payment

    def return_escrow(self, application: dict[str, Any], now: str, reason: str) -> dict[str, Any]:
        """Mark the application's escrow FAILED so the funds return to the employer."""
        payment = self._escrowed_payment(application["application_id"])
        check_payment_transition(payment["status"], PAYMENT_FAILED)

        updates = {
            "status": PAYMENT_FAILED,
            "payment_note": f"Escrow returned to employer: {reason}",
            "failed_at": now,
        }
        changed = self._store.update_payment(
            payment["payment_id"], updates, expected_status=PAYMENT_ESCROWED
        )
        if changed == 0:
            raise ServiceError(
                "Payment release failed",
                "Payment was changed concurrently",
                409,
                {"application_id": application["application_id"]},
            )

        payment.update(updates)
        self._logger.info(
            "Escrow returned",
            extra={"application_id": application["application_id"], "reason": reason},
        )
        return payment

    def payment_summary(self, task: dict[str, Any]) -> dict[str, Any]:
        """Return the task's latest payment, or a PENDING placeholder when none exists."""
        payment = self._store.get_latest_payment_for_task(task["task_id"])
        if payment is None:
            return {
                "status": PAYMENT_PENDING,
                "amount": float(task["pay_amount"]),
                "transactionId": None,
                "paymentNote": None,
                "escrowedAt": None,
                "completedAt": None,
            }
        return {
            "id": payment["payment_id"],
            "applicationId": payment["application_id"],
            "status": payment["status"],
            "amount": payment["amount"],
            "transactionId": payment["transaction_id"],
            "workerId": payment["worker_id"],
            "workerUpiId": payment["worker_upi_id"],
            "paymentNote": payment["payment_note"],
            "escrowedAt": payment["escrowed_at"],
            "completedAt": payment["completed_at"],
        }
