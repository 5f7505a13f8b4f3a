"""
Status vocabularies and transition tables for applications, payments
and submissions.

Pure Python, no I/O. ``WorkflowEngine`` applies these tables together
with their side effects.
"""

from __future__ import annotations

from marketplace_service.core.exceptions import ServiceError

APPLIED = "APPLIED"
ACCEPTED = "ACCEPTED"
REJECTED = "REJECTED"
COMPLETED = "COMPLETED"

APPLICATION_STATUSES: tuple[str, ...] = (APPLIED, ACCEPTED, REJECTED, COMPLETED)

APPLICATION_TRANSITIONS: dict[str, frozenset[str]] = {
    APPLIED: frozenset({ACCEPTED, REJECTED}),
    ACCEPTED: frozenset({COMPLETED, REJECTED}),
    REJECTED: frozenset(),
    COMPLETED: frozenset(),
}

PAYMENT_PENDING = "PENDING"
PAYMENT_ESCROWED = "ESCROWED"
PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_FAILED = "FAILED"

PAYMENT_STATUSES: tuple[str, ...] = (
    PAYMENT_PENDING,
    PAYMENT_ESCROWED,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
)

PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PAYMENT_PENDING: frozenset({PAYMENT_ESCROWED, PAYMENT_FAILED}),
    PAYMENT_ESCROWED: frozenset({PAYMENT_COMPLETED, PAYMENT_FAILED}),
    PAYMENT_COMPLETED: frozenset(),
    PAYMENT_FAILED: frozenset(),
}

SUBMITTED = "SUBMITTED"
UNDER_REVIEW = "UNDER_REVIEW"
REVISION_REQUESTED = "REVISION_REQUESTED"
APPROVED = "APPROVED"
SUBMISSION_REJECTED = "REJECTED"

SUBMISSION_STATUSES: tuple[str, ...] = (
    SUBMITTED,
    UNDER_REVIEW,
    REVISION_REQUESTED,
    APPROVED,
    SUBMISSION_REJECTED,
)

SUBMISSION_TRANSITIONS: dict[str, frozenset[str]] = {
    SUBMITTED: frozenset({UNDER_REVIEW, REVISION_REQUESTED, APPROVED, SUBMISSION_REJECTED}),
    UNDER_REVIEW: frozenset({REVISION_REQUESTED, APPROVED, SUBMISSION_REJECTED}),
    REVISION_REQUESTED: frozenset(),
    APPROVED: frozenset(),
    SUBMISSION_REJECTED: frozenset(),
}


def _check(
    table: dict[str, frozenset[str]],
    kind: str,
    current: str,
    target: object,
) -> str:
    if not isinstance(target, str) or target not in table:
        raise ServiceError(
            "Invalid status",
            f"{kind} status must be one of: {', '.join(table)}",
            400,
            {"status": target},
        )
    if target not in table.get(current, frozenset()):
        raise ServiceError(
            "Invalid status transition",
            f"Cannot move {kind.lower()} from {current} to {target}",
            409,
            {"from": current, "to": target},
        )
    return target


def check_application_transition(current: str, target: object) -> str:
    """
    Validate an application status change and return the target status.

    Raises:
        ServiceError: 400 for an unknown status, 409 for a disallowed move.
    """
    return _check(APPLICATION_TRANSITIONS, "Application", current, target)


def check_submission_transition(current: str, target: object) -> str:
    """Validate a submission review status change and return the target status."""
    return _check(SUBMISSION_TRANSITIONS, "Submission", current, target)


def check_payment_transition(current: str, target: str) -> str:
    """Validate a payment status change and return the target status."""
    return _check(PAYMENT_TRANSITIONS, "Payment", current, target)
