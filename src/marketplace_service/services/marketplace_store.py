"""SQLite-backed marketplace storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class DuplicatePartyError(Exception):
    """Raised when a worker or employer with the same id or phone already exists."""


class DuplicateApplicationError(Exception):
    """Raised when a worker applies to the same task twice."""


class DuplicateRatingError(Exception):
    """Raised when a rater type already rated an application."""


class DuplicatePaymentError(Exception):
    """Raised when a task already holds an active escrow."""


_JSON_COLUMNS: frozenset[str] = frozenset({"skills", "skill_tags", "links"})
_BOOL_COLUMNS: frozenset[str] = frozenset({"is_verified", "is_latest", "is_visible"})

_UPDATABLE_COLUMNS: dict[str, frozenset[str]] = {
    "applications": frozenset({"status", "note", "updated_at", "completed_at"}),
    "payments": frozenset(
        {
            "status",
            "worker_id",
            "worker_upi_id",
            "transaction_id",
            "payment_note",
            "completed_at",
            "failed_at",
        }
    ),
    "submissions": frozenset({"status", "review_note", "reviewed_at", "is_latest"}),
}
_PRIMARY_KEYS: dict[str, str] = {
    "applications": "application_id",
    "payments": "payment_id",
    "submissions": "submission_id",
}


def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for key in row.keys():  # noqa: SIM118
        value = row[key]
        if key in _JSON_COLUMNS:
            value = json.loads(value) if value else []
        elif key in _BOOL_COLUMNS:
            value = bool(value)
        record[key] = value
    return record


class MarketplaceStore:
    """
    SQLite-backed storage for parties, tasks, applications, payments,
    submissions and ratings.

    Every method is safe to call inside ``transaction()``; writes made
    outside one are committed immediately.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS workers (
                    worker_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    phone TEXT NOT NULL UNIQUE,
                    badge TEXT,
                    upi_id TEXT,
                    skills TEXT NOT NULL DEFAULT '[]',
                    tasks_completed INTEGER NOT NULL DEFAULT 0,
                    total_earnings REAL NOT NULL DEFAULT 0,
                    average_rating REAL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS employers (
                    employer_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    phone TEXT NOT NULL UNIQUE,
                    company_name TEXT,
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    tasks_posted INTEGER NOT NULL DEFAULT 0,
                    average_rating REAL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    employer_id TEXT NOT NULL REFERENCES employers(employer_id),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    pay_amount REAL NOT NULL,
                    duration INTEGER NOT NULL,
                    difficulty TEXT NOT NULL,
                    skill_tags TEXT NOT NULL DEFAULT '[]',
                    industry TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS task_attachments (
                    attachment_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    file_name TEXT NOT NULL,
                    stored_name TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    mime_type TEXT NOT NULL,
                    file_type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS applications (
                    application_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    worker_id TEXT NOT NULL REFERENCES workers(worker_id),
                    status TEXT NOT NULL,
                    message TEXT NOT NULL,
                    note TEXT,
                    applied_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT,
                    UNIQUE(task_id, worker_id)
                );

                CREATE TABLE IF NOT EXISTS payments (
                    payment_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    application_id TEXT NOT NULL UNIQUE REFERENCES applications(application_id),
                    employer_id TEXT NOT NULL,
                    worker_id TEXT,
                    amount REAL NOT NULL,
                    status TEXT NOT NULL,
                    transaction_id TEXT NOT NULL UNIQUE,
                    worker_upi_id TEXT,
                    payment_note TEXT,
                    created_at TEXT NOT NULL,
                    escrowed_at TEXT,
                    completed_at TEXT,
                    failed_at TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_payments_task_escrowed
                    ON payments(task_id) WHERE status = 'ESCROWED';

                CREATE TABLE IF NOT EXISTS submissions (
                    submission_id TEXT PRIMARY KEY,
                    application_id TEXT NOT NULL REFERENCES applications(application_id),
                    task_id TEXT NOT NULL,
                    worker_id TEXT NOT NULL,
                    submission_type TEXT NOT NULL,
                    text_content TEXT,
                    links TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    is_latest INTEGER NOT NULL,
                    previous_version_id TEXT,
                    review_note TEXT,
                    submitted_at TEXT NOT NULL,
                    reviewed_at TEXT,
                    UNIQUE(application_id, version)
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_submissions_latest
                    ON submissions(application_id) WHERE is_latest = 1;

                CREATE TABLE IF NOT EXISTS submission_files (
                    file_id TEXT PRIMARY KEY,
                    submission_id TEXT NOT NULL REFERENCES submissions(submission_id),
                    file_name TEXT NOT NULL,
                    stored_name TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    mime_type TEXT NOT NULL,
                    file_type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ratings (
                    rating_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    application_id TEXT NOT NULL REFERENCES applications(application_id),
                    rater_type TEXT NOT NULL CHECK (rater_type IN ('WORKER', 'EMPLOYER')),
                    rater_id TEXT NOT NULL,
                    rated_worker_id TEXT,
                    rated_employer_id TEXT,
                    stars INTEGER NOT NULL CHECK (stars BETWEEN 1 AND 5),
                    is_visible INTEGER NOT NULL DEFAULT 1,
                    rated_at TEXT NOT NULL,
                    UNIQUE(application_id, rater_type)
                );
                """
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed writes atomically.

        Nested calls join the outermost transaction. Any exception rolls
        back everything written since the outermost BEGIN.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                self._depth = 0
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._depth = 0
            self._db.commit()

    def _insert(self, table: str, data: dict[str, Any]) -> None:
        columns = list(data)
        values = [
            json.dumps(data[column]) if column in _JSON_COLUMNS else data[column]
            for column in columns
        ]
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608
        with self.transaction():
            self._db.execute(query, values)

    def _update(
        self,
        table: str,
        record_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        if len(updates) == 0:
            return 0

        allowed = _UPDATABLE_COLUMNS[table]
        if any(column not in allowed for column in updates):
            msg = f"Attempted to update unknown {table} column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = f"UPDATE {table} SET {set_clause} WHERE {_PRIMARY_KEYS[table]} = ?"  # nosec B608
        params.append(record_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self.transaction():
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def _fetch_one(self, query: str, params: tuple[object, ...]) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    def _fetch_all(self, query: str, params: list[object] | tuple[object, ...]) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [_row_to_dict(row) for row in rows]

    def _count(self, query: str, params: tuple[object, ...] = ()) -> int:
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Workers and employers
    # ------------------------------------------------------------------

    def insert_worker(self, worker_data: dict[str, Any]) -> None:
        """Insert a new worker row."""
        try:
            self._insert("workers", worker_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicatePartyError("A worker with this id or phone already exists") from exc
            raise

    def get_worker(self, worker_id: str) -> dict[str, Any] | None:
        """Fetch a worker by ID."""
        return self._fetch_one("SELECT * FROM workers WHERE worker_id = ?", (worker_id,))

    def credit_worker(self, worker_id: str, amount: float, upi_id: str | None) -> None:
        """Count one completed task and add its earnings to the worker's totals."""
        with self.transaction():
            self._db.execute(
                "UPDATE workers SET tasks_completed = tasks_completed + 1, "
                "total_earnings = total_earnings + ?, upi_id = COALESCE(?, upi_id) "
                "WHERE worker_id = ?",
                (amount, upi_id, worker_id),
            )

    def set_worker_badge(self, worker_id: str, badge: str | None) -> int:
        """Assign a worker's badge and return the number of affected rows."""
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE workers SET badge = ? WHERE worker_id = ?",
                (badge, worker_id),
            )
        return int(cursor.rowcount)

    def set_worker_upi(self, worker_id: str, upi_id: str) -> int:
        """Store a worker's payout UPI id and return the number of affected rows."""
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE workers SET upi_id = ? WHERE worker_id = ?",
                (upi_id, worker_id),
            )
        return int(cursor.rowcount)

    def set_worker_rating(self, worker_id: str, average_rating: float | None) -> None:
        """Store a worker's recomputed average rating."""
        with self.transaction():
            self._db.execute(
                "UPDATE workers SET average_rating = ? WHERE worker_id = ?",
                (average_rating, worker_id),
            )

    def count_workers(self) -> int:
        """Count registered workers."""
        return self._count("SELECT COUNT(*) FROM workers")

    def insert_employer(self, employer_data: dict[str, Any]) -> None:
        """Insert a new employer row."""
        try:
            self._insert("employers", employer_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicatePartyError(
                    "An employer with this id or phone already exists"
                ) from exc
            raise

    def get_employer(self, employer_id: str) -> dict[str, Any] | None:
        """Fetch an employer by ID."""
        return self._fetch_one("SELECT * FROM employers WHERE employer_id = ?", (employer_id,))

    def set_employer_rating(self, employer_id: str, average_rating: float | None) -> None:
        """Store an employer's recomputed average rating."""
        with self.transaction():
            self._db.execute(
                "UPDATE employers SET average_rating = ? WHERE employer_id = ?",
                (average_rating, employer_id),
            )

    def count_employers(self) -> int:
        """Count registered employers."""
        return self._count("SELECT COUNT(*) FROM employers")

    # ------------------------------------------------------------------
    # Tasks and attachments
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a task and bump the employer's posted-task counter atomically."""
        with self.transaction():
            self._insert("tasks", task_data)
            self._db.execute(
                "UPDATE employers SET tasks_posted = tasks_posted + 1 WHERE employer_id = ?",
                (task_data["employer_id"],),
            )

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        return self._fetch_one("SELECT * FROM tasks WHERE task_id = ?", (task_id,))

    def list_tasks(
        self,
        category: str | None,
        max_budget: float | None,
        difficulty: str | None,
        industry: str | None,
        limit: int,
    ) -> list[dict[str, Any]]:
        """List tasks newest first, highest pay first on ties, with optional filters."""
        query = (
            "SELECT tasks.*, "
            "(SELECT COUNT(*) FROM applications a WHERE a.task_id = tasks.task_id) "
            "AS application_count, "
            "employers.name AS employer_name, employers.is_verified AS is_verified "
            "FROM tasks JOIN employers ON employers.employer_id = tasks.employer_id"
        )
        clauses: list[str] = []
        params: list[object] = []

        if category is not None:
            clauses.append("tasks.category = ?")
            params.append(category)
        if max_budget is not None:
            clauses.append("tasks.pay_amount <= ?")
            params.append(max_budget)
        if difficulty is not None:
            clauses.append("tasks.difficulty = ?")
            params.append(difficulty)
        if industry is not None:
            clauses.append("tasks.industry = ?")
            params.append(industry)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY tasks.created_at DESC, tasks.pay_amount DESC LIMIT ?"
        params.append(limit)
        return self._fetch_all(query, params)

    def count_tasks(self) -> int:
        """Count total tasks."""
        return self._count("SELECT COUNT(*) FROM tasks")

    def count_tasks_by_category(self) -> dict[str, int]:
        """Count tasks grouped by category enum."""
        with self._lock:
            rows = self._db.execute(
                "SELECT category, COUNT(*) FROM tasks GROUP BY category"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def insert_attachment(self, attachment_data: dict[str, Any]) -> None:
        """Insert a task attachment record."""
        self._insert("task_attachments", attachment_data)

    def get_attachment(self, attachment_id: str, task_id: str) -> dict[str, Any] | None:
        """Fetch a single attachment by ID for a task."""
        return self._fetch_one(
            "SELECT * FROM task_attachments WHERE attachment_id = ? AND task_id = ?",
            (attachment_id, task_id),
        )

    def get_attachments_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch all attachments for a task sorted by upload time."""
        return self._fetch_all(
            "SELECT * FROM task_attachments WHERE task_id = ? ORDER BY uploaded_at",
            (task_id,),
        )

    def count_attachments(self, task_id: str) -> int:
        """Count attachments for a task."""
        return self._count("SELECT COUNT(*) FROM task_attachments WHERE task_id = ?", (task_id,))

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def insert_application(self, application_data: dict[str, Any]) -> None:
        """Insert an application, translating the (task, worker) unique violation."""
        try:
            self._insert("applications", application_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateApplicationError(
                    "This worker already applied to this task"
                ) from exc
            raise

    def get_application(self, application_id: str) -> dict[str, Any] | None:
        """Fetch an application by ID."""
        return self._fetch_one(
            "SELECT * FROM applications WHERE application_id = ?",
            (application_id,),
        )

    def get_worker_application(self, task_id: str, worker_id: str) -> dict[str, Any] | None:
        """Fetch a worker's application to a task."""
        return self._fetch_one(
            "SELECT * FROM applications WHERE task_id = ? AND worker_id = ?",
            (task_id, worker_id),
        )

    def get_assigned_application(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the ACCEPTED or COMPLETED application of a task, if any."""
        return self._fetch_one(
            "SELECT * FROM applications WHERE task_id = ? "
            "AND status IN ('ACCEPTED', 'COMPLETED') LIMIT 1",
            (task_id,),
        )

    def update_application(
        self,
        application_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update application columns and return the number of affected rows."""
        return self._update(
            "applications", application_id, updates, expected_status=expected_status
        )

    def list_applications_for_task(
        self, task_id: str, status: str | None
    ) -> list[dict[str, Any]]:
        """List a task's applications with applicant details, newest first."""
        query = (
            "SELECT applications.*, workers.name AS worker_name, workers.badge AS worker_badge, "
            "workers.tasks_completed AS worker_tasks_completed, "
            "workers.average_rating AS worker_average_rating "
            "FROM applications JOIN workers ON workers.worker_id = applications.worker_id "
            "WHERE applications.task_id = ?"
        )
        params: list[object] = [task_id]
        if status is not None:
            query += " AND applications.status = ?"
            params.append(status)
        query += " ORDER BY applications.applied_at DESC"
        return self._fetch_all(query, params)

    def list_applications_for_worker(
        self,
        worker_id: str,
        status: str | None,
        category: str | None,
    ) -> list[dict[str, Any]]:
        """List a worker's applications joined with task details, newest first."""
        query = (
            "SELECT applications.*, tasks.title AS task_title, tasks.category AS category, "
            "tasks.pay_amount AS pay_amount, tasks.duration AS duration, "
            "tasks.difficulty AS difficulty, tasks.employer_id AS employer_id "
            "FROM applications JOIN tasks ON tasks.task_id = applications.task_id "
            "WHERE applications.worker_id = ?"
        )
        params: list[object] = [worker_id]
        if status is not None:
            query += " AND applications.status = ?"
            params.append(status)
        if category is not None:
            query += " AND tasks.category = ?"
            params.append(category)
        query += " ORDER BY applications.applied_at DESC"
        return self._fetch_all(query, params)

    def count_applications(self, task_id: str) -> int:
        """Count applications for a task."""
        return self._count("SELECT COUNT(*) FROM applications WHERE task_id = ?", (task_id,))

    def count_applications_by_status(self) -> dict[str, int]:
        """Count all applications grouped by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) FROM applications GROUP BY status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def list_completed_applications(self, party_column: str, party_id: str) -> list[dict[str, Any]]:
        """
        List COMPLETED applications where the party took part.

        ``party_column`` is either ``worker_id`` or ``employer_id``.
        """
        if party_column not in ("worker_id", "employer_id"):
            msg = "party_column must be worker_id or employer_id"
            raise ValueError(msg)
        qualified = "applications.worker_id" if party_column == "worker_id" else "tasks.employer_id"
        query = (
            "SELECT applications.*, tasks.title AS task_title, tasks.employer_id AS employer_id "
            "FROM applications JOIN tasks ON tasks.task_id = applications.task_id "
            f"WHERE applications.status = 'COMPLETED' AND {qualified} = ? "  # nosec B608
            "ORDER BY applications.completed_at DESC"
        )
        return self._fetch_all(query, (party_id,))

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def insert_payment(self, payment_data: dict[str, Any]) -> None:
        """Insert a payment row; a second active escrow for a task is rejected."""
        try:
            self._insert("payments", payment_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicatePaymentError("Task already holds an escrowed payment") from exc
            raise

    def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        """Fetch a payment by ID."""
        return self._fetch_one("SELECT * FROM payments WHERE payment_id = ?", (payment_id,))

    def get_payment_for_application(self, application_id: str) -> dict[str, Any] | None:
        """Fetch the payment created for an application."""
        return self._fetch_one(
            "SELECT * FROM payments WHERE application_id = ?",
            (application_id,),
        )

    def get_latest_payment_for_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the most recent payment created for a task."""
        return self._fetch_one(
            "SELECT * FROM payments WHERE task_id = ? ORDER BY created_at DESC LIMIT 1",
            (task_id,),
        )

    def update_payment(
        self,
        payment_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update payment columns and return the number of affected rows."""
        return self._update("payments", payment_id, updates, expected_status=expected_status)

    def count_payments_by_status(self) -> dict[str, int]:
        """Count payments grouped by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) FROM payments GROUP BY status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def insert_submission(self, submission_data: dict[str, Any]) -> None:
        """Insert a submission row."""
        self._insert("submissions", submission_data)

    def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        """Fetch a submission by ID."""
        return self._fetch_one(
            "SELECT * FROM submissions WHERE submission_id = ?",
            (submission_id,),
        )

    def get_latest_submission(self, application_id: str) -> dict[str, Any] | None:
        """Fetch the latest submission version for an application."""
        return self._fetch_one(
            "SELECT * FROM submissions WHERE application_id = ? AND is_latest = 1",
            (application_id,),
        )

    def list_submissions_for_application(self, application_id: str) -> list[dict[str, Any]]:
        """List every submission version for an application, newest first."""
        return self._fetch_all(
            "SELECT * FROM submissions WHERE application_id = ? ORDER BY version DESC",
            (application_id,),
        )

    def list_submissions_for_task(self, task_id: str, status: str | None) -> list[dict[str, Any]]:
        """List the latest submission of each application for a task."""
        query = (
            "SELECT submissions.*, workers.name AS worker_name "
            "FROM submissions JOIN workers ON workers.worker_id = submissions.worker_id "
            "WHERE submissions.task_id = ? AND submissions.is_latest = 1"
        )
        params: list[object] = [task_id]
        if status is not None:
            query += " AND submissions.status = ?"
            params.append(status)
        query += " ORDER BY submissions.submitted_at DESC"
        return self._fetch_all(query, params)

    def update_submission(
        self,
        submission_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update submission columns and return the number of affected rows."""
        return self._update(
            "submissions", submission_id, updates, expected_status=expected_status
        )

    def insert_submission_file(self, file_data: dict[str, Any]) -> None:
        """Insert a submission file record."""
        self._insert("submission_files", file_data)

    def get_submission_file(self, file_id: str, submission_id: str) -> dict[str, Any] | None:
        """Fetch a single file by ID for a submission."""
        return self._fetch_one(
            "SELECT * FROM submission_files WHERE file_id = ? AND submission_id = ?",
            (file_id, submission_id),
        )

    def get_files_for_submission(self, submission_id: str) -> list[dict[str, Any]]:
        """Fetch all files of a submission sorted by upload time."""
        return self._fetch_all(
            "SELECT * FROM submission_files WHERE submission_id = ? ORDER BY uploaded_at",
            (submission_id,),
        )

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def insert_rating(self, rating_data: dict[str, Any]) -> None:
        """Insert a rating, translating the (application, rater type) unique violation."""
        try:
            self._insert("ratings", rating_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateRatingError(
                    "This application was already rated by this party"
                ) from exc
            raise

    def get_rating(self, rating_id: str) -> dict[str, Any] | None:
        """Fetch a rating by ID."""
        return self._fetch_one("SELECT * FROM ratings WHERE rating_id = ?", (rating_id,))

    def get_application_rating(self, application_id: str, rater_type: str) -> dict[str, Any] | None:
        """Fetch the rating a rater type gave for an application."""
        return self._fetch_one(
            "SELECT * FROM ratings WHERE application_id = ? AND rater_type = ?",
            (application_id, rater_type),
        )

    def list_ratings_received(
        self, rated_column: str, party_id: str, *, visible_only: bool
    ) -> list[dict[str, Any]]:
        """
        List ratings received by a party, newest first.

        ``rated_column`` is either ``rated_worker_id`` or ``rated_employer_id``.
        """
        if rated_column not in ("rated_worker_id", "rated_employer_id"):
            msg = "rated_column must be rated_worker_id or rated_employer_id"
            raise ValueError(msg)
        query = (
            "SELECT ratings.*, tasks.title AS task_title FROM ratings "
            "JOIN tasks ON tasks.task_id = ratings.task_id "
            f"WHERE ratings.{rated_column} = ?"  # nosec B608
        )
        if visible_only:
            query += " AND ratings.is_visible = 1"
        query += " ORDER BY ratings.rated_at DESC"
        return self._fetch_all(query, (party_id,))

    def visible_stars(self, rated_column: str, party_id: str) -> list[int]:
        """Return the stars of every visible rating a party received."""
        if rated_column not in ("rated_worker_id", "rated_employer_id"):
            msg = "rated_column must be rated_worker_id or rated_employer_id"
            raise ValueError(msg)
        with self._lock:
            rows = self._db.execute(
                f"SELECT stars FROM ratings WHERE {rated_column} = ? AND is_visible = 1",  # nosec B608
                (party_id,),
            ).fetchall()
        return [int(row[0]) for row in rows]

    def set_rating_visibility(self, rating_id: str, is_visible: bool) -> int:
        """Show or hide a rating and return the number of affected rows."""
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE ratings SET is_visible = ? WHERE rating_id = ?",
                (1 if is_visible else 0, rating_id),
            )
        return int(cursor.rowcount)

    def all_rating_stars(self) -> list[tuple[str, int, bool]]:
        """Return (rater_type, stars, is_visible) for every rating."""
        with self._lock:
            rows = self._db.execute("SELECT rater_type, stars, is_visible FROM ratings").fetchall()
        return [(str(row[0]), int(row[1]), bool(row[2])) for row in rows]

    def list_recent_ratings(self, limit: int) -> list[dict[str, Any]]:
        """List the most recent visible ratings with their task titles."""
        return self._fetch_all(
            "SELECT ratings.*, tasks.title AS task_title FROM ratings "
            "JOIN tasks ON tasks.task_id = ratings.task_id "
            "WHERE ratings.is_visible = 1 ORDER BY ratings.rated_at DESC LIMIT ?",
            (limit,),
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
