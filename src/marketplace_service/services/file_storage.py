"""Disk storage for task attachments and submission files."""

from __future__ import annotations

import contextlib
import re
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger

ALLOWED_MIME_TYPES: frozenset[str] = frozenset(
    {
        # Documents
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "text/csv",
        # Spreadsheets
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        # Presentations
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        # Images
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        # Archives
        "application/zip",
        "application/x-rar-compressed",
        "application/x-7z-compressed",
    }
)

ALLOWED_EXTENSIONS: tuple[str, ...] = (
    ".pdf",
    ".doc",
    ".docx",
    ".txt",
    ".csv",
    ".xls",
    ".xlsx",
    ".ppt",
    ".pptx",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".webp",
    ".zip",
    ".rar",
    ".7z",
)

ATTACHMENTS = "attachments"
SUBMISSIONS = "submissions"
_STORED_PREFIX = {ATTACHMENTS: "task", SUBMISSIONS: "submission"}

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")


def classify_file_type(mime_type: str) -> str:
    """Map a MIME type to image, video, document, spreadsheet, presentation, text or other."""
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if "pdf" in mime_type:
        return "document"
    if "word" in mime_type or "document" in mime_type:
        return "document"
    if "sheet" in mime_type or "excel" in mime_type:
        return "spreadsheet"
    if "presentation" in mime_type or "powerpoint" in mime_type:
        return "presentation"
    if mime_type.startswith("text/"):
        return "text"
    return "other"


def sanitize_filename(filename: str) -> str:
    """Strip directories and replace everything outside [a-zA-Z0-9.-] with underscores."""
    base = Path(filename.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS_RE.sub("_", base)
    return cleaned or "unnamed"


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass
class IncomingFile:
    """An uploaded file read from a multipart request."""

    filename: str
    content_type: str
    content: bytes


class FileStorage:
    """
    Validates uploads and keeps them under ``{storage}/{kind}/{owner_id}/``.

    ``kind`` is ``attachments`` (owner is a task) or ``submissions``
    (owner is a submission).
    """

    def __init__(self, storage_path: str) -> None:
        self._storage_path = Path(storage_path)
        self._logger = get_logger(__name__)
        for kind in (ATTACHMENTS, SUBMISSIONS):
            (self._storage_path / kind).mkdir(parents=True, exist_ok=True)

    def validate(self, files: list[IncomingFile], max_file_size: int, max_files: int) -> None:
        """
        Apply the type, size and count filter to a batch of uploads.

        Raises:
            ServiceError: Too many files (400), Invalid file type (400),
                File too large (413)
        """
        if len(files) > max_files:
            raise ServiceError(
                "Too many files",
                f"At most {max_files} files may be uploaded at once",
                400,
                {"max_files": max_files},
            )
        for upload in files:
            extension = Path(upload.filename).suffix.lower()
            if upload.content_type not in ALLOWED_MIME_TYPES or extension not in ALLOWED_EXTENSIONS:
                raise ServiceError(
                    "Invalid file type",
                    f"Invalid file type. Allowed types: {', '.join(ALLOWED_EXTENSIONS)}",
                    400,
                    {"file_name": upload.filename, "mime_type": upload.content_type},
                )
            if len(upload.content) > max_file_size:
                raise ServiceError(
                    "File too large",
                    f"File exceeds maximum size of {max_file_size} bytes",
                    413,
                    {"file_name": upload.filename, "max_file_size": max_file_size},
                )

    def save(
        self,
        kind: str,
        owner_id: str,
        files: list[IncomingFile],
        descriptions: list[str],
        default_label: str,
    ) -> list[dict[str, Any]]:
        """
        Write files to disk and return their metadata records.

        Records carry ``file_id``, ``file_name``, ``stored_name``, ``file_size``,
        ``mime_type``, ``file_type``, ``description`` and ``uploaded_at``.
        """
        owner_dir = self._storage_path / kind / owner_id
        owner_dir.mkdir(parents=True, exist_ok=True)

        records: list[dict[str, Any]] = []
        try:
            for index, upload in enumerate(files):
                safe_name = sanitize_filename(upload.filename)
                extension = Path(safe_name).suffix
                base_name = Path(safe_name).stem
                stored_name = (
                    f"{_STORED_PREFIX[kind]}_{int(time.time() * 1000)}_"
                    f"{uuid.uuid4().hex[:8]}_{base_name}{extension}"
                )
                (owner_dir / stored_name).write_bytes(upload.content)
                description = descriptions[index] if index < len(descriptions) else ""
                records.append(
                    {
                        "file_id": f"file-{uuid.uuid4()}",
                        "file_name": upload.filename,
                        "stored_name": stored_name,
                        "file_size": len(upload.content),
                        "mime_type": upload.content_type,
                        "file_type": classify_file_type(upload.content_type),
                        "description": description or f"{default_label} {index + 1}",
                        "uploaded_at": _now_iso(),
                    }
                )
        except OSError:
            self.cleanup(kind, owner_id, records)
            raise
        return records

    def read(self, kind: str, owner_id: str, stored_name: str) -> bytes:
        """
        Read a stored file.

        Raises:
            ServiceError: 404 when the path escapes storage or the file is gone
        """
        storage_root = (self._storage_path / kind).resolve()
        file_path = (storage_root / owner_id / stored_name).resolve()
        if not file_path.is_relative_to(storage_root):
            raise ServiceError("File not found", "File not found", 404)
        if not file_path.is_file():
            raise ServiceError("File not found", "File not found on disk", 404)
        return file_path.read_bytes()

    def cleanup(self, kind: str, owner_id: str, records: list[dict[str, Any]]) -> None:
        """Remove files written for records whose database insert failed."""
        owner_dir = self._storage_path / kind / owner_id
        for record in records:
            with contextlib.suppress(FileNotFoundError):
                (owner_dir / record["stored_name"]).unlink()
        with contextlib.suppress(OSError):
            owner_dir.rmdir()
        if records:
            self._logger.info(
                "Cleaned up uploaded files",
                extra={"kind": kind, "owner_id": owner_id, "count": len(records)},
            )
