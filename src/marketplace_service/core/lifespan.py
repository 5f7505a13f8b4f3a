"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from marketplace_service.config import get_settings
from marketplace_service.core.state import init_app_state
from marketplace_service.logging import get_logger, setup_logging
from marketplace_service.services.escrow_coordinator import EscrowCoordinator
from marketplace_service.services.file_storage import FileStorage
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.party_manager import PartyManager
from marketplace_service.services.rating_manager import RatingManager
from marketplace_service.services.submission_manager import SubmissionManager
from marketplace_service.services.task_manager import TaskManager
from marketplace_service.services.token_validator import TokenValidator
from marketplace_service.services.workflow import WorkflowEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = MarketplaceStore(db_path=settings.database.path)
    state.store = store
    state.token_validator = TokenValidator(
        secret=settings.auth.jwt_secret,
        algorithm=settings.auth.algorithm,
        leeway_seconds=settings.auth.leeway_seconds,
    )
    file_storage = FileStorage(storage_path=settings.storage.path)

    # Ledger components shared by every status change
    escrow_coordinator = EscrowCoordinator(store=store)
    rating_manager = RatingManager(store=store)
    workflow = WorkflowEngine(
        store=store,
        escrow_coordinator=escrow_coordinator,
        rating_manager=rating_manager,
    )
    state.rating_manager = rating_manager

    state.party_manager = PartyManager(store=store)
    state.task_manager = TaskManager(
        store=store,
        workflow=workflow,
        escrow_coordinator=escrow_coordinator,
        file_storage=file_storage,
        rules=settings.marketplace,
        attachment_max_file_size=settings.storage.attachment_max_file_size,
        attachment_max_files=settings.storage.attachment_max_files,
    )
    state.submission_manager = SubmissionManager(
        store=store,
        workflow=workflow,
        file_storage=file_storage,
        max_file_size=settings.storage.submission_max_file_size,
        max_files=settings.storage.submission_max_files,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "storage_path": settings.storage.path,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})
    store.close()
