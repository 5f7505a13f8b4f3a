"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_workers: int
    total_employers: int
    total_tasks: int
    applications_by_status: dict[str, int]
    payments_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    model_config = ConfigDict(extra="forbid")
    success: Literal[False]
    error: str
    message: str
    details: dict[str, object]
