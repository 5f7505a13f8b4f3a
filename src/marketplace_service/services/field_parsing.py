"""Coercion helpers for fields that arrive as JSON values or multipart strings."""

from __future__ import annotations

import json
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from marketplace_service.core.exceptions import ServiceError


def _invalid(field_name: str, message: str) -> ServiceError:
    return ServiceError("Validation error", message, 400, {"field": field_name})


def require_text(fields: dict[str, Any], field_name: str) -> str:
    """Return a stripped, non-empty string field."""
    value = fields.get(field_name)
    if not isinstance(value, str) or value.strip() == "":
        raise _invalid(field_name, f"Field '{field_name}' is required")
    return value.strip()


def optional_text(fields: dict[str, Any], field_name: str) -> str | None:
    """Return a string field, or None when absent or null."""
    value = fields.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise _invalid(field_name, f"Field '{field_name}' must be a string")
    return value


def positive_int(fields: dict[str, Any], field_name: str) -> int:
    """Return a positive integer from an int or a numeric string."""
    value = fields.get(field_name)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise _invalid(field_name, f"Field '{field_name}' must be an integer") from None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise _invalid(field_name, f"Field '{field_name}' must be a positive integer")
    return value


def positive_amount(fields: dict[str, Any], field_name: str) -> float:
    """Return a positive amount rounded to paise from a number or numeric string."""
    value = fields.get(field_name)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise _invalid(field_name, f"Field '{field_name}' must be a number") from None
    if (
        isinstance(value, bool)
        or not isinstance(value, int | float)
        or not math.isfinite(value)
        or value <= 0
    ):
        raise _invalid(field_name, f"Field '{field_name}' must be a positive number")
    return round(float(value), 2)


def string_list(value: object, field_name: str) -> list[str]:
    """
    Accept a list of strings, a JSON-encoded list, or a comma-separated string.

    Blank entries are dropped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        stripped = value.strip()
        if stripped == "":
            return []
        try:
            decoded = json.loads(stripped)
        except json.JSONDecodeError:
            decoded = [part.strip() for part in stripped.split(",")]
        value = decoded if isinstance(decoded, list) else [stripped]
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise _invalid(field_name, f"Field '{field_name}' must be a list of strings")
    return [item.strip() for item in value if item.strip() != ""]


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_limit(raw: str | None, default: int, maximum: int) -> int:
    """Parse a ``limit`` query value, capped at ``maximum``."""
    if raw is None:
        return default
    try:
        limit = int(raw)
    except ValueError:
        raise _invalid("limit", "limit must be an integer") from None
    if limit <= 0:
        raise _invalid("limit", "limit must be >= 1")
    return min(limit, maximum)
