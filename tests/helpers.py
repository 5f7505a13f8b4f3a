"""Shared test helpers for bearer-token authentication."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from joserfc import jwt
from joserfc.jwk import OctKey

if TYPE_CHECKING:
    from pathlib import Path

TEST_JWT_SECRET = "test-secret-for-marketplace-unit-tests-0123456789"


def make_token(
    principal_id: str,
    role: str,
    *,
    secret: str = TEST_JWT_SECRET,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """Sign an HS256 JWT the service will accept."""
    claims: dict[str, Any] = {"sub": principal_id, "role": role}
    if extra_claims is not None:
        claims.update(extra_claims)
    return jwt.encode({"alg": "HS256"}, claims, OctKey.import_key(secret))


def auth_headers(principal_id: str, role: str) -> dict[str, str]:
    """Authorization header for ``principal_id`` acting as ``role``."""
    return {"Authorization": f"Bearer {make_token(principal_id, role)}"}


def tamper_token(token: str) -> str:
    """Swap the signature of a JWT for garbage."""
    header, payload, _signature = token.split(".")
    return f"{header}.{payload}.c2lnbmF0dXJlLXRoYXQtZG9lcy1ub3QtbWF0Y2g"


def write_config(directory: Path, *, debug: bool = False, max_body_size: int = 1048576) -> Path:
    """Write a complete service config rooted in ``directory`` and return its path."""
    debug_flag = "true" if debug else "false"
    log_directory = directory / "logs"
    db_path = directory / "marketplace.db"
    storage_path = directory / "uploads"
    config_content = f"""\
service:
  name: "marketplace"
  version: "0.1.0"
  debug: {debug_flag}
server:
  host: "0.0.0.0"
  port: 5000
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_directory}"
database:
  path: "{db_path}"
auth:
  jwt_secret: "{TEST_JWT_SECRET}"
  algorithm: "HS256"
  leeway_seconds: 0
request:
  max_body_size: {max_body_size}
storage:
  path: "{storage_path}"
  attachment_max_file_size: 1024
  attachment_max_files: 2
  submission_max_file_size: 2048
  submission_max_files: 3
marketplace:
  max_applications_per_task: 3
  qualifying_badges: ["BRONZE", "SILVER", "GOLD", "PLATINUM"]
  default_list_limit: 20
  max_list_limit: 100
"""
    config_path = directory / "config.yaml"
    config_path.write_text(config_content)
    return config_path
