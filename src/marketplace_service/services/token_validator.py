"""Bearer token verification for marketplace requests."""

from __future__ import annotations

from dataclasses import dataclass

from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from marketplace_service.core.exceptions import ServiceError

ROLE_WORKER = "WORKER"
ROLE_EMPLOYER = "EMPLOYER"
ROLE_ADMIN = "ADMIN"
ROLES: frozenset[str] = frozenset({ROLE_WORKER, ROLE_EMPLOYER, ROLE_ADMIN})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: a worker, employer or admin id with its role."""

    principal_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class TokenValidator:
    """
    Verifies HS256 JWTs issued by the auth service that shares our secret.

    Required claims: ``sub`` (party id) and ``role``. ``exp`` and ``nbf``
    are enforced when present.
    """

    def __init__(self, secret: str, algorithm: str, leeway_seconds: int) -> None:
        self._key = OctKey.import_key(secret)
        self._algorithm = algorithm
        self._claims_registry = jwt.JWTClaimsRegistry(
            leeway=leeway_seconds,
            sub={"essential": True},
            role={"essential": True, "values": sorted(ROLES)},
        )

    def verify(self, token: str) -> Principal:
        """
        Decode and validate a bearer token.

        Raises:
            ServiceError: 401 "Token verification failed" for a bad signature,
                malformed token, expired token or missing claims
        """
        try:
            decoded = jwt.decode(token, self._key, algorithms=[self._algorithm])
            self._claims_registry.validate(decoded.claims)
        except (JoseError, ValueError) as exc:
            raise ServiceError(
                "Token verification failed",
                "Invalid or expired token",
                401,
            ) from exc

        subject = decoded.claims["sub"]
        if not isinstance(subject, str) or subject == "":
            raise ServiceError("Token verification failed", "Token subject is invalid", 401)
        return Principal(principal_id=subject, role=str(decoded.claims["role"]))

    def issue(self, principal_id: str, role: str, expires_at: int | None = None) -> str:
        """Sign a token for ``principal_id``. Used by tooling and tests."""
        claims: dict[str, object] = {"sub": principal_id, "role": role}
        if expires_at is not None:
            claims["exp"] = expires_at
        return jwt.encode({"alg": self._algorithm}, claims, self._key)
