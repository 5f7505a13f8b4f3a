"""Unit tests for TokenValidator."""

from __future__ import annotations

import time

import pytest

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.services.token_validator import Principal, TokenValidator
from tests.helpers import TEST_JWT_SECRET, make_token, tamper_token


@pytest.fixture
def validator() -> TokenValidator:
    return TokenValidator(secret=TEST_JWT_SECRET, algorithm="HS256", leeway_seconds=0)


@pytest.mark.unit
def test_valid_token_yields_principal(validator: TokenValidator) -> None:
    principal = validator.verify(make_token("wkr-1", "WORKER"))
    assert principal == Principal(principal_id="wkr-1", role="WORKER")
    assert principal.is_admin is False


@pytest.mark.unit
def test_issue_round_trips(validator: TokenValidator) -> None:
    token = validator.issue("adm-1", "ADMIN", expires_at=int(time.time()) + 60)
    assert validator.verify(token).is_admin is True


@pytest.mark.unit
@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        make_token("wkr-1", "WORKER", secret="some-other-secret-that-is-long-enough-1234"),
        tamper_token(make_token("wkr-1", "WORKER")),
        make_token("wkr-1", "SUPERUSER"),
        make_token("wkr-1", "WORKER", extra_claims={"exp": 1_000_000_000}),
    ],
    ids=["garbage", "wrong-secret", "tampered", "unknown-role", "expired"],
)
def test_rejected_tokens(validator: TokenValidator, token: str) -> None:
    with pytest.raises(ServiceError) as exc_info:
        validator.verify(token)
    assert exc_info.value.status_code == 401
    assert exc_info.value.error == "Token verification failed"


@pytest.mark.unit
def test_missing_role_claim_is_rejected(validator: TokenValidator) -> None:
    from joserfc import jwt
    from joserfc.jwk import OctKey

    token = jwt.encode({"alg": "HS256"}, {"sub": "wkr-1"}, OctKey.import_key(TEST_JWT_SECRET))
    with pytest.raises(ServiceError):
        validator.verify(token)
