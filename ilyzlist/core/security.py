"""Security helpers: access-token decoding and shared-secret checks."""
from __future__ import annotations

import hmac
from typing import Any

import jwt

from .settings import get_settings


def decode_token(token: str) -> dict[str, Any]:
    """Decode an access token issued by the hosted auth provider."""
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=settings.jwt_algorithms,
        audience=settings.jwt_audience,
    )


def create_access_token(claims: dict[str, Any]) -> str:
    """Mint a token the same way the auth provider does; used by tooling and tests."""
    settings = get_settings()
    payload = {"aud": settings.jwt_audience, **claims}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithms[0])


def secrets_match(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


__all__ = ["decode_token", "create_access_token", "secrets_match"]
