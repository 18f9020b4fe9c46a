"""
Bearer-token checks for the certificate API.

The middleware in app_server.py calls `authenticate` for every /api/* request
that is not public. Tokens are either HS256 with a shared secret or signed
asymmetrically and verified against a JWKS endpoint.

Environment variables (set in .env):
    CERTBATCH_JWT_SECRET    –  shared secret for HS256 tokens
    CERTBATCH_JWKS_URL      –  JWKS endpoint for RS256/ES256 tokens
    CERTBATCH_JWT_AUDIENCE  –  expected `aud` claim; unchecked when empty
    CERTBATCH_AUTH_DISABLED –  "1"/"true" turns the check off for local use
"""

from __future__ import annotations

import os
from typing import Optional

import jwt

import config  # noqa: F401  (loads .env before the variables below are read)

JWT_SECRET: str = os.environ.get("CERTBATCH_JWT_SECRET", "")
JWKS_URL: str = os.environ.get("CERTBATCH_JWKS_URL", "")
JWT_AUDIENCE: str = os.environ.get("CERTBATCH_JWT_AUDIENCE", "")
AUTH_DISABLED: bool = os.environ.get("CERTBATCH_AUTH_DISABLED", "").lower() in {"1", "true", "yes"}

PUBLIC_PATHS: frozenset[str] = frozenset({"/api/health"})

_jwks_client: Optional[jwt.PyJWKClient] = None


def _get_jwks_client() -> Optional[jwt.PyJWKClient]:
    global _jwks_client
    if _jwks_client is None and JWKS_URL:
        _jwks_client = jwt.PyJWKClient(JWKS_URL, cache_keys=True)
    return _jwks_client


def requires_auth(path: str, method: str) -> bool:
    if AUTH_DISABLED or method == "OPTIONS":
        return False
    return path.startswith("/api/") and path not in PUBLIC_PATHS


def bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise jwt.InvalidTokenError("Missing or invalid Authorization header.")
    return token.strip()


def _verification_key(token: str, alg: str):
    if alg == "HS256":
        if not JWT_SECRET:
            raise jwt.InvalidTokenError("CERTBATCH_JWT_SECRET is not set; cannot verify HS256 tokens.")
        return JWT_SECRET
    client = _get_jwks_client()
    if client is None:
        raise jwt.InvalidTokenError(f"Token uses {alg} but CERTBATCH_JWKS_URL is not set.")
    return client.get_signing_key_from_jwt(token).key


def decode_token(token: str) -> dict:
    """Verify *token* and return its claims; raises jwt.InvalidTokenError."""
    alg = jwt.get_unverified_header(token).get("alg", "HS256")
    return jwt.decode(
        token,
        _verification_key(token, alg),
        algorithms=[alg],
        audience=JWT_AUDIENCE or None,
        options={"verify_aud": bool(JWT_AUDIENCE)},
    )


def authenticate(authorization: str | None) -> dict:
    return decode_token(bearer_token(authorization))
