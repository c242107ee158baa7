# mlchat/auth/supabase.py
"""
Supabase access-token verification.

Two strategies, chosen by configuration:
- Local: verify the HS256 signature with the project's JWT secret (no network).
- Remote: ask the Supabase Auth server who the token belongs to
  (``GET /auth/v1/user``), used when no JWT secret is configured.

Both return the decoded claims / user payload, or raise a typed error.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from jose import JWTError, jwt

from mlchat.auth.identity import Identity
from mlchat.core.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SupabaseAuthError(Exception):
    """Base exception for Supabase token verification failures."""


class SupabaseNotConfiguredError(SupabaseAuthError):
    """Raised when neither a JWT secret nor an auth server URL is configured."""


class SupabaseTokenExpiredError(SupabaseAuthError):
    """Raised when the token has expired."""


class SupabaseInvalidTokenError(SupabaseAuthError):
    """Raised for signature, audience or shape failures."""


class SupabaseUnavailableError(SupabaseAuthError):
    """Raised when the Supabase Auth server cannot be reached."""


# ---------------------------------------------------------------------------
# Token Verification
# ---------------------------------------------------------------------------


def verify_supabase_jwt(token: str) -> dict[str, Any]:
    """
    Verify a Supabase access token locally.

    Validates signature (HS256), exp/iat/nbf and the ``aud`` claim.
    """
    secret = settings.SUPABASE_JWT_SECRET
    if not secret:
        raise SupabaseNotConfiguredError("SUPABASE_JWT_SECRET is not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except jwt.ExpiredSignatureError as e:
        raise SupabaseTokenExpiredError("Token has expired") from e
    except jwt.JWTClaimsError as e:
        raise SupabaseInvalidTokenError(f"Claims validation failed: {e}") from e
    except JWTError as e:
        raise SupabaseInvalidTokenError(f"Signature verification failed: {e}") from e

    if not claims.get("sub"):
        raise SupabaseInvalidTokenError("Token missing subject")
    return claims


def fetch_supabase_user(token: str) -> dict[str, Any]:
    """Resolve the token owner through the Supabase Auth server."""
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise SupabaseNotConfiguredError("SUPABASE_URL and SUPABASE_ANON_KEY are required")

    try:
        response = httpx.get(
            f"{settings.SUPABASE_URL}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": settings.SUPABASE_ANON_KEY,
            },
            timeout=settings.SUPABASE_AUTH_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        logger.error("Supabase auth lookup failed: %s", exc)
        raise SupabaseUnavailableError("Unable to verify access token") from exc

    if response.status_code in (401, 403):
        raise SupabaseInvalidTokenError("Invalid token")
    if response.status_code >= 400:
        logger.error("Supabase auth returned status %s", response.status_code)
        raise SupabaseUnavailableError("Unable to verify access token")

    try:
        payload = response.json()
    except ValueError as exc:
        raise SupabaseUnavailableError("Invalid auth server response") from exc

    if not isinstance(payload, dict) or not payload.get("id"):
        raise SupabaseInvalidTokenError("Invalid token")
    return payload


def resolve_identity(token: str) -> Identity:
    """Verify ``token`` and return the caller's Identity."""
    candidate = (token or "").strip()
    if not candidate:
        raise SupabaseInvalidTokenError("Missing access token")

    if settings.SUPABASE_JWT_SECRET:
        claims = verify_supabase_jwt(candidate)
        return Identity.from_supabase(sub=str(claims["sub"]), email=claims.get("email"), raw_claims=claims)

    user = fetch_supabase_user(candidate)
    return Identity.from_supabase(sub=str(user["id"]), email=user.get("email"), raw_claims=user)
