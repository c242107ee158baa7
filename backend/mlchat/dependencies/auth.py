# mlchat/dependencies/auth.py
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from mlchat.auth.identity import Identity
from mlchat.auth.supabase import SupabaseAuthError, SupabaseUnavailableError, resolve_identity
from mlchat.core.database import get_db
from mlchat.services.profiles import ensure_profile

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_identity(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Identity:
    """
    Validates:
      - Authorization: Bearer <token>
      - token signature, exp and audience (or the Supabase Auth lookup)
    Side effect:
      - provisions a profile with the signup grant on the caller's first request
    Returns:
      - Identity for the token owner
    """
    if not creds or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise _unauthorized()

    try:
        identity = resolve_identity(creds.credentials)
    except SupabaseUnavailableError:
        logger.warning("Supabase auth unavailable; rejecting request")
        raise _unauthorized("Invalid token")
    except SupabaseAuthError:
        raise _unauthorized("Invalid token")

    logger.debug("auth.identity_resolved", extra=identity.to_debug_dict())
    ensure_profile(db, identity)
    return identity
