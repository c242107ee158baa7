# mlchat/auth/identity.py
"""
Canonical authenticated identity model.

Every ledger row, chat message and payment intent is keyed by the Supabase
user id carried here. The Identity object is INTERNAL ONLY and should not be
returned directly to clients.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Identity:
    """
    Canonical representation of an authenticated (or unauthenticated) user.

    Attributes:
        user_id: The Supabase auth user id (``sub`` claim). Stable for the
                 lifetime of the account.
        auth_provider: Currently always ``"supabase"`` (or ``None`` if unauthenticated).
        email: User's email address if available.
        is_authenticated: True if the user has been successfully authenticated.
        raw_claims: Optional dict of raw token claims for debugging/audit.
                    Should NOT be used for authorization decisions.
    """

    user_id: str | None = None
    auth_provider: str | None = None  # "supabase" | None
    email: str | None = None
    is_authenticated: bool = False
    raw_claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def unauthenticated(cls) -> Identity:
        """Create an identity representing an unauthenticated request."""
        return cls()

    @classmethod
    def from_supabase(
        cls,
        sub: str,
        email: str | None = None,
        raw_claims: dict[str, Any] | None = None,
    ) -> Identity:
        return cls(
            user_id=sub,
            auth_provider="supabase",
            email=email.strip().lower() if email else None,
            is_authenticated=True,
            raw_claims=raw_claims or {},
        )

    def to_debug_dict(self) -> dict[str, Any]:
        """Safe subset of identity info for logs. Does NOT include raw_claims."""
        return {
            "user_id": self.user_id,
            "auth_provider": self.auth_provider,
            "email": self.email,
            "is_authenticated": self.is_authenticated,
        }
