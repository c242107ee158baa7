# mlchat/auth/__init__.py
"""
Authentication modules for the chat backend.

This package contains:
- identity.py: Canonical authenticated identity model (auth-provider agnostic)
- supabase.py: Supabase access-token verification
"""
from mlchat.auth.identity import Identity

__all__ = ["Identity"]
