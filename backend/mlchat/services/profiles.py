from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mlchat.auth.identity import Identity
from mlchat.core.config import settings
from mlchat.models.profile import Profile
from mlchat.services.credits import ProfileNotFoundError

logger = logging.getLogger(__name__)


def get_profile(db: Session, user_id: str) -> Profile:
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if not profile:
        raise ProfileNotFoundError("Profile not found")
    return profile


def ensure_profile(db: Session, identity: Identity) -> Profile | None:
    """
    Return the caller's profile, creating it with the signup grant on first sight
    when auto-provisioning is enabled. Returns None when it is disabled and no
    profile exists; downstream balance reads then report "profile not found".
    """
    if not identity.user_id:
        return None

    profile = db.query(Profile).filter(Profile.id == identity.user_id).first()
    if profile is not None:
        if identity.email and profile.email != identity.email:
            profile.email = identity.email
            db.commit()
        return profile

    if not settings.PROFILE_AUTO_PROVISION:
        return None

    profile = Profile(id=identity.user_id, email=identity.email, credits=settings.SIGNUP_CREDITS)
    db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        # Another request provisioned the same user first.
        db.rollback()
        return db.query(Profile).filter(Profile.id == identity.user_id).first()

    db.refresh(profile)
    logger.info("profiles.provisioned", extra={"user_id": identity.user_id, "credits": settings.SIGNUP_CREDITS})
    return profile
