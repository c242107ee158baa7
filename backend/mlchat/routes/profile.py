from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from mlchat.auth.identity import Identity
from mlchat.core.database import get_db
from mlchat.dependencies.auth import get_current_identity
from mlchat.schemas.profile import ProfileOut
from mlchat.services.credits import ProfileNotFoundError
from mlchat.services.profiles import get_profile

router = APIRouter(tags=["profile"])


@router.get("/profile", response_model=ProfileOut)
def read_profile(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
) -> ProfileOut:
    try:
        profile = get_profile(db, identity.user_id)
    except ProfileNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Profile not found") from None
    return ProfileOut.model_validate(profile)
