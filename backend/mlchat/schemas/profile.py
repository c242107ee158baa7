from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str | None = None
    credits: int
    created_at: datetime
    updated_at: datetime
