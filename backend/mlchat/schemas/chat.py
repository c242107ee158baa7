from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ChatRequest(BaseModel):
    # Emptiness and length are checked by the orchestrator so every client sees the same 400.
    message: str | None = None


class ChatResponse(BaseModel):
    response: str
    remaining_credits: int


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    message: str
    response: str | None = None
    credits_used: int
    created_at: datetime
