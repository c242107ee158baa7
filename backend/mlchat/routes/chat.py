from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from mlchat.auth.identity import Identity
from mlchat.auth.supabase import SupabaseAuthError
from mlchat.core.config import settings
from mlchat.core.database import get_db
from mlchat.dependencies.auth import get_current_identity
from mlchat.dependencies.request_id import get_request_id
from mlchat.dependencies.services import get_chat_orchestrator
from mlchat.schemas.chat import ChatMessageOut, ChatRequest, ChatResponse
from mlchat.services.chat import ChatOrchestrator, InvalidMessageError, OutOfScopeError
from mlchat.services.conversation_log import ConversationLog
from mlchat.services.credits import InsufficientCreditsError, ProfileNotFoundError
from mlchat.services.generation import GenerationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.post("/chat", response_model=ChatResponse)
def chat(
    payload: ChatRequest,
    identity: Identity = Depends(get_current_identity),
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
    request_id: str = Depends(get_request_id),
) -> ChatResponse:
    try:
        result = orchestrator.handle(identity, payload.message, request_id=request_id)
    except SupabaseAuthError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from None
    except InvalidMessageError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except InsufficientCreditsError as exc:
        raise HTTPException(status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc)) from None
    except OutOfScopeError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except ProfileNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Profile not found") from None
    except GenerationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate response",
        ) from exc

    return ChatResponse(response=result.response_text, remaining_credits=result.remaining_credits)


@router.get("/chat/history", response_model=list[ChatMessageOut])
def chat_history(
    limit: int = Query(settings.CHAT_HISTORY_LIMIT, ge=1, le=ConversationLog.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
) -> list[ChatMessageOut]:
    rows = ConversationLog(db).list_recent(identity.user_id, limit=limit)
    return [ChatMessageOut.model_validate(row) for row in rows]
