from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mlchat.models.chat_message import ChatMessage

logger = logging.getLogger(__name__)

CREDITS_PER_EXCHANGE = 1


@dataclass(frozen=True)
class ChatExchange:
    user_id: str
    message: str
    response: str | None
    credits_used: int = CREDITS_PER_EXCHANGE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConversationLog:
    MAX_PAGE_SIZE = 200

    def __init__(self, db: Session):
        self.db = db

    def append(self, exchange: ChatExchange) -> ChatMessage | None:
        """
        Persist a completed exchange. Durability is best-effort: a failed insert is
        logged and returns None, the caller still delivers the answer.
        """
        row = ChatMessage(
            user_id=exchange.user_id,
            message=exchange.message,
            response=exchange.response,
            credits_used=exchange.credits_used,
            created_at=exchange.created_at,
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("chat_log.append_failed", extra={"user_id": exchange.user_id})
            return None
        return row

    def list_recent(self, user_id: str, limit: int = 50) -> list[ChatMessage]:
        """The most recent ``limit`` exchanges, oldest first."""
        normalized_limit = max(1, min(int(limit or 50), self.MAX_PAGE_SIZE))
        rows = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.user_id == user_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(normalized_limit)
            .all()
        )
        rows.reverse()
        return rows
