from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from mlchat.auth.identity import Identity
from mlchat.auth.supabase import SupabaseAuthError
from mlchat.core.config import settings
from mlchat.services.conversation_log import CREDITS_PER_EXCHANGE, ChatExchange, ConversationLog
from mlchat.services.credits import NO_CREDITS_MESSAGE, CreditLedger, InsufficientCreditsError
from mlchat.services.generation import GenerationError, TextGenerator
from mlchat.services.topic_filter import OUT_OF_SCOPE_MESSAGE, TopicFilter

logger = logging.getLogger(__name__)

CHARGE_MODE_RESERVE = "reserve"
CHARGE_MODE_POST_CHARGE = "post_charge"


class InvalidMessageError(ValueError):
    pass


class OutOfScopeError(Exception):
    def __init__(self, message: str = OUT_OF_SCOPE_MESSAGE) -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ChatResult:
    request_id: str
    response_text: str
    remaining_credits: int
    message_id: str | None


class ChatOrchestrator:
    """
    One chat request/response cycle:

        authenticate -> validate -> balance check -> topic check
        -> charge + generate -> persist -> respond

    Any failure short-circuits; nothing after it runs. A credit is taken if and
    only if a response was produced.

    ``reserve`` mode claims the credit with an atomic conditional decrement just
    before the paid call and refunds it if generation fails, so concurrent
    requests cannot overspend. ``post_charge`` mode charges after generation
    and reports ``balance_before - 1`` without re-reading the store.
    """

    def __init__(
        self,
        db: Session,
        *,
        generator: TextGenerator,
        ledger: CreditLedger | None = None,
        conversation_log: ConversationLog | None = None,
        topic_filter: TopicFilter | None = None,
        charge_mode: str | None = None,
    ) -> None:
        self.db = db
        self.generator = generator
        self.ledger = ledger or CreditLedger(db)
        self.conversation_log = conversation_log or ConversationLog(db)
        self.topic_filter = topic_filter or TopicFilter()
        self.charge_mode = charge_mode or settings.CREDIT_CHARGE_MODE
        self.max_input_chars = settings.CHAT_MAX_INPUT_CHARS
        if self.charge_mode not in {CHARGE_MODE_RESERVE, CHARGE_MODE_POST_CHARGE}:
            raise ValueError(f"Unknown charge mode: {self.charge_mode}")

    def handle(self, identity: Identity, message: str | None, *, request_id: str | None = None) -> ChatResult:
        request_key = request_id or uuid.uuid4().hex

        if not identity.is_authenticated or not identity.user_id:
            raise SupabaseAuthError("Invalid token")
        user_id = identity.user_id

        text = (message or "").strip()
        if not text:
            raise InvalidMessageError("Message is required")
        if len(text) > self.max_input_chars:
            raise InvalidMessageError("Message exceeds the maximum allowed length.")

        # Balance is checked before the topic filter, so a user with no credits
        # sees "no credits" even for an out-of-scope question.
        balance = self.ledger.get_balance(user_id)
        if balance <= 0:
            logger.info("chat.refused_no_credits", extra={"user_id": user_id, "request_id": request_key})
            raise InsufficientCreditsError(NO_CREDITS_MESSAGE)

        if not self.topic_filter.is_in_scope(text):
            logger.info("chat.refused_out_of_scope", extra={"user_id": user_id, "request_id": request_key})
            raise OutOfScopeError()

        if self.charge_mode == CHARGE_MODE_RESERVE:
            response_text, remaining = self._reserve_and_generate(user_id, text, request_key)
        else:
            response_text, remaining = self._generate_then_charge(user_id, text, balance, request_key)

        saved = self.conversation_log.append(
            ChatExchange(
                user_id=user_id,
                message=message,
                response=response_text,
                credits_used=CREDITS_PER_EXCHANGE,
            )
        )

        logger.info(
            "chat.completed",
            extra={
                "user_id": user_id,
                "request_id": request_key,
                "remaining_credits": remaining,
                "persisted": saved is not None,
            },
        )
        return ChatResult(
            request_id=request_key,
            response_text=response_text,
            remaining_credits=remaining,
            message_id=saved.id if saved is not None else None,
        )

    def _reserve_and_generate(self, user_id: str, text: str, request_key: str) -> tuple[str, int]:
        remaining = self.ledger.claim(user_id, CREDITS_PER_EXCHANGE)
        try:
            response_text = self.generator.generate(text, request_id=request_key)
        except GenerationError:
            logger.exception("Generation failed for request_id=%s", request_key)
            self.ledger.refund(user_id, CREDITS_PER_EXCHANGE, reason="generation failed")
            raise
        return response_text, remaining

    def _generate_then_charge(self, user_id: str, text: str, balance: int, request_key: str) -> tuple[str, int]:
        try:
            response_text = self.generator.generate(text, request_id=request_key)
        except GenerationError:
            logger.exception("Generation failed for request_id=%s", request_key)
            raise
        # Best-effort; a failed charge does not take back a delivered answer.
        self.ledger.decrement(user_id, CREDITS_PER_EXCHANGE)
        return response_text, balance - CREDITS_PER_EXCHANGE
