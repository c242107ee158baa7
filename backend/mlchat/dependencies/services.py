from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from mlchat.core.config import settings
from mlchat.core.database import get_db
from mlchat.services.chat import ChatOrchestrator
from mlchat.services.gemini_client import GeminiClient
from mlchat.services.generation import TextGenerator
from mlchat.services.openai_client import OpenAIGenerationClient
from mlchat.services.payments import PaymentConfirmationHandler, PaymentIntentIssuer
from mlchat.services.stripe import StripeService


def get_text_generator() -> TextGenerator:
    if settings.GENERATION_PROVIDER == "openai":
        return OpenAIGenerationClient()
    return GeminiClient()


def get_stripe_service() -> StripeService:
    return StripeService()


def get_chat_orchestrator(
    db: Session = Depends(get_db),
    generator: TextGenerator = Depends(get_text_generator),
) -> ChatOrchestrator:
    return ChatOrchestrator(db, generator=generator)


def get_payment_issuer(
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> PaymentIntentIssuer:
    return PaymentIntentIssuer(db, stripe_service=stripe_service)


def get_confirmation_handler(
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> PaymentConfirmationHandler:
    return PaymentConfirmationHandler(db, stripe_service=stripe_service)
