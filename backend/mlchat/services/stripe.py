from __future__ import annotations

import logging
from typing import Any

import stripe

from mlchat.core.config import settings

logger = logging.getLogger(__name__)


class StripeServiceError(Exception):
    """Base error for Stripe service operations."""


class StripeWebhookError(StripeServiceError):
    """Raised when a webhook payload cannot be verified."""


class StripeService:
    """
    Stripe integration facade. All direct Stripe SDK calls live here.

    Responsibilities:
    - Create payment intents for prepaid credit purchases
    - Retrieve intents so client-side confirmations can be checked server-side
    - Verify and deserialize webhook events
    """

    def __init__(self, stripe_client: Any | None = None, *, secret_key: str | None = None):
        self.secret_key = settings.STRIPE_SECRET_KEY if secret_key is None else secret_key
        self.currency = settings.STRIPE_DEFAULT_CURRENCY or "usd"
        self.stripe = stripe_client or stripe
        if self.secret_key:
            self.stripe.api_key = self.secret_key

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        credits: int,
        user_id: str,
        email: str | None,
    ) -> Any:
        self._require_configured()
        metadata = {
            "user_id": user_id,
            "email": email or "",
            "credits": str(credits),
            "environment": settings.ENV,
        }
        logger.info("Creating Stripe payment intent: user=%s credits=%s amount=%s", user_id, credits, amount_cents)
        try:
            intent = self.stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.currency,
                description=f"{credits} AI Chat Credits",
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except Exception as exc:
            logger.exception("Stripe payment intent creation failed for user %s", user_id)
            raise StripeServiceError("Failed to create payment intent") from exc

        if not intent.get("id") or not intent.get("client_secret"):
            raise StripeServiceError("Stripe did not return a payment intent")
        return intent

    def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        self._require_configured()
        try:
            return self.stripe.PaymentIntent.retrieve(payment_intent_id)
        except Exception as exc:
            logger.exception("Stripe payment intent lookup failed for %s", payment_intent_id)
            raise StripeServiceError("Failed to retrieve payment intent") from exc

    def parse_event(self, payload: bytes, signature: str | None) -> Any:
        """Validate webhook signature and deserialize the event."""
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise StripeWebhookError("Stripe webhook secret is not configured")
        if not signature:
            raise StripeWebhookError("Missing Stripe-Signature header")
        try:
            return self.stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=settings.STRIPE_WEBHOOK_SECRET,
            )
        except ValueError as exc:
            raise StripeWebhookError("Invalid Stripe payload") from exc
        except self.stripe.SignatureVerificationError as exc:
            raise StripeWebhookError(f"Invalid Stripe signature: {exc}") from exc

    def _require_configured(self) -> None:
        if not self.configured:
            raise StripeServiceError("Stripe secret key is not configured")
