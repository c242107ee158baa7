from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class CreditPackageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    credits: int
    price_cents: int
    description: str
    popular: bool = False
    savings: str | None = None


class PaymentIntentCreate(BaseModel):
    # Left untyped so "5", 1.5 and true reach validate_credit_quantity instead of being coerced.
    credits: Any = None


class PaymentIntentOut(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: int
    credits: int
    currency: str
    mode: str


class ConfirmPaymentIn(BaseModel):
    credits: Any = None
    payment_intent_id: str | None = None


class ConfirmPaymentOut(BaseModel):
    credits_added: int
    remaining_credits: int | None = None
    already_confirmed: bool = False
