from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from mlchat.auth.identity import Identity
from mlchat.auth.supabase import SupabaseAuthError
from mlchat.dependencies.auth import get_current_identity
from mlchat.dependencies.services import get_confirmation_handler, get_payment_issuer
from mlchat.schemas.billing import (
    ConfirmPaymentIn,
    ConfirmPaymentOut,
    CreditPackageOut,
    PaymentIntentCreate,
    PaymentIntentOut,
)
from mlchat.services.payments import (
    CREDIT_PACKAGES,
    InvalidCreditQuantityError,
    PaymentConfirmationError,
    PaymentConfirmationHandler,
    PaymentIntentIssueError,
    PaymentIntentIssuer,
)
from mlchat.services.stripe import StripeServiceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


@router.get("/credit-packages", response_model=list[CreditPackageOut])
def list_credit_packages() -> list[CreditPackageOut]:
    return [CreditPackageOut.model_validate(package) for package in CREDIT_PACKAGES]


@router.post("/create-payment-intent", response_model=PaymentIntentOut)
def create_payment_intent(
    payload: PaymentIntentCreate,
    identity: Identity = Depends(get_current_identity),
    issuer: PaymentIntentIssuer = Depends(get_payment_issuer),
) -> PaymentIntentOut:
    try:
        handle = issuer.create_intent(identity, payload.credits)
    except SupabaseAuthError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from None
    except InvalidCreditQuantityError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except (StripeServiceError, PaymentIntentIssueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create payment intent",
        ) from exc

    return PaymentIntentOut(
        client_secret=handle.client_secret,
        payment_intent_id=handle.payment_intent_id,
        amount=handle.amount,
        credits=handle.credits,
        currency=handle.currency,
        mode=handle.mode,
    )


@router.post("/confirm-payment", response_model=ConfirmPaymentOut)
def confirm_payment(
    payload: ConfirmPaymentIn,
    identity: Identity = Depends(get_current_identity),
    handler: PaymentConfirmationHandler = Depends(get_confirmation_handler),
) -> ConfirmPaymentOut:
    try:
        result = handler.confirm(identity, payload.credits, payment_intent_id=payload.payment_intent_id)
    except SupabaseAuthError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from None
    except (InvalidCreditQuantityError, PaymentConfirmationError) as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except StripeServiceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to confirm payment",
        ) from exc

    return ConfirmPaymentOut(
        credits_added=result.credits_added,
        remaining_credits=result.balance,
        already_confirmed=result.already_confirmed,
    )
