from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from mlchat.dependencies.services import get_confirmation_handler, get_stripe_service
from mlchat.services.payments import PaymentConfirmationError, PaymentConfirmationHandler
from mlchat.services.stripe import StripeService, StripeServiceError, StripeWebhookError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


@router.post("/stripe-webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    handler: PaymentConfirmationHandler = Depends(get_confirmation_handler),
) -> dict[str, bool]:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = stripe_service.parse_event(payload, signature)
        credits_applied = handler.process_event(event)
    except StripeWebhookError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PaymentConfirmationError as exc:
        # Ownership or quantity mismatch; redelivery cannot fix it.
        logger.error("Stripe webhook rejected: %s", exc)
        return {"received": True, "credits_applied": False}
    except StripeServiceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to apply payment",
        ) from exc

    return {"received": True, "credits_applied": credits_applied}
