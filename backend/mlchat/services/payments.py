from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from mlchat.auth.identity import Identity
from mlchat.auth.supabase import SupabaseAuthError
from mlchat.core.config import settings
from mlchat.models.payment_intent import PaymentIntentMode, PaymentIntentRecord, PaymentIntentStatus
from mlchat.services.credits import CreditLedger, ProfileNotFoundError
from mlchat.services.stripe import StripeService, StripeServiceError

logger = logging.getLogger(__name__)

ABANDON_EVENT_TYPES = frozenset({"payment_intent.canceled", "payment_intent.payment_failed"})


@dataclass(frozen=True)
class CreditPackage:
    credits: int
    price_cents: int
    description: str
    popular: bool = False
    savings: str | None = None


# Offers shown by the front end. The server accepts any positive quantity.
CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(credits=10, price_cents=500, description="10 questions"),
    CreditPackage(credits=50, price_cents=2000, description="50 questions", popular=True, savings="Save 20%"),
    CreditPackage(credits=100, price_cents=3500, description="100 questions", savings="Save 30%"),
    CreditPackage(credits=500, price_cents=15000, description="500 questions", savings="Save 40%"),
)


class InvalidCreditQuantityError(ValueError):
    pass


class PaymentConfirmationError(Exception):
    pass


class PaymentIntentIssueError(Exception):
    pass


def validate_credit_quantity(value: Any) -> int:
    """Accept a positive integer (or an integral float such as ``5.0``)."""
    if isinstance(value, bool):
        raise InvalidCreditQuantityError("Invalid credit amount")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise InvalidCreditQuantityError("Invalid credit amount")
    return value


def _require_user_id(identity: Identity) -> str:
    if not identity.is_authenticated or not identity.user_id:
        raise SupabaseAuthError("Invalid token")
    return identity.user_id


@dataclass(frozen=True)
class PaymentIntentHandle:
    client_secret: str
    payment_intent_id: str
    amount: int
    credits: int
    currency: str
    mode: str


@dataclass(frozen=True)
class ConfirmationResult:
    credits_added: int
    balance: int | None
    payment_intent_id: str | None
    already_confirmed: bool = False


class PaymentIntentIssuer:
    """
    Turns a requested credit quantity into a payment intent.

    With a Stripe secret key configured the intent is created at Stripe; without
    one a placeholder handle is synthesized so the purchase flow works end to
    end with no processor.
    """

    def __init__(
        self,
        db: Session,
        *,
        stripe_service: StripeService | None = None,
        unit_price_cents: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.db = db
        self.stripe = stripe_service or StripeService()
        self.unit_price_cents = unit_price_cents or settings.CREDIT_UNIT_PRICE_CENTS
        self._clock = clock or time.time

    def create_intent(self, identity: Identity, requested_credits: Any) -> PaymentIntentHandle:
        user_id = _require_user_id(identity)
        credits = validate_credit_quantity(requested_credits)
        amount = credits * self.unit_price_cents

        if self.stripe.configured:
            intent = self.stripe.create_payment_intent(
                amount_cents=amount,
                credits=credits,
                user_id=user_id,
                email=identity.email,
            )
            handle = PaymentIntentHandle(
                client_secret=intent["client_secret"],
                payment_intent_id=intent["id"],
                amount=amount,
                credits=credits,
                currency=self.stripe.currency,
                mode=PaymentIntentMode.STRIPE.value,
            )
        else:
            logger.info("STRIPE_SECRET_KEY not configured, issuing placeholder intent for user %s", user_id)
            millis = int(self._clock() * 1000)
            handle = PaymentIntentHandle(
                client_secret=f"pi_test_{millis}_{user_id}",
                payment_intent_id=f"pi_test_{millis}_{uuid.uuid4().hex}",
                amount=amount,
                credits=credits,
                currency=self.stripe.currency,
                mode=PaymentIntentMode.PLACEHOLDER.value,
            )

        self._record(user_id, handle)
        return handle

    def _record(self, user_id: str, handle: PaymentIntentHandle) -> None:
        record = PaymentIntentRecord(
            user_id=user_id,
            stripe_payment_intent_id=handle.payment_intent_id,
            credits=handle.credits,
            amount_cents=handle.amount,
            currency=handle.currency,
            mode=handle.mode,
            status=PaymentIntentStatus.PENDING.value,
        )
        try:
            self.db.add(record)
            self.db.commit()
        except IntegrityError as exc:
            # Another issuance already holds this id.
            self.db.rollback()
            logger.exception("payments.intent_id_conflict", extra={"payment_intent_id": handle.payment_intent_id})
            raise PaymentIntentIssueError("Failed to create payment intent") from exc
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("payments.intent_record_failed", extra={"payment_intent_id": handle.payment_intent_id})


class PaymentConfirmationHandler:
    """
    Applies purchased credits to the ledger.

    Confirmations that carry a payment intent id are applied at most once per
    intent: the intent row is marked confirmed and the ledger incremented in the
    same transaction. A placeholder-mode confirmation without an intent id has
    no idempotency guard and credits on every call.
    """

    def __init__(
        self,
        db: Session,
        *,
        ledger: CreditLedger | None = None,
        stripe_service: StripeService | None = None,
    ) -> None:
        self.db = db
        self.ledger = ledger or CreditLedger(db)
        self.stripe = stripe_service or StripeService()

    def confirm(
        self,
        identity: Identity,
        credits: Any = None,
        *,
        payment_intent_id: str | None = None,
    ) -> ConfirmationResult:
        user_id = _require_user_id(identity)
        intent_id = (payment_intent_id or "").strip() or None

        if self.stripe.configured:
            return self._confirm_with_processor(user_id, intent_id)

        quantity = validate_credit_quantity(credits)
        if intent_id:
            return self._confirm_intent(
                user_id=user_id,
                credits=quantity,
                payment_intent_id=intent_id,
                mode=PaymentIntentMode.PLACEHOLDER.value,
            )

        logger.warning("payments.confirm_without_intent", extra={"user_id": user_id, "credits": quantity})
        balance = self.ledger.increment(user_id, quantity)
        return ConfirmationResult(
            credits_added=quantity if balance is not None else 0,
            balance=balance,
            payment_intent_id=None,
        )

    def process_event(self, event: Any) -> bool:
        """
        Apply a verified Stripe event. Returns True if credits were added.

        Store failures propagate so the endpoint answers 5xx and Stripe redelivers.
        """
        event_type = event.get("type")
        intent = (event.get("data") or {}).get("object") or {}

        if event_type == "payment_intent.succeeded":
            metadata = intent.get("metadata") or {}
            user_id = metadata.get("user_id")
            credits_raw = metadata.get("credits")
            if not user_id or credits_raw is None or not intent.get("id"):
                raise StripeServiceError("Payment intent missing required metadata")
            try:
                credits = validate_credit_quantity(int(credits_raw))
            except (TypeError, ValueError) as exc:
                raise StripeServiceError("Payment intent metadata malformed") from exc

            result = self._confirm_intent(
                user_id=user_id,
                credits=credits,
                payment_intent_id=intent["id"],
                amount_cents=intent.get("amount"),
                mode=PaymentIntentMode.STRIPE.value,
                raise_on_store_error=True,
            )
            return result.credits_added > 0

        if event_type in ABANDON_EVENT_TYPES:
            self._mark_abandoned(intent.get("id"))
            return False

        logger.info("Ignoring unsupported Stripe event type: %s", event_type)
        return False

    def _confirm_with_processor(self, user_id: str, intent_id: str | None) -> ConfirmationResult:
        if not intent_id:
            raise PaymentConfirmationError("payment_intent_id is required")

        intent = self.stripe.retrieve_payment_intent(intent_id)
        if intent.get("status") != "succeeded":
            raise PaymentConfirmationError("Payment has not succeeded")

        metadata = intent.get("metadata") or {}
        if metadata.get("user_id") != user_id:
            raise PaymentConfirmationError("Payment intent does not belong to this user")
        try:
            credits = validate_credit_quantity(int(metadata.get("credits")))
        except (TypeError, ValueError) as exc:
            raise PaymentConfirmationError("Payment intent metadata malformed") from exc

        return self._confirm_intent(
            user_id=user_id,
            credits=credits,
            payment_intent_id=intent_id,
            amount_cents=intent.get("amount"),
            mode=PaymentIntentMode.STRIPE.value,
        )

    def _confirm_intent(
        self,
        *,
        user_id: str,
        credits: int,
        payment_intent_id: str,
        mode: str,
        amount_cents: int | None = None,
        raise_on_store_error: bool = False,
    ) -> ConfirmationResult:
        try:
            record = (
                self.db.query(PaymentIntentRecord)
                .filter(PaymentIntentRecord.stripe_payment_intent_id == payment_intent_id)
                .with_for_update()
                .first()
            )
            if record is None:
                record = PaymentIntentRecord(
                    user_id=user_id,
                    stripe_payment_intent_id=payment_intent_id,
                    credits=credits,
                    amount_cents=amount_cents or credits * settings.CREDIT_UNIT_PRICE_CENTS,
                    currency=settings.STRIPE_DEFAULT_CURRENCY,
                    mode=mode,
                    status=PaymentIntentStatus.PENDING.value,
                )
                self.db.add(record)
                self.db.flush()

            if record.user_id != user_id:
                self.db.rollback()
                raise PaymentConfirmationError("Payment intent does not belong to this user")
            if record.status == PaymentIntentStatus.CONFIRMED.value:
                self.db.rollback()
                logger.info("Payment intent %s already confirmed; skipping", payment_intent_id)
                return self._already_confirmed(user_id, payment_intent_id)
            if record.credits != credits:
                self.db.rollback()
                raise PaymentConfirmationError("Credit quantity does not match the payment intent")

            record.status = PaymentIntentStatus.CONFIRMED.value
            record.confirmed_at = datetime.now(timezone.utc)
            balance = self.ledger.credit(user_id, credits, commit=False)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self._is_confirmed(payment_intent_id):
                # A concurrent confirmation inserted the same intent first.
                logger.info("Payment intent %s confirmed concurrently; skipping", payment_intent_id)
                return self._already_confirmed(user_id, payment_intent_id)
            logger.exception("payments.confirm_failed", extra={"user_id": user_id, "payment_intent_id": payment_intent_id})
            return ConfirmationResult(credits_added=0, balance=None, payment_intent_id=payment_intent_id)
        except (SQLAlchemyError, ProfileNotFoundError) as exc:
            self.db.rollback()
            logger.exception(
                "payments.confirm_failed",
                extra={"user_id": user_id, "payment_intent_id": payment_intent_id, "credits": credits},
            )
            if raise_on_store_error and not isinstance(exc, ProfileNotFoundError):
                raise
            return ConfirmationResult(credits_added=0, balance=None, payment_intent_id=payment_intent_id)

        logger.info(
            "payments.confirmed",
            extra={"user_id": user_id, "payment_intent_id": payment_intent_id, "credits": credits, "balance": balance},
        )
        return ConfirmationResult(credits_added=credits, balance=balance, payment_intent_id=payment_intent_id)

    def _is_confirmed(self, payment_intent_id: str) -> bool:
        status = (
            self.db.query(PaymentIntentRecord.status)
            .filter(PaymentIntentRecord.stripe_payment_intent_id == payment_intent_id)
            .scalar()
        )
        return status == PaymentIntentStatus.CONFIRMED.value

    def _already_confirmed(self, user_id: str, payment_intent_id: str) -> ConfirmationResult:
        try:
            balance = self.ledger.get_balance(user_id)
        except ProfileNotFoundError:
            balance = None
        return ConfirmationResult(
            credits_added=0,
            balance=balance,
            payment_intent_id=payment_intent_id,
            already_confirmed=True,
        )

    def _mark_abandoned(self, payment_intent_id: str | None) -> None:
        if not payment_intent_id:
            return
        record = (
            self.db.query(PaymentIntentRecord)
            .filter(PaymentIntentRecord.stripe_payment_intent_id == payment_intent_id)
            .with_for_update()
            .first()
        )
        if record is None or record.status != PaymentIntentStatus.PENDING.value:
            self.db.rollback()
            return
        record.status = PaymentIntentStatus.ABANDONED.value
        self.db.commit()
        logger.info("Payment intent %s abandoned", payment_intent_id)
