from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mlchat.models.profile import Profile

logger = logging.getLogger(__name__)

NO_CREDITS_MESSAGE = "No credits left. Please purchase more credits to continue."


class InsufficientCreditsError(Exception):
    pass


class ProfileNotFoundError(Exception):
    pass


class CreditLedger:
    """
    Accessor for the per-user integer credit balance stored on ``profiles.credits``.

    Every mutation is a single conditional UPDATE ... RETURNING, so concurrent
    requests can never drive a balance below zero. The strict methods
    (``try_debit``, ``claim``, ``credit``) raise on store failure; the
    best-effort methods (``decrement``, ``increment``, ``refund``) log and
    return ``None`` so a response that was already produced is never lost.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, user_id: str) -> int:
        balance = self.db.execute(select(Profile.credits).where(Profile.id == user_id)).scalar_one_or_none()
        if balance is None:
            raise ProfileNotFoundError("Profile not found")
        return int(balance)

    # --- Strict operations ---

    def try_debit(self, user_id: str, amount: int = 1, *, commit: bool = True) -> int | None:
        """Subtract ``amount`` if the balance covers it. Returns the new balance or None."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        return self._apply_delta(user_id, -amount, commit=commit)

    def claim(self, user_id: str, amount: int = 1) -> int:
        """Take ``amount`` credits up front, before a paid call is made."""
        new_balance = self.try_debit(user_id, amount)
        if new_balance is None:
            raise InsufficientCreditsError(NO_CREDITS_MESSAGE)
        return new_balance

    def credit(self, user_id: str, amount: int, *, commit: bool = True) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        new_balance = self._apply_delta(user_id, amount, commit=commit)
        if new_balance is None:
            raise ProfileNotFoundError("Profile not found")
        return new_balance

    # --- Best-effort operations ---

    def decrement(self, user_id: str, amount: int = 1) -> int | None:
        try:
            new_balance = self.try_debit(user_id, amount)
        except SQLAlchemyError:
            logger.exception("credits.decrement_failed", extra={"user_id": user_id, "amount": amount})
            return None
        if new_balance is None:
            # Another request spent the last credit between the check and this charge.
            logger.warning("credits.decrement_skipped_at_floor", extra={"user_id": user_id, "amount": amount})
        return new_balance

    def increment(self, user_id: str, amount: int) -> int | None:
        try:
            return self.credit(user_id, amount)
        except (SQLAlchemyError, ProfileNotFoundError):
            logger.exception("credits.increment_failed", extra={"user_id": user_id, "amount": amount})
            return None

    def refund(self, user_id: str, amount: int = 1, *, reason: str | None = None) -> int | None:
        logger.info("credits.refund", extra={"user_id": user_id, "amount": amount, "reason": reason})
        return self.increment(user_id, amount)

    def _apply_delta(self, user_id: str, delta: int, *, commit: bool) -> int | None:
        stmt = update(Profile).where(Profile.id == user_id)
        if delta < 0:
            stmt = stmt.where(Profile.credits >= -delta)
        stmt = (
            stmt.values(credits=Profile.credits + delta, updated_at=func.now())
            .returning(Profile.credits)
            .execution_options(synchronize_session=False)
        )
        try:
            new_balance = self.db.execute(stmt).scalar_one_or_none()
            if commit:
                self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return int(new_balance) if new_balance is not None else None
