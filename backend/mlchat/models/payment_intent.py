from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from mlchat.core.base import Base


class PaymentIntentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ABANDONED = "abandoned"


class PaymentIntentMode(str, Enum):
    STRIPE = "stripe"
    PLACEHOLDER = "placeholder"


class PaymentIntentRecord(Base):
    __tablename__ = "payment_intents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=False, index=True)
    credits = Column(Integer, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False, server_default="usd")
    mode = Column(String(20), nullable=False, server_default=PaymentIntentMode.PLACEHOLDER.value)
    status = Column(String(20), nullable=False, server_default=PaymentIntentStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    profile = relationship("Profile", back_populates="payment_intents")
