# mlchat/models/profile.py
from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from mlchat.core.base import Base


class Profile(Base):
    __tablename__ = "profiles"

    # Supabase auth user id (uuid), assigned by the identity provider at signup.
    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    credits = Column(Integer, nullable=False, server_default="0", default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    chat_messages = relationship(
        "ChatMessage",
        back_populates="profile",
        cascade="all, delete-orphan",
    )
    payment_intents = relationship(
        "PaymentIntentRecord",
        back_populates="profile",
        cascade="all, delete-orphan",
    )

    __table_args__ = (CheckConstraint("credits >= 0", name="ck_profiles_credits_non_negative"),)
