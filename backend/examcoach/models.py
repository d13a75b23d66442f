# examcoach/models.py
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class AccountStatus(str, enum.Enum):
    UNREGISTERED = "unregistered"
    TRIAL = "trial"
    TRIAL_ENDED = "trial_ended"
    PAID = "paid"


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Identity keys. Uniqueness is enforced here as well as by DuplicateGuard,
    # so a lost check/create race still fails at insert.
    phone_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, index=True, nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Both null when no password is set.
    credential_hash: Mapped[bytes | None] = mapped_column(LargeBinary(64), nullable=True)
    credential_salt: Mapped[bytes | None] = mapped_column(LargeBinary(64), nullable=True)

    # Display cache of AccessPolicy's last answer. Never read to decide access.
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AccountStatus.UNREGISTERED.value)

    # Set together on first identity verification, never re-armed.
    trial_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Written only by WebhookProcessor.
    last_payment_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_paid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    amount_paid_minor_units: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    payments = relationship("AppliedPayment", back_populates="account", order_by="AppliedPayment.applied_at")

    @property
    def has_password(self) -> bool:
        return bool(self.credential_hash) and bool(self.credential_salt)


class AppliedPayment(Base):
    """
    Ledger of payment references already applied to an account.
    The unique reference makes a re-delivered webhook a no-op even when a
    newer payment has since replaced Account.payment_reference.
    """

    __tablename__ = "applied_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)

    amount_minor_units: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False, default="webhook")
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    account = relationship("Account", back_populates="payments")
