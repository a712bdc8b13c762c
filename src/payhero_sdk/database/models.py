"""SQLAlchemy models for payment intents, ledger entries and their audit trail."""

import uuid
import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class IntentStatus(str, enum.Enum):
    """Lifecycle of a payment intent. Everything but PENDING is terminal."""
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self is not IntentStatus.PENDING


class ResolutionSource(str, enum.Enum):
    """Which path produced an intent's final status."""
    CALLBACK = "CALLBACK"
    POLL = "POLL"
    UNRESOLVED = "UNRESOLVED"


class PaymentPurpose(str, enum.Enum):
    """What the collected money pays for; decides the ledger side effect."""
    DEPOSIT = "deposit"
    CARD_PURCHASE = "card_purchase"


class LedgerEntryType(str, enum.Enum):
    DEPOSIT_CREDIT = "deposit_credit"
    CARD_ACTIVATION = "card_activation"


class TransactionAction(str, enum.Enum):
    """Types of events tracked in an intent's history."""
    CREATE = "create"
    INITIATE = "initiate"
    CALLBACK = "callback"
    POLL = "poll"
    DUPLICATE_CALLBACK = "duplicate_callback"
    DUPLICATE_POLL = "duplicate_poll"


class PaymentIntent(Base):
    """One attempt to collect money through the gateway."""
    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=IntentStatus.PENDING.value)
    resolved_via: Mapped[str] = mapped_column(String(20), nullable=False, default=ResolutionSource.UNRESOLVED.value)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    purpose: Mapped[str] = mapped_column(String(30), nullable=False, default=PaymentPurpose.DEPOSIT.value)
    account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="m-pesa")
    provider_checkout_id: Mapped[str] = mapped_column(String(255), nullable=False, default="", index=True)

    # Settlement details reported by the provider
    provider_receipt_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    result_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    result_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_callback_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    transaction_history: Mapped[List["TransactionHistory"]] = relationship(
        "TransactionHistory",
        back_populates="intent",
        cascade="all, delete-orphan",
        order_by="TransactionHistory.created_at.desc()"
    )

    __table_args__ = (
        Index("ix_payment_intents_status_created_at", "status", "created_at"),
        Index("ix_payment_intents_account_id", "account_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return IntentStatus(self.status).is_terminal

    @property
    def raw_callback(self) -> Optional[Dict[str, Any]]:
        """Get the last applied callback payload as dictionary."""
        if self.raw_callback_json:
            return json.loads(self.raw_callback_json)
        return None

    @raw_callback.setter
    def raw_callback(self, value: Optional[Dict[str, Any]]) -> None:
        if value is not None:
            self.raw_callback_json = json.dumps(value)
        else:
            self.raw_callback_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert intent to dictionary representation."""
        return {
            "id": self.id,
            "reference": self.reference,
            "status": self.status,
            "resolved_via": self.resolved_via,
            "amount": self.amount,
            "currency": self.currency,
            "phone_number": self.phone_number,
            "purpose": self.purpose,
            "account_id": self.account_id,
            "provider": self.provider,
            "provider_checkout_id": self.provider_checkout_id,
            "provider_receipt_number": self.provider_receipt_number,
            "result_code": self.result_code,
            "result_description": self.result_description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


class LedgerEntry(Base):
    """Balance-affecting side effect of a settled intent. At most one per reference."""
    __tablename__ = "ledger_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reference: Mapped[str] = mapped_column(
        String(64), ForeignKey("payment_intents.reference"), nullable=False, unique=True
    )
    account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reference": self.reference,
            "account_id": self.account_id,
            "entry_type": self.entry_type,
            "amount": self.amount,
            "currency": self.currency,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TransactionHistory(Base):
    """Append-only record of every event seen for an intent."""
    __tablename__ = "transaction_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    intent_id: Mapped[str] = mapped_column(String(36), ForeignKey("payment_intents.id"), nullable=False, index=True)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    provider_response_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    intent: Mapped["PaymentIntent"] = relationship("PaymentIntent", back_populates="transaction_history")

    __table_args__ = (
        Index("ix_transaction_history_action", "action"),
        Index("ix_transaction_history_created_at", "created_at"),
    )

    @property
    def action_metadata(self) -> Optional[Dict[str, Any]]:
        if self.action_metadata_json:
            return json.loads(self.action_metadata_json)
        return None

    @action_metadata.setter
    def action_metadata(self, value: Optional[Dict[str, Any]]) -> None:
        if value is not None:
            self.action_metadata_json = json.dumps(value, default=str)
        else:
            self.action_metadata_json = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "intent_id": self.intent_id,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "amount": self.amount,
            "provider_response_code": self.provider_response_code,
            "error_message": self.error_message,
            "action_metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
