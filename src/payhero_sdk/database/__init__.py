"""Persistence for payment intents, ledger entries and their history."""

from .models import (
    PaymentIntent,
    LedgerEntry,
    TransactionHistory,
    Base,
    IntentStatus,
    ResolutionSource,
    PaymentPurpose,
    LedgerEntryType,
    TransactionAction,
    utcnow,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    get_db_context,
)
from .repository import (
    PaymentIntentRepository,
    LedgerRepository,
    TransactionHistoryRepository,
)

__all__ = [
    # Models
    "PaymentIntent",
    "LedgerEntry",
    "TransactionHistory",
    "Base",
    "IntentStatus",
    "ResolutionSource",
    "PaymentPurpose",
    "LedgerEntryType",
    "TransactionAction",
    "utcnow",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "PaymentIntentRepository",
    "LedgerRepository",
    "TransactionHistoryRepository",
]
