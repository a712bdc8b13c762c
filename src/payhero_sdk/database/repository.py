"""Repository layer for intent, ledger and history persistence."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    PaymentIntent,
    LedgerEntry,
    TransactionHistory,
    IntentStatus,
    ResolutionSource,
    PaymentPurpose,
    utcnow,
)

logger = logging.getLogger(__name__)


class PaymentIntentRepository:
    """Repository for PaymentIntent persistence and the PENDING -> terminal guard."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        reference: str,
        amount: int,
        phone_number: str,
        purpose: str = PaymentPurpose.DEPOSIT.value,
        account_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        provider: str = "m-pesa",
        currency: str = "KES",
    ) -> PaymentIntent:
        """Persist a new PENDING intent.

        Args:
            reference: Locally generated correlation id.
            amount: Whole-unit amount to collect.
            phone_number: Canonical local phone number.
            purpose: What the payment is for (deposit or card purchase).
            account_id: Account credited on success.
            customer_name: Optional name shown on the STK prompt.
            provider: Mobile-money provider name.
            currency: Three-letter currency code.

        Returns:
            Created PaymentIntent instance.

        Raises:
            sqlalchemy.exc.IntegrityError: If the reference already exists.
        """
        intent = PaymentIntent(
            reference=reference,
            amount=amount,
            phone_number=phone_number,
            purpose=purpose,
            account_id=account_id,
            customer_name=customer_name,
            provider=provider,
            currency=currency.upper(),
            status=IntentStatus.PENDING.value,
            resolved_via=ResolutionSource.UNRESOLVED.value,
            provider_checkout_id="",
        )
        self.session.add(intent)
        await self.session.flush()

        logger.info(f"Created payment intent {reference} for {amount} {intent.currency}")
        return intent

    async def get_by_reference(self, reference: str) -> Optional[PaymentIntent]:
        """Load an intent by reference, always re-reading the stored row."""
        result = await self.session.execute(
            select(PaymentIntent)
            .where(PaymentIntent.reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_checkout_id(self, checkout_id: str) -> Optional[PaymentIntent]:
        result = await self.session.execute(
            select(PaymentIntent).where(PaymentIntent.provider_checkout_id == checkout_id)
        )
        return result.scalars().first()

    async def record_checkout_id(self, intent: PaymentIntent, checkout_id: str) -> PaymentIntent:
        """Store the provider checkout id of a still-pending intent."""
        intent.provider_checkout_id = checkout_id
        intent.updated_at = utcnow()
        await self.session.flush()
        return intent

    async def transition_from_pending(
        self,
        reference: str,
        new_status: IntentStatus,
        resolved_via: ResolutionSource,
        provider_receipt_number: Optional[str] = None,
        result_code: Optional[int] = None,
        result_description: Optional[str] = None,
        raw_callback_json: Optional[str] = None,
    ) -> bool:
        """Move an intent out of PENDING, exactly once.

        Issues a conditional UPDATE that only matches while the row is still
        PENDING; concurrent resolvers race on the row lock and all but one see
        zero affected rows.

        Returns:
            True if this call performed the transition.
        """
        if not new_status.is_terminal:
            raise ValueError(f"{new_status.value} is not a terminal status")

        await self.session.flush()
        now = utcnow()
        values: Dict[str, Any] = {
            "status": new_status.value,
            "resolved_via": resolved_via.value,
            "resolved_at": now,
            "updated_at": now,
        }
        if provider_receipt_number is not None:
            values["provider_receipt_number"] = provider_receipt_number
        if result_code is not None:
            values["result_code"] = result_code
        if result_description is not None:
            values["result_description"] = result_description
        if raw_callback_json is not None:
            values["raw_callback_json"] = raw_callback_json

        result = await self.session.execute(
            update(PaymentIntent)
            .where(
                and_(
                    PaymentIntent.reference == reference,
                    PaymentIntent.status == IntentStatus.PENDING.value,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won:
            logger.info(f"Intent {reference} resolved to {new_status.value} via {resolved_via.value}")
        return won

    async def list_pending_older_than(
        self,
        cutoff: datetime,
        limit: int = 100,
    ) -> List[PaymentIntent]:
        """List PENDING intents created at or before ``cutoff``, oldest first."""
        result = await self.session.execute(
            select(PaymentIntent)
            .where(
                and_(
                    PaymentIntent.status == IntentStatus.PENDING.value,
                    PaymentIntent.created_at <= cutoff,
                )
            )
            .order_by(PaymentIntent.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def has_pending(self, account_id: str, purpose: str) -> bool:
        """Whether the account has a PENDING intent for ``purpose``."""
        result = await self.session.execute(
            select(PaymentIntent.id)
            .where(
                and_(
                    PaymentIntent.account_id == account_id,
                    PaymentIntent.purpose == purpose,
                    PaymentIntent.status == IntentStatus.PENDING.value,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_by_account(
        self,
        account_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PaymentIntent]:
        result = await self.session.execute(
            select(PaymentIntent)
            .where(PaymentIntent.account_id == account_id)
            .order_by(PaymentIntent.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


class LedgerRepository:
    """Repository for ledger side effects, keyed by intent reference."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_reference(self, reference: str) -> Optional[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry).where(LedgerEntry.reference == reference)
        )
        return result.scalar_one_or_none()

    async def apply_once(
        self,
        reference: str,
        entry_type: str,
        amount: int,
        account_id: Optional[str] = None,
        currency: str = "KES",
    ) -> Optional[LedgerEntry]:
        """Record the side effect for ``reference`` unless one already exists.

        The insert runs in a savepoint so that losing a race on the unique
        reference constraint leaves the surrounding transaction usable.

        Returns:
            The new LedgerEntry, or None if the reference was already applied.
        """
        if await self.get_by_reference(reference) is not None:
            logger.warning(f"Ledger entry for {reference} already exists, skipping")
            return None

        entry = LedgerEntry(
            reference=reference,
            entry_type=entry_type,
            amount=amount,
            account_id=account_id,
            currency=currency,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(entry)
        except IntegrityError:
            logger.warning(f"Concurrent ledger entry for {reference} detected, skipping")
            return None

        logger.info(f"Applied {entry_type} of {amount} {currency} for {reference}")
        return entry

    async def list_by_account(self, account_id: str, limit: int = 100) -> List[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def total_for_account(self, account_id: str, entry_type: Optional[str] = None) -> int:
        """Sum of ledger amounts for an account, optionally for one entry type."""
        conditions = [LedgerEntry.account_id == account_id]
        if entry_type:
            conditions.append(LedgerEntry.entry_type == entry_type)
        result = await self.session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(and_(*conditions))
        )
        return int(result.scalar_one())


class TransactionHistoryRepository:
    """Repository for the intent audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        intent_id: str,
        action: str,
        new_status: str,
        previous_status: Optional[str] = None,
        amount: Optional[int] = None,
        provider_response_code: Optional[str] = None,
        error_message: Optional[str] = None,
        action_metadata: Optional[Dict[str, Any]] = None,
    ) -> TransactionHistory:
        """Append a history record for an intent.

        Args:
            intent_id: Internal id of the intent.
            action: Event type (see TransactionAction).
            new_status: Intent status after the event.
            previous_status: Intent status before the event.
            amount: Amount involved, if any.
            provider_response_code: Provider status or result code.
            error_message: Failure description, if any.
            action_metadata: Additional event details.

        Returns:
            Created TransactionHistory instance.
        """
        history = TransactionHistory(
            intent_id=intent_id,
            action=action,
            new_status=new_status,
            previous_status=previous_status,
            amount=amount,
            provider_response_code=provider_response_code,
            error_message=error_message,
        )
        if action_metadata:
            history.action_metadata = action_metadata

        self.session.add(history)
        await self.session.flush()

        logger.debug(f"Recorded {action} for intent {intent_id}: {previous_status} -> {new_status}")
        return history

    async def get_by_intent_id(
        self,
        intent_id: str,
        limit: int = 100,
    ) -> List[TransactionHistory]:
        """History for an intent, newest first."""
        result = await self.session.execute(
            select(TransactionHistory)
            .where(TransactionHistory.intent_id == intent_id)
            .order_by(TransactionHistory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
