"""Settlement service: creates payment intents and resolves them exactly once."""

import logging
import json
from typing import Optional, Dict, Any, List, Tuple, Union

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from .config import DEFAULT_USD_KES_RATE
from .currency import convert_usd_to_kes, round_half_up
from .database import (
    PaymentIntent,
    PaymentIntentRepository,
    LedgerRepository,
    TransactionHistoryRepository,
    IntentStatus,
    ResolutionSource,
    PaymentPurpose,
    LedgerEntryType,
    TransactionAction,
)
from .connectors.base import ConnectorBase, InitiateResult, prepare_stk_request

logger = logging.getLogger(__name__)

VIRTUAL_CARD_PRICE_USD = 60

GENERIC_START_FAILURE = "Payment could not be started"

# Connector status for a request that may or may not have reached the gateway
TRANSPORT_ERROR_STATUS = "ERROR"

LEDGER_ENTRY_FOR_PURPOSE = {
    PaymentPurpose.DEPOSIT.value: LedgerEntryType.DEPOSIT_CREDIT.value,
    PaymentPurpose.CARD_PURCHASE.value: LedgerEntryType.CARD_ACTIVATION.value,
}

_RESOLVE_ACTIONS = {
    ResolutionSource.CALLBACK: (TransactionAction.CALLBACK, TransactionAction.DUPLICATE_CALLBACK),
    ResolutionSource.POLL: (TransactionAction.POLL, TransactionAction.DUPLICATE_POLL),
    ResolutionSource.UNRESOLVED: (TransactionAction.INITIATE, TransactionAction.INITIATE),
}


class SettlementOutcome(BaseModel):
    """A terminal result reported for an intent by one of the resolution paths."""
    status: IntentStatus
    amount: Optional[Union[int, float]] = None
    receipt_number: Optional[str] = None
    result_code: Optional[int] = None
    result_description: Optional[str] = None
    checkout_request_id: Optional[str] = None
    raw_payload: Optional[Dict[str, Any]] = None


class ResolutionResult(BaseModel):
    """What happened when a resolution path tried to settle an intent."""
    reference: str
    applied: bool
    status: Optional[str] = None
    resolved_via: Optional[str] = None
    reason: Optional[str] = None  # unknown_reference | already_resolved


class CallbackAck(BaseModel):
    """Body returned to PayHero for every callback delivery."""
    accepted: bool
    applied: bool = False
    reference: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


def is_transport_failure(status: str) -> bool:
    """True for statuses the connector produces for transport or HTTP faults."""
    return status == TRANSPORT_ERROR_STATUS or status.startswith("HTTP_")


def describe_initiation(result: InitiateResult) -> str:
    """User-facing message for the outcome of an STK push request."""
    if result.success:
        return "Check your phone and enter your M-Pesa PIN to complete the payment"
    if is_transport_failure(result.status):
        return GENERIC_START_FAILURE
    return f"Payment was rejected by the provider: {result.status}"


class SettlementService:
    """Service class tying the gateway connector to intent persistence."""

    def __init__(
        self,
        session: AsyncSession,
        connector: ConnectorBase,
        usd_kes_rate: float = DEFAULT_USD_KES_RATE,
    ):
        """Initialize the service.

        Args:
            session: AsyncSession instance for database operations.
            connector: Gateway used to send STK pushes.
            usd_kes_rate: Fixed rate used to price USD-denominated products.
        """
        self.session = session
        self.connector = connector
        self.usd_kes_rate = usd_kes_rate
        self.intent_repo = PaymentIntentRepository(session)
        self.ledger_repo = LedgerRepository(session)
        self.history_repo = TransactionHistoryRepository(session)

    async def start_payment(
        self,
        amount: Union[int, float],
        phone_number: str,
        purpose: PaymentPurpose = PaymentPurpose.DEPOSIT,
        account_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Tuple[PaymentIntent, InitiateResult]:
        """Create a PENDING intent and send the STK push for it.

        The intent is committed before the gateway is called, so a callback
        for its reference always finds it.
 A push that gets no response from the
        gateway leaves the intent PENDING for a callback or poll; HTTP errors
        and provider rejections settle it right away.

        Args:
            amount: Amount in KES; rounded to whole shillings.
            phone_number: Payer's phone number in any common format.
            purpose: Deposit or card purchase.
            account_id: Account receiving the side effect on success.
            customer_name: Name shown on the STK prompt.
            callback_url: Overrides the configured callback URL.

        Returns:
            Tuple of (intent as stored after initiation, gateway result).

        Raises:
            ValueError: If amount is not positive or phone number is empty.
        """
        whole_amount, phone = prepare_stk_request(amount, phone_number)
        reference = self.connector.generate_reference()

        intent = await self.intent_repo.create(
            reference=reference,
            amount=whole_amount,
            phone_number=phone,
            purpose=PaymentPurpose(purpose).value,
            account_id=account_id,
            customer_name=customer_name,
        )
        await self.history_repo.create(
            intent_id=intent.id,
            action=TransactionAction.CREATE.value,
            new_status=intent.status,
            amount=whole_amount,
            action_metadata={"purpose": intent.purpose, "account_id": account_id},
        )
        await self.session.commit()

        result = await run_in_threadpool(
            self.connector.initiate, whole_amount, phone, reference, customer_name, callback_url
        )

        if result.success:
            await self.intent_repo.record_checkout_id(intent, result.checkout_request_id)
            await self.history_repo.create(
                intent_id=intent.id,
                action=TransactionAction.INITIATE.value,
                previous_status=IntentStatus.PENDING.value,
                new_status=IntentStatus.PENDING.value,
                amount=whole_amount,
                provider_response_code=result.status,
                action_metadata={"checkout_request_id": result.checkout_request_id},
            )
            logger.info(f"STK push sent for {reference} (checkout {result.checkout_request_id})")
        elif result.status == TRANSPORT_ERROR_STATUS:
            # The push may have reached PayHero; a callback or poll settles it
            await self.history_repo.create(
                intent_id=intent.id,
                action=TransactionAction.INITIATE.value,
                previous_status=IntentStatus.PENDING.value,
                new_status=IntentStatus.PENDING.value,
                amount=whole_amount,
                provider_response_code=result.status,
                error_message="No response from gateway",
            )
            logger.warning(f"STK push for {reference} got no response, leaving it PENDING")
        else:
            status = IntentStatus.ERROR if is_transport_failure(result.status) else IntentStatus.FAILED
            await self._settle(
                reference,
                SettlementOutcome(status=status, result_description=result.status),
                ResolutionSource.UNRESOLVED,
            )
            logger.warning(f"STK push for {reference} not started: {result.status}")
        await self.session.commit()

        intent = await self.intent_repo.get_by_reference(reference)
        return intent, result

    async def purchase_virtual_card(
        self,
        account_id: str,
        phone_number: str,
        customer_name: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Tuple[PaymentIntent, InitiateResult]:
        """Start the M-Pesa payment for a virtual card priced in USD.

        Raises:
            ValueError: If the account already holds an activated card or has
                a card payment still in progress.
        """
        if await self._has_virtual_card(account_id):
            raise ValueError(f"Account {account_id} already has a virtual card")
        if await self.intent_repo.has_pending(account_id, PaymentPurpose.CARD_PURCHASE.value):
            raise ValueError(f"Account {account_id} already has a virtual card payment in progress")

        amount_kes = convert_usd_to_kes(VIRTUAL_CARD_PRICE_USD, self.usd_kes_rate)
        logger.info(
            f"Virtual card for {account_id}: {VIRTUAL_CARD_PRICE_USD} USD -> {amount_kes} KES"
        )
        return await self.start_payment(
            amount=amount_kes,
            phone_number=phone_number,
            purpose=PaymentPurpose.CARD_PURCHASE,
            account_id=account_id,
            customer_name=customer_name,
            callback_url=callback_url,
        )

    async def resolve(
        self,
        reference: str,
        outcome: SettlementOutcome,
        source: ResolutionSource,
    ) -> ResolutionResult:
        """Settle an intent from the callback or poll path.

        Safe to call any number of times and from both paths concurrently:
        only the first terminal outcome is stored and only it applies the
        ledger side effect.
        """
        return await self._settle(reference, outcome, source)

    async def _settle(
        self,
        reference: str,
        outcome: SettlementOutcome,
        source: ResolutionSource,
    ) -> ResolutionResult:
        action, duplicate_action = _RESOLVE_ACTIONS[source]

        intent = await self.intent_repo.get_by_reference(reference)
        if intent is None:
            logger.warning(f"{source.value} for unknown reference {reference} ignored")
            return ResolutionResult(reference=reference, applied=False, reason="unknown_reference")

        if (
            outcome.checkout_request_id
            and intent.provider_checkout_id
            and outcome.checkout_request_id != intent.provider_checkout_id
        ):
            logger.warning(
                f"Checkout id mismatch for {reference}: stored {intent.provider_checkout_id}, "
                f"reported {outcome.checkout_request_id}"
            )

        won = False
        if not intent.is_terminal:
            won = await self.intent_repo.transition_from_pending(
                reference,
                new_status=outcome.status,
                resolved_via=source,
                provider_receipt_number=outcome.receipt_number,
                result_code=outcome.result_code,
                result_description=outcome.result_description,
                raw_callback_json=json.dumps(outcome.raw_payload) if outcome.raw_payload else None,
            )
        intent = await self.intent_repo.get_by_reference(reference)

        if not won:
            logger.info(
                f"Ignoring {source.value} for {reference}: already {intent.status} "
                f"via {intent.resolved_via}"
            )
            await self.history_repo.create(
                intent_id=intent.id,
                action=duplicate_action.value,
                previous_status=intent.status,
                new_status=intent.status,
                provider_response_code=_response_code(outcome),
                action_metadata={"reported_status": outcome.status.value},
            )
            return ResolutionResult(
                reference=reference,
                applied=False,
                status=intent.status,
                resolved_via=intent.resolved_via,
                reason="already_resolved",
            )

        if outcome.status == IntentStatus.SUCCEEDED:
            await self._apply_side_effect(intent, outcome)

        await self.history_repo.create(
            intent_id=intent.id,
            action=action.value,
            previous_status=IntentStatus.PENDING.value,
            new_status=intent.status,
            amount=intent.amount,
            provider_response_code=_response_code(outcome),
            error_message=None if outcome.status == IntentStatus.SUCCEEDED else outcome.result_description,
            action_metadata={"receipt_number": outcome.receipt_number} if outcome.receipt_number else None,
        )
        return ResolutionResult(
            reference=reference,
            applied=True,
            status=intent.status,
            resolved_via=intent.resolved_via,
        )

    async def _apply_side_effect(self, intent: PaymentIntent, outcome: SettlementOutcome) -> None:
        """Credit the ledger for a freshly succeeded intent."""
        amount = intent.amount
        if outcome.amount is not None:
            reported = round_half_up(outcome.amount)
            if reported != intent.amount:
                logger.warning(
                    f"Amount mismatch for {intent.reference}: requested {intent.amount}, "
                    f"provider confirmed {reported}; crediting confirmed amount"
                )
            amount = reported

        if intent.purpose == PaymentPurpose.CARD_PURCHASE.value and intent.account_id:
            if await self._has_virtual_card(intent.account_id):
                logger.error(
                    f"Card payment {intent.reference} succeeded but account {intent.account_id} "
                    f"already has a virtual card; {amount} {intent.currency} needs a refund"
                )
                return

        await self.ledger_repo.apply_once(
            reference=intent.reference,
            entry_type=LEDGER_ENTRY_FOR_PURPOSE[intent.purpose],
            amount=amount,
            account_id=intent.account_id,
            currency=intent.currency,
        )

    async def _has_virtual_card(self, account_id: str) -> bool:
        activated = await self.ledger_repo.total_for_account(
            account_id, LedgerEntryType.CARD_ACTIVATION.value
        )
        return activated > 0

    async def handle_callback(self, payload: Dict[str, Any]) -> CallbackAck:
        """Process a PayHero callback delivery.

        Never raises for bad or unexpected deliveries; the provider always gets
        an acknowledgment so it does not retry application-level mismatches.
        """
        try:
            callback = self.connector.process_callback(payload)
        except ValueError as e:
            logger.warning(f"Rejected malformed PayHero callback: {e}")
            return CallbackAck(accepted=False, reason="invalid_payload")

        outcome = SettlementOutcome(
            status=IntentStatus.SUCCEEDED if callback.success else IntentStatus.FAILED,
            amount=callback.amount,
            receipt_number=callback.mpesa_receipt_number,
            result_code=callback.result_code,
            result_description=callback.result_description,
            checkout_request_id=callback.checkout_request_id,
            raw_payload=payload,
        )
        logger.info(
            f"PayHero callback for {callback.reference}: status={callback.status} "
            f"result_code={callback.result_code}"
        )
        result = await self.resolve(callback.reference, outcome, ResolutionSource.CALLBACK)
        return CallbackAck(
            accepted=result.reason != "unknown_reference",
            applied=result.applied,
            reference=callback.reference,
            status=result.status,
            reason=result.reason,
        )

    async def get_intent(self, reference: str) -> Optional[PaymentIntent]:
        return await self.intent_repo.get_by_reference(reference)

    async def get_history(self, reference: str) -> List[Dict[str, Any]]:
        """History of an intent, newest first.

        Raises:
            ValueError: If the reference is unknown.
        """
        intent = await self.intent_repo.get_by_reference(reference)
        if intent is None:
            raise ValueError(f"Payment intent {reference} not found")
        history = await self.history_repo.get_by_intent_id(intent.id)
        return [h.to_dict() for h in history]

    async def get_account_ledger(self, account_id: str) -> Dict[str, Any]:
        """Ledger entries and derived balance for an account."""
        entries = await self.ledger_repo.list_by_account(account_id)
        balance = await self.ledger_repo.total_for_account(
            account_id, LedgerEntryType.DEPOSIT_CREDIT.value
        )
        return {
            "account_id": account_id,
            "balance": balance,
            "currency": "KES",
            "has_virtual_card": await self._has_virtual_card(account_id),
            "entries": [e.to_dict() for e in entries],
        }


def _response_code(outcome: SettlementOutcome) -> Optional[str]:
    if outcome.result_code is not None:
        return str(outcome.result_code)
    if outcome.result_description:
        return outcome.result_description[:50]
    return None
