"""Status poller: settles intents whose callback is late or lost."""

import uuid
import logging
from datetime import timedelta
from typing import Optional, Dict, Any, Union

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import DEFAULT_POLL_GRACE_SECONDS
from ..connectors.base import ConnectorBase, StatusResult
from ..database import IntentStatus, ResolutionSource, utcnow
from ..services import SettlementService, SettlementOutcome
from .models import (
    PollAction,
    PollOutcome,
    PollReport,
    PollRequest,
    ReconciliationStatus,
)

logger = logging.getLogger(__name__)

# Provider transaction-status values that end an intent
PROVIDER_TERMINAL_STATUSES = {
    "SUCCESS": IntentStatus.SUCCEEDED,
    "SUCCESSFUL": IntentStatus.SUCCEEDED,
    "COMPLETED": IntentStatus.SUCCEEDED,
    "FAILED": IntentStatus.FAILED,
    "CANCELLED": IntentStatus.FAILED,
    "CANCELED": IntentStatus.FAILED,
    "REVERSED": IntentStatus.FAILED,
}


def map_provider_status(provider_status: str) -> Optional[IntentStatus]:
    """Map a provider status onto a terminal intent status.

    Returns:
        The terminal status, or None while the provider still reports the
        transaction as queued, pending or unknown.
    """
    return PROVIDER_TERMINAL_STATUSES.get((provider_status or "").strip().upper())


def _as_amount(value: Any) -> Optional[Union[int, float]]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class StatusPoller:
    """Asks the provider about pending intents and settles them."""

    def __init__(
        self,
        session: AsyncSession,
        connector: ConnectorBase,
        service: Optional[SettlementService] = None,
    ):
        """Initialize the poller.

        Args:
            session: Async database session.
            connector: Gateway used for status checks.
            service: Settlement service to resolve through. Built from the
                session and connector when omitted.
        """
        self.session = session
        self.connector = connector
        self.service = service or SettlementService(session, connector)

    def _outcome_from_status(self, result: StatusResult, new_status: IntentStatus) -> SettlementOutcome:
        data: Dict[str, Any] = result.data or {}
        receipt = data.get("provider_reference") or data.get("MpesaReceiptNumber")
        return SettlementOutcome(
            status=new_status,
            amount=_as_amount(data.get("amount")),
            receipt_number=str(receipt) if receipt else None,
            result_description=result.message or result.status,
            checkout_request_id=data.get("CheckoutRequestID") or None,
            raw_payload=data or None,
        )

    async def poll_intent(self, reference: str) -> PollOutcome:
        """Issue one status check for an intent and settle it if terminal.

        A failed check or a non-terminal provider status leaves the intent
        untouched for a later run.
        """
        intent = await self.service.get_intent(reference)
        if intent is None:
            logger.warning(f"Poll requested for unknown reference {reference}")
            return PollOutcome(reference=reference, action=PollAction.NOT_FOUND)
        if intent.is_terminal:
            return PollOutcome(
                reference=reference,
                action=PollAction.ALREADY_RESOLVED,
                status=intent.status,
                resolved_via=intent.resolved_via,
            )

        result = await run_in_threadpool(self.connector.check_status, reference)
        if not result.success:
            logger.warning(f"Status check for {reference} failed: {result.status}")
            return PollOutcome(
                reference=reference,
                action=PollAction.CHECK_FAILED,
                provider_status=result.status,
                status=intent.status,
                message=result.message,
            )

        new_status = map_provider_status(result.status)
        if new_status is None:
            logger.debug(f"{reference} still {result.status} at provider")
            return PollOutcome(
                reference=reference,
                action=PollAction.STILL_PENDING,
                provider_status=result.status,
                status=intent.status,
                message=result.message,
            )

        resolution = await self.service.resolve(
            reference,
            self._outcome_from_status(result, new_status),
            ResolutionSource.POLL,
        )
        return PollOutcome(
            reference=reference,
            action=PollAction.RESOLVED if resolution.applied else PollAction.ALREADY_RESOLVED,
            provider_status=result.status,
            status=resolution.status,
            resolved_via=resolution.resolved_via,
            message=result.message,
        )

    async def poll_pending(self, request: Optional[PollRequest] = None) -> PollReport:
        """Check every intent pending for longer than the grace period.

        Each intent is committed on its own so one failure does not undo the
        others.

        Returns:
            PollReport with per-intent outcomes.
        """
        request = request or PollRequest(grace_seconds=DEFAULT_POLL_GRACE_SECONDS)
        now = utcnow()
        report = PollReport(
            id=str(uuid.uuid4()),
            status=ReconciliationStatus.IN_PROGRESS,
            grace_seconds=request.grace_seconds,
            cutoff=now - timedelta(seconds=request.grace_seconds),
            created_at=now,
        )

        logger.info(f"Starting poll run {report.id} for intents pending since {report.cutoff}")

        try:
            candidates = await self.service.intent_repo.list_pending_older_than(
                report.cutoff, limit=request.limit
            )
            references = [intent.reference for intent in candidates]
            report.total_candidates = len(references)

            for reference in references:
                outcome = await self.poll_intent(reference)
                await self.session.commit()
                report.add_outcome(outcome)

            report.status = ReconciliationStatus.COMPLETED
            report.completed_at = utcnow()
            logger.info(
                f"Poll run {report.id} completed: {report.total_resolved} resolved, "
                f"{report.total_still_pending} still pending, "
                f"{report.total_check_failed} failed checks"
            )
        except Exception as e:
            logger.error(f"Poll run {report.id} failed: {e}")
            await self.session.rollback()
            report.status = ReconciliationStatus.FAILED
            report.error_message = str(e)
            report.completed_at = utcnow()

        return report
