"""API endpoints for status polling."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import verify_api_key
from ..connectors.base import ConnectorBase
from ..database import get_db
from ..dependencies import get_connector, get_poll_grace_seconds
from .models import PollAction, PollOutcome, PollRequest
from .poller import StatusPoller
from .report import ReportGenerator, REPORT_FORMATS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@router.post("/poll")
async def run_poll(
    body: Optional[PollRequest] = None,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    grace_seconds: int = Depends(get_poll_grace_seconds),
    api_key: str = Depends(verify_api_key),
):
    """
    Check every intent pending longer than the grace period with the provider.

    Returns a summary of the run.
    """
    body = body or PollRequest(grace_seconds=grace_seconds)
    logger.info(f"Poll run requested (grace {body.grace_seconds}s, limit {body.limit})")
    report = await StatusPoller(db, connector).poll_pending(body)
    return report.to_summary_dict()


@router.post("/poll/report")
async def run_poll_report(
    body: Optional[PollRequest] = None,
    include_details: bool = Query(default=True, description="Include per-intent outcomes"),
    format: str = Query(default="json", description="Output format: json, csv, text, detailed_text"),
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    grace_seconds: int = Depends(get_poll_grace_seconds),
    api_key: str = Depends(verify_api_key),
):
    """Run a poll pass and return the report in the requested format."""
    if format not in REPORT_FORMATS:
        raise HTTPException(
            status_code=400,
            detail="format must be one of: json, csv, text, detailed_text"
        )

    body = body or PollRequest(grace_seconds=grace_seconds)

    report = await StatusPoller(db, connector).poll_pending(body)

    if format == "json":
        return report.to_full_dict() if include_details else report.to_summary_dict()

    output = ReportGenerator(report).render(format, include_details=include_details)
    content_type = "text/csv" if format == "csv" else "text/plain"
    return PlainTextResponse(content=output, media_type=content_type)


@router.post("/intents/{reference}/poll", response_model=PollOutcome)
async def poll_single_intent(
    reference: str,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    api_key: str = Depends(verify_api_key),
):
    """Check one intent with the provider now, ignoring the grace period."""
    outcome = await StatusPoller(db, connector).poll_intent(reference)
    if outcome.action == PollAction.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Payment intent {reference} not found")
    return outcome


@router.get("/health")
async def reconciliation_health():
    """Health check endpoint for the poller."""
    return {"status": "healthy", "service": "reconciliation"}
