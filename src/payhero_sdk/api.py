import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, HTTPException, Depends, Query
from pydantic import BaseModel, Field
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import verify_api_key, limiter, PAYMENT_RATE_LIMIT
from .config import PayHeroConfig
from .connectors.base import ConnectorBase, InitiateResult
from .connectors.payhero_connector import PayHeroConnector
from .currency import convert_usd_to_kes
from .database import PaymentIntent, init_db, close_db, get_db
from .dependencies import get_connector, get_usd_kes_rate
from .reconciliation.api import router as reconciliation_router
from .services import (
    SettlementService,
    CallbackAck,
    GENERIC_START_FAILURE,
    describe_initiation,
    is_transport_failure,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = PayHeroConfig.from_env()
    app.state.config = config
    app.state.connector = PayHeroConnector(config)
    await init_db()
    yield
    await close_db()


app = FastAPI(title="PayHero M-Pesa Settlement API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(reconciliation_router)


class CreatePaymentBody(BaseModel):
    amount: float = Field(..., gt=0, description="Amount in KES")
    phone_number: str = Field(..., min_length=1)
    account_id: Optional[str] = None
    customer_name: Optional[str] = None
    callback_url: Optional[str] = None


class VirtualCardPurchaseBody(BaseModel):
    account_id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    customer_name: Optional[str] = None
    callback_url: Optional[str] = None


class PaymentStartedResponse(BaseModel):
    success: bool
    reference: str
    status: str
    amount: int
    currency: str = "KES"
    checkout_request_id: str = ""
    message: str


def _started_response(intent: PaymentIntent, result: InitiateResult) -> PaymentStartedResponse:
    # Transport and HTTP faults are not the payer's business
    if not result.success and is_transport_failure(result.status):
        raise HTTPException(status_code=502, detail=GENERIC_START_FAILURE)
    return PaymentStartedResponse(
        success=result.success,
        reference=intent.reference,
        status=intent.status,
        amount=intent.amount,
        currency=intent.currency,
        checkout_request_id=intent.provider_checkout_id,
        message=describe_initiation(result),
    )


@app.post("/payments", response_model=PaymentStartedResponse)
@limiter.limit(PAYMENT_RATE_LIMIT)
async def create_payment(
    request: Request,
    body: CreatePaymentBody,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    api_key: str = Depends(verify_api_key),
):
    """Start an M-Pesa deposit: stores a PENDING intent and sends the STK push."""
    service = SettlementService(db, connector)
    try:
        intent, result = await service.start_payment(
            amount=body.amount,
            phone_number=body.phone_number,
            account_id=body.account_id,
            customer_name=body.customer_name,
            callback_url=body.callback_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _started_response(intent, result)


@app.post("/virtual-cards/purchase", response_model=PaymentStartedResponse)
@limiter.limit(PAYMENT_RATE_LIMIT)
async def purchase_virtual_card(
    request: Request,
    body: VirtualCardPurchaseBody,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    usd_kes_rate: float = Depends(get_usd_kes_rate),
    api_key: str = Depends(verify_api_key),
):
    """Pay for a virtual card by M-Pesa. The card is activated when the payment settles."""
    service = SettlementService(db, connector, usd_kes_rate=usd_kes_rate)
    try:
        intent, result = await service.purchase_virtual_card(
            account_id=body.account_id,
            phone_number=body.phone_number,
            customer_name=body.customer_name,
            callback_url=body.callback_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _started_response(intent, result)


@app.get("/payments/{reference}")
async def get_payment(
    reference: str,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    api_key: str = Depends(verify_api_key),
):
    intent = await SettlementService(db, connector).get_intent(reference)
    if intent is None:
        raise HTTPException(status_code=404, detail=f"Payment intent {reference} not found")
    return intent.to_dict()


@app.get("/payments/{reference}/history")
async def get_payment_history(
    reference: str,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    api_key: str = Depends(verify_api_key),
):
    try:
        history = await SettlementService(db, connector).get_history(reference)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"reference": reference, "history": history}


@app.post("/callbacks/payhero", response_model=CallbackAck)
async def payhero_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
):
    """
    PayHero callback receiver.

    Always answers 200: unknown references, duplicates and malformed bodies
    are logged and acknowledged so the provider does not keep redelivering.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("PayHero callback body is not valid JSON")
        return CallbackAck(accepted=False, reason="invalid_payload")
    if not isinstance(payload, dict):
        logger.warning("PayHero callback body is not a JSON object")
        return CallbackAck(accepted=False, reason="invalid_payload")

    return await SettlementService(db, connector).handle_callback(payload)


@app.get("/accounts/{account_id}/ledger")
async def get_account_ledger(
    account_id: str,
    db: AsyncSession = Depends(get_db),
    connector: ConnectorBase = Depends(get_connector),
    api_key: str = Depends(verify_api_key),
):
    return await SettlementService(db, connector).get_account_ledger(account_id)


@app.get("/exchange/usd-kes")
async def usd_to_kes(
    amount: float = Query(..., gt=0, description="Amount in USD"),
    usd_kes_rate: float = Depends(get_usd_kes_rate),
):
    return {
        "usd": amount,
        "kes": convert_usd_to_kes(amount, usd_kes_rate),
        "rate": usd_kes_rate,
    }


@app.get("/health")
async def health(request: Request):
    connector = getattr(request.app.state, "connector", None)
    return {
        "status": "healthy",
        "gateway": connector.health_check() if connector is not None else None,
    }
