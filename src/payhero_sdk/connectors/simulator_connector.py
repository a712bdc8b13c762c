"""Simulator connector for exercising STK push flows without calling PayHero."""

import uuid
import time
import random
import logging
from typing import Dict, Any, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .base import (
    ConnectorBase,
    InitiateResult,
    StatusResult,
    prepare_stk_request,
)

logger = logging.getLogger(__name__)


class SimulatorScenario(str, Enum):
    """Predefined outcomes for a simulated STK push."""
    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"


# M-Pesa result codes reported in callbacks
RESULT_CODES = {
    SimulatorScenario.SUCCESS: (0, "The service request is processed successfully."),
    SimulatorScenario.TIMEOUT: (0, "The service request is processed successfully."),
    SimulatorScenario.USER_CANCELLED: (1032, "Request cancelled by user"),
    SimulatorScenario.INSUFFICIENT_FUNDS: (1, "The balance is insufficient for the transaction."),
}


@dataclass
class SimulatedStkPush:
    """In-memory record of one simulated STK push."""
    reference: str
    checkout_request_id: str
    merchant_request_id: str
    amount: int
    phone_number: str
    scenario: SimulatorScenario
    state: str = "QUEUED"
    receipt_number: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    status_checks: int = 0


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    success_rate: float = 1.0  # 0.0 to 1.0
    delay_ms: int = 0  # Simulated response delay in ms
    settle_on_status_check: bool = False  # Resolve queued pushes when polled
    seed: Optional[int] = None  # Random seed for reproducibility


class SimulatorConnector(ConnectorBase):
    """
    Simulator connector behaving like the PayHero gateway.

    Features:
    - In-memory STK push storage
    - Special phone numbers that force a scenario
    - Provider-shaped callback payloads for driving the callback path
    - Status checks that optionally settle queued pushes
    """

    PHONE_SUCCESS = "0700000000"
    PHONE_CANCELLED = "0700000001"
    PHONE_INSUFFICIENT = "0700000002"
    PHONE_REJECTED = "0700000003"
    PHONE_TIMEOUT = "0700000004"
    PHONE_HTTP_ERROR = "0700000005"

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        self.config = config or SimulatorConfig()
        self._pushes: Dict[str, SimulatedStkPush] = {}
        self._rng = random.Random(self.config.seed)
        logger.info("SimulatorConnector initialized")

    def _apply_delay(self) -> None:
        """Apply configured response delay."""
        if self.config.delay_ms > 0:
            time.sleep(self.config.delay_ms / 1000.0)

    def _determine_scenario(self, phone_number: str) -> SimulatorScenario:
        """Determine scenario based on phone number or random config."""
        phone_scenarios = {
            self.PHONE_SUCCESS: SimulatorScenario.SUCCESS,
            self.PHONE_CANCELLED: SimulatorScenario.USER_CANCELLED,
            self.PHONE_INSUFFICIENT: SimulatorScenario.INSUFFICIENT_FUNDS,
            self.PHONE_REJECTED: SimulatorScenario.REJECTED,
            self.PHONE_TIMEOUT: SimulatorScenario.TIMEOUT,
            self.PHONE_HTTP_ERROR: SimulatorScenario.HTTP_ERROR,
        }
        if phone_number in phone_scenarios:
            return phone_scenarios[phone_number]
        if self._rng.random() < self.config.success_rate:
            return SimulatorScenario.SUCCESS
        return SimulatorScenario.USER_CANCELLED

    def generate_reference(self) -> str:
        return f"SIM{uuid.uuid4().hex[:14].upper()}"

    def initiate(
        self,
        amount: Union[int, float],
        phone_number: str,
        reference: str,
        customer_name: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> InitiateResult:
        """Queue a simulated STK push."""
        self._apply_delay()
        whole_amount, phone = prepare_stk_request(amount, phone_number)
        scenario = self._determine_scenario(phone)

        if scenario == SimulatorScenario.HTTP_ERROR:
            return InitiateResult(success=False, status="HTTP_500")
        if scenario == SimulatorScenario.REJECTED:
            return InitiateResult(success=False, status="FAILED")

        push = SimulatedStkPush(
            reference=reference,
            checkout_request_id=f"ws_CO_{uuid.uuid4().hex[:20]}",
            merchant_request_id=f"{self._rng.randint(10000, 99999)}-{self._rng.randint(1000000, 9999999)}-1",
            amount=whole_amount,
            phone_number=phone,
            scenario=scenario,
        )
        self._pushes[reference] = push
        if scenario == SimulatorScenario.TIMEOUT:
            # Queued at the provider, but the response never reaches the caller
            return InitiateResult(success=False, status="ERROR")
        return InitiateResult(
            success=True,
            status="QUEUED",
            reference=reference,
            checkout_request_id=push.checkout_request_id,
        )

    def check_status(self, reference: str) -> StatusResult:
        """Report the state of a simulated push."""
        self._apply_delay()
        push = self._pushes.get(reference)
        if not push:
            return StatusResult(success=False, status="HTTP_404", message="Transaction not found")

        push.status_checks += 1
        if push.state == "QUEUED" and self.config.settle_on_status_check:
            self.settle(reference)

        return StatusResult(
            success=True,
            status=push.state,
            data={
                "reference": push.reference,
                "CheckoutRequestID": push.checkout_request_id,
                "provider_reference": push.receipt_number,
                "amount": push.amount,
                "status": push.state,
            },
        )

    def settle(self, reference: str) -> Dict[str, Any]:
        """Finish a queued push and return the callback PayHero would send."""
        push = self._pushes.get(reference)
        if not push:
            raise KeyError(f"No simulated push for reference {reference}")
        if push.state == "QUEUED":
            if push.scenario in (SimulatorScenario.SUCCESS, SimulatorScenario.TIMEOUT):
                push.state = "SUCCESS"
                push.receipt_number = f"S{uuid.uuid4().hex[:9].upper()}"
            else:
                push.state = "FAILED"
        return self.build_callback(reference)

    def build_callback(self, reference: str) -> Dict[str, Any]:
        """Build a callback payload for the current state of a push."""
        push = self._pushes[reference]
        result_code, result_desc = RESULT_CODES.get(push.scenario, (1, "Failed"))
        return {
            "forward_url": "",
            "status": push.state == "SUCCESS",
            "response": {
                "Amount": push.amount,
                "CheckoutRequestID": push.checkout_request_id,
                "ExternalReference": push.reference,
                "MerchantRequestID": push.merchant_request_id,
                "MpesaReceiptNumber": push.receipt_number or "",
                "Phone": "254" + push.phone_number[1:],
                "ResultCode": result_code,
                "ResultDesc": result_desc,
                "Status": "Success" if push.state == "SUCCESS" else "Failed",
            },
        }

    def get_push(self, reference: str) -> Optional[SimulatedStkPush]:
        """Get a push from in-memory storage (for testing)."""
        return self._pushes.get(reference)

    def clear(self) -> None:
        """Forget all simulated pushes (for test cleanup)."""
        self._pushes.clear()

    def health_check(self) -> Dict[str, Any]:
        """Return health status of the simulator."""
        return {
            "ok": True,
            "provider": "simulator",
            "push_count": len(self._pushes),
            "config": {
                "success_rate": self.config.success_rate,
                "delay_ms": self.config.delay_ms,
                "settle_on_status_check": self.config.settle_on_status_check,
            }
        }
