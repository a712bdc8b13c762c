import base64
import logging
import secrets
import string
import time
from typing import Dict, Any, Optional, Union

import httpx

from ..config import PayHeroConfig
from .base import (
    ConnectorBase,
    InitiateResult,
    StatusResult,
    prepare_stk_request,
)

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "GPY"
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def mask_phone(phone_number: str) -> str:
    """Hide all but the last three digits of a phone number for logging."""
    if len(phone_number) <= 3:
        return "***"
    return "*" * (len(phone_number) - 3) + phone_number[-3:]


class PayHeroConnector(ConnectorBase):
    """
    PayHero M-Pesa connector speaking the v2 REST API over httpx. Every call
    carries a Basic auth header derived from the configured credentials.
    """

    def __init__(self, config: PayHeroConfig):
        self.config = config
        token = base64.b64encode(f"{config.username}:{config.password}".encode()).decode()
        self._auth_header = f"Basic {token}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": self._auth_header,
        }

    def generate_reference(self) -> str:
        timestamp = str(int(time.time() * 1000))
        suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(6))
        return f"{REFERENCE_PREFIX}{timestamp[-8:]}{suffix}"

    def build_payment_payload(
        self,
        amount: Union[int, float],
        phone_number: str,
        reference: str,
        customer_name: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Translate an STK push request into PayHero's wire format."""
        whole_amount, phone = prepare_stk_request(amount, phone_number)
        payload: Dict[str, Any] = {
            "amount": whole_amount,
            "phone_number": phone,
            "channel_id": self.config.channel_id,
            "provider": self.config.provider,
            "external_reference": reference,
        }
        if customer_name:
            payload["customer_name"] = customer_name
        callback = callback_url or self.config.callback_url
        if callback:
            payload["callback_url"] = callback
        return payload

    def initiate(
        self,
        amount: Union[int, float],
        phone_number: str,
        reference: str,
        customer_name: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> InitiateResult:
        payload = self.build_payment_payload(
            amount, phone_number, reference, customer_name, callback_url
        )
        url = f"{self.config.base_url}/payments"
        logger.info(
            f"PayHero payment request: amount={payload['amount']} "
            f"phone={mask_phone(payload['phone_number'])} reference={reference} "
            f"channel_id={payload['channel_id']}"
        )

        try:
            response = httpx.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error(f"PayHero payment initiation failed for {reference}: {type(e).__name__}: {e}")
            return InitiateResult(success=False, status="ERROR")

        if not response.is_success:
            logger.error(f"PayHero HTTP error {response.status_code} for {reference}")
            return InitiateResult(success=False, status=f"HTTP_{response.status_code}")

        try:
            data = response.json()
        except ValueError:
            logger.error(f"PayHero returned a non-JSON body for {reference}")
            return InitiateResult(success=False, status="ERROR")
        if not isinstance(data, dict):
            logger.error(f"PayHero returned an unexpected body for {reference}: {type(data).__name__}")
            return InitiateResult(success=False, status="ERROR")

        result = InitiateResult(
            success=bool(data.get("success", False)),
            status=str(data.get("status") or "FAILED"),
            reference=str(data.get("reference") or ""),
            checkout_request_id=str(data.get("CheckoutRequestID") or ""),
        )
        logger.info(
            f"PayHero accepted request {reference}: success={result.success} "
            f"status={result.status} checkout={result.checkout_request_id}"
        )
        return result

    def check_status(self, reference: str) -> StatusResult:
        url = f"{self.config.base_url}/transaction-status"
        try:
            response = httpx.get(
                url,
                params={"reference": reference},
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error(f"PayHero status check failed for {reference}: {type(e).__name__}: {e}")
            return StatusResult(success=False, status="ERROR", message=str(e))

        if not response.is_success:
            logger.warning(f"PayHero status check HTTP error {response.status_code} for {reference}")
            return StatusResult(
                success=False,
                status=f"HTTP_{response.status_code}",
                message=response.text[:200] or None,
            )

        try:
            data = response.json()
        except ValueError:
            logger.error(f"PayHero status check returned a non-JSON body for {reference}")
            return StatusResult(success=False, status="ERROR", message="Malformed provider response")
        if not isinstance(data, dict):
            return StatusResult(success=False, status="ERROR", message="Malformed provider response")

        status = str(data.get("status") or "UNKNOWN")
        message = data.get("message") or data.get("ResultDesc")
        logger.debug(f"PayHero status for {reference}: {status}")
        return StatusResult(
            success=True,
            status=status,
            data=data,
            message=str(message) if message else None,
        )

    def health_check(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "provider": self.config.provider,
            "channel_id": self.config.channel_id,
            "base_url": self.config.base_url,
        }
