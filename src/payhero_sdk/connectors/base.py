import re
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Union
from pydantic import BaseModel, ConfigDict, Field

from ..currency import round_half_up

COUNTRY_CALLING_CODE = "254"
TRUNK_PREFIX = "0"
# Leading digits of Kenyan mobile numbers once the trunk "0" is dropped
SUBSCRIBER_PREFIXES = ("7", "1")

CALLBACK_SUCCESS_STATUS = "Success"


# Canonical models
class InitiateResult(BaseModel):
    success: bool
    status: str
    reference: str = ""
    checkout_request_id: str = Field(default="", alias="CheckoutRequestID")

    model_config = ConfigDict(populate_by_name=True)


class StatusResult(BaseModel):
    success: bool
    status: str
    data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None


class CallbackResult(BaseModel):
    success: bool
    amount: Union[int, float]
    reference: str
    mpesa_receipt_number: Optional[str] = Field(default=None, alias="mpesaReceiptNumber")
    status: str
    # Not part of the wire contract; kept for the audit trail
    result_code: Optional[int] = Field(default=None, exclude=True)
    result_description: Optional[str] = Field(default=None, exclude=True)
    checkout_request_id: Optional[str] = Field(default=None, exclude=True)

    model_config = ConfigDict(populate_by_name=True)


class CallbackResponseBody(BaseModel):
    """The ``response`` object of a PayHero callback."""
    Amount: Union[int, float]
    CheckoutRequestID: str = ""
    ExternalReference: str
    MerchantRequestID: str = ""
    MpesaReceiptNumber: Optional[str] = None
    Phone: Optional[str] = None
    ResultCode: int
    ResultDesc: str = ""
    Status: str


class CallbackPayload(BaseModel):
    """Inbound callback as delivered by PayHero."""
    forward_url: Optional[str] = None
    status: bool = False
    response: CallbackResponseBody


def normalize_phone_number(phone_number: str) -> str:
    """Map any common way of writing a Kenyan mobile number to ``07XXXXXXXX``.

    ``+254 712 345 678``, ``254712345678`` and ``712345678`` all become
    ``0712345678``, as does ``+254 0712345678`` with the trunk ``0`` kept
    after the country code. A number already in local form is returned
    unchanged and anything unrecognised is passed through with only ``+``
    and whitespace removed, so the function is idempotent.
    """
    cleaned = re.sub(r"[+\s]", "", phone_number)
    if cleaned.startswith(COUNTRY_CALLING_CODE):
        subscriber = cleaned[len(COUNTRY_CALLING_CODE):]
        if subscriber.startswith(TRUNK_PREFIX):
            subscriber = subscriber[len(TRUNK_PREFIX):]
        return TRUNK_PREFIX + subscriber
    if cleaned.startswith(TRUNK_PREFIX):
        return cleaned
    if cleaned.startswith(SUBSCRIBER_PREFIXES):
        return TRUNK_PREFIX + cleaned
    return cleaned


def parse_callback(payload: Union[Dict[str, Any], CallbackPayload]) -> CallbackResult:
    """Map a provider callback onto a settlement result. No I/O.

    Success needs both a zero ``ResultCode`` and a ``Success`` status;
    either alone is treated as a failure.

    Raises:
        pydantic.ValidationError: If the payload does not have the callback shape.
    """
    callback = payload if isinstance(payload, CallbackPayload) else CallbackPayload.model_validate(payload)
    response = callback.response
    return CallbackResult(
        success=response.ResultCode == 0 and response.Status == CALLBACK_SUCCESS_STATUS,
        amount=response.Amount,
        reference=response.ExternalReference,
        mpesa_receipt_number=response.MpesaReceiptNumber or None,
        status=response.Status,
        result_code=response.ResultCode,
        result_description=response.ResultDesc,
        checkout_request_id=response.CheckoutRequestID or None,
    )


def prepare_stk_request(amount: Union[int, float], phone_number: str) -> tuple:
    """Validate and canonicalize the amount and phone number of an STK push.

    Raises:
        ValueError: If amount is not positive or the phone number is empty.
    """
    if amount is None or amount <= 0:
        raise ValueError(f"amount must be positive, got {amount!r}")
    if not phone_number or not phone_number.strip():
        raise ValueError("phone_number must not be empty")
    return round_half_up(amount), normalize_phone_number(phone_number)


class ConnectorBase(ABC):
    """
    Mobile-money gateway interface. Implementations must turn every transport
    or HTTP fault into a failed result instead of raising.
    """

    @abstractmethod
    def initiate(
        self,
        amount: Union[int, float],
        phone_number: str,
        reference: str,
        customer_name: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> InitiateResult:
        """
        Send an STK push for ``reference``. Does not touch the local intent.
        """
        raise NotImplementedError

    @abstractmethod
    def check_status(self, reference: str) -> StatusResult:
        """
        Ask the provider for the current state of a previously submitted reference.
        """
        raise NotImplementedError

    @abstractmethod
    def generate_reference(self) -> str:
        raise NotImplementedError

    def process_callback(self, payload: Union[Dict[str, Any], CallbackPayload]) -> CallbackResult:
        return parse_callback(payload)

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True}
