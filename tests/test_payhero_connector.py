"""Tests for the PayHero gateway connector."""

import base64
import re
import pytest
import httpx
from unittest.mock import patch

from payhero_sdk.config import PayHeroConfig
from payhero_sdk.connectors.payhero_connector import PayHeroConnector, mask_phone


POST = "payhero_sdk.connectors.payhero_connector.httpx.post"
GET = "payhero_sdk.connectors.payhero_connector.httpx.get"


def _response(status_code, json=None, text=None):
    if json is not None:
        return httpx.Response(status_code, json=json)
    return httpx.Response(status_code, text=text or "")


class TestGenerateReference:

    def test_format(self, payhero_connector):
        reference = payhero_connector.generate_reference()
        assert re.fullmatch(r"GPY\d{8}[A-Z0-9]{6}", reference)

    def test_references_differ(self, payhero_connector):
        references = {payhero_connector.generate_reference() for _ in range(50)}
        assert len(references) == 50


class TestBuildPaymentPayload:

    def test_optional_fields_omitted_when_absent(self):
        config = PayHeroConfig(
            username="u", password="p", channel_id=3407, callback_url=None
        )
        payload = PayHeroConnector(config).build_payment_payload(60, "0712345678", "GPY1")
        assert payload == {
            "amount": 60,
            "phone_number": "0712345678",
            "channel_id": 3407,
            "provider": "m-pesa",
            "external_reference": "GPY1",
        }

    def test_configured_callback_url_used_by_default(self, payhero_connector):
        payload = payhero_connector.build_payment_payload(60, "0712345678", "GPY1", customer_name="Jane")
        assert payload["customer_name"] == "Jane"
        assert payload["callback_url"] == "https://merchant.test/callbacks/payhero"

    def test_explicit_callback_url_wins(self, payhero_connector):
        payload = payhero_connector.build_payment_payload(
            60, "0712345678", "GPY1", callback_url="https://other.test/cb"
        )
        assert payload["callback_url"] == "https://other.test/cb"


class TestInitiate:
    """Tests for sending STK push requests."""

    def test_sends_canonical_request(self, payhero_connector):
        body = {
            "success": True,
            "status": "QUEUED",
            "reference": "E8UWT7CLUW",
            "CheckoutRequestID": "ws_CO_16022024_123456789",
        }
        with patch(POST, return_value=_response(201, json=body)) as mock_post:
            result = payhero_connector.initiate(60, "+254712345678", "GPY12345678ABC")

        assert result.success is True
        assert result.status == "QUEUED"
        assert result.reference == "E8UWT7CLUW"
        assert result.checkout_request_id == "ws_CO_16022024_123456789"

        args, kwargs = mock_post.call_args
        assert args[0] == "https://payhero.test/api/v2/payments"
        sent = kwargs["json"]
        assert sent["phone_number"] == "0712345678"
        assert sent["amount"] == 60
        assert sent["channel_id"] == 3407
        assert sent["provider"] == "m-pesa"
        assert sent["external_reference"] == "GPY12345678ABC"
        assert kwargs["timeout"] == 5.0

    def test_basic_auth_header(self, payhero_connector):
        with patch(POST, return_value=_response(200, json={"success": True, "status": "QUEUED"})) as mock_post:
            payhero_connector.initiate(10, "0712345678", "GPY1")

        headers = mock_post.call_args.kwargs["headers"]
        expected = base64.b64encode(b"test_user:test_password").decode()
        assert headers["Authorization"] == f"Basic {expected}"
        assert headers["Content-Type"] == "application/json"

    def test_fractional_amount_rounded(self, payhero_connector):
        with patch(POST, return_value=_response(200, json={"success": True, "status": "QUEUED"})) as mock_post:
            payhero_connector.initiate(99.5, "0712345678", "GPY1")
        assert mock_post.call_args.kwargs["json"]["amount"] == 100

    def test_http_error_status(self, payhero_connector):
        with patch(POST, return_value=_response(500, text="Internal Server Error")):
            result = payhero_connector.initiate(60, "0712345678", "GPY1")

        assert result.model_dump(by_alias=True) == {
            "success": False,
            "status": "HTTP_500",
            "reference": "",
            "CheckoutRequestID": "",
        }

    def test_transport_error(self, payhero_connector):
        with patch(POST, side_effect=httpx.ConnectTimeout("timed out")):
            result = payhero_connector.initiate(60, "0712345678", "GPY1")

        assert result.success is False
        assert result.status == "ERROR"
        assert result.reference == ""
        assert result.checkout_request_id == ""

    def test_non_json_body(self, payhero_connector):
        with patch(POST, return_value=_response(200, text="<html>oops</html>")):
            result = payhero_connector.initiate(60, "0712345678", "GPY1")
        assert result.status == "ERROR"

    def test_provider_rejection_passed_through(self, payhero_connector):
        body = {"success": False, "status": "INVALID_PHONE"}
        with patch(POST, return_value=_response(200, json=body)):
            result = payhero_connector.initiate(60, "0712345678", "GPY1")
        assert result.success is False
        assert result.status == "INVALID_PHONE"

    def test_invalid_input_raises_before_network(self, payhero_connector):
        with patch(POST) as mock_post:
            with pytest.raises(ValueError):
                payhero_connector.initiate(0, "0712345678", "GPY1")
            with pytest.raises(ValueError):
                payhero_connector.initiate(10, "", "GPY1")
        mock_post.assert_not_called()


class TestCheckStatus:
    """Tests for transaction status queries."""

    def test_success(self, payhero_connector):
        body = {
            "status": "SUCCESS",
            "provider_reference": "SAE3YULR0Y",
            "amount": 60,
            "reference": "GPY1",
        }
        with patch(GET, return_value=_response(200, json=body)) as mock_get:
            result = payhero_connector.check_status("GPY1")

        assert result.success is True
        assert result.status == "SUCCESS"
        assert result.data == body
        args, kwargs = mock_get.call_args
        assert args[0] == "https://payhero.test/api/v2/transaction-status"
        assert kwargs["params"] == {"reference": "GPY1"}

    def test_missing_status_is_unknown(self, payhero_connector):
        with patch(GET, return_value=_response(200, json={"message": 42})):
            result = payhero_connector.check_status("GPY1")
        assert result.success is True
        assert result.status == "UNKNOWN"
        assert result.message == "42"

    def test_http_error(self, payhero_connector):
        with patch(GET, return_value=_response(404, text="not found")):
            result = payhero_connector.check_status("GPY1")
        assert result.success is False
        assert result.status == "HTTP_404"

    def test_transport_error(self, payhero_connector):
        with patch(GET, side_effect=httpx.ReadTimeout("slow")):
            result = payhero_connector.check_status("GPY1")
        assert result.success is False
        assert result.status == "ERROR"


class TestMaskPhone:

    def test_keeps_last_three_digits(self):
        assert mask_phone("0712345678") == "*******678"

    def test_short_input(self):
        assert mask_phone("12") == "***"
