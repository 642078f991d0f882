"""
Tests for MomoClient.

HTTP traffic is mocked with the responses library; nothing reaches MTN.
"""

import hashlib
import hmac
import json
from decimal import Decimal

import pytest
import requests
import responses

from clients.momo_client import (
    MomoClient, MomoConfig, MomoError,
    format_amount, mask_phone_number, sanitize_phone_number,
)

BASE_URL = "https://momo.example.com"
TOKEN_URL = f"{BASE_URL}/collection/token/"
REQUEST_TO_PAY_URL = f"{BASE_URL}/collection/v1_0/requesttopay"


def _config(**overrides):
    values = dict(
        api_user="api-user",
        api_key="api-key",
        primary_key="primary-key",
        callback_url="https://billing.example.com/api/webhooks/momo",
        base_url=BASE_URL,
        environment="mtnrwanda",
        webhook_secret="whsec",
    )
    values.update(overrides)
    return MomoConfig(**values)


@pytest.fixture
def client():
    return MomoClient(_config())


def _add_token(expires_in=3600):
    responses.add(
        responses.POST, TOKEN_URL,
        json={"access_token": "tok-1", "token_type": "access_token", "expires_in": expires_in},
        status=200,
    )


class TestPhoneNumbers:
    """Tests for MSISDN normalization."""

    @pytest.mark.parametrize("raw", ["0788123456", "250788123456", "+250 788 123 456", "788123456"])
    def test_sanitized_to_msisdn(self, raw):
        assert sanitize_phone_number(raw) == "250788123456"

    @pytest.mark.parametrize("raw", ["", "12345", "07881234567890"])
    def test_invalid_rejected(self, raw):
        with pytest.raises(ValueError, match="Invalid phone number"):
            sanitize_phone_number(raw)

    def test_mask_keeps_last_three(self):
        assert mask_phone_number("250788123456") == "*********456"
        assert mask_phone_number(None) == "<none>"


class TestFormatAmount:

    def test_integral_without_decimals(self):
        assert format_amount(Decimal("23600.00")) == "23600"

    def test_fractional_kept(self):
        assert format_amount(Decimal("10.50")) == "10.50"


class TestConfiguration:
    """Tests for is_configured()."""

    def test_complete_config(self, client):
        assert client.is_configured() is True

    def test_missing_credentials(self):
        assert MomoClient(MomoConfig()).is_configured() is False

    def test_from_config_dict(self):
        client = MomoClient.from_config({
            "api_user": "u", "api_key": "k", "primary_key": "p", "callback_url": "https://cb",
        })

        assert client.is_configured() is True
        assert client.config.environment == "sandbox"
        assert client.config.currency == "RWF"


class TestRequestToPay:
    """Tests for request_to_pay - uses responses library for HTTP mocking."""

    @responses.activate
    def test_returns_reference_and_sends_payload(self, client):
        _add_token()
        responses.add(responses.POST, REQUEST_TO_PAY_URL, status=202)

        ref = client.request_to_pay(Decimal("23600.00"), "0788123456", "INV-KIGALI-2026-00001")

        request = responses.calls[1].request
        body = json.loads(request.body)
        assert body["amount"] == "23600"
        assert body["currency"] == "RWF"
        assert body["externalId"] == "INV-KIGALI-2026-00001"
        assert body["payer"] == {"partyIdType": "MSISDN", "partyId": "250788123456"}
        assert request.headers["X-Reference-Id"] == ref
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.headers["X-Target-Environment"] == "mtnrwanda"
        assert request.headers["X-Callback-Url"] == "https://billing.example.com/api/webhooks/momo"

    @responses.activate
    def test_token_is_cached(self, client):
        _add_token()
        responses.add(responses.POST, REQUEST_TO_PAY_URL, status=202)
        responses.add(responses.POST, REQUEST_TO_PAY_URL, status=202)

        client.request_to_pay(Decimal("100"), "0788123456", "INV-1")
        client.request_to_pay(Decimal("100"), "0788123456", "INV-2")

        token_calls = [c for c in responses.calls if c.request.url == TOKEN_URL]
        assert len(token_calls) == 1

    @responses.activate
    def test_token_refreshed_near_expiry(self, client):
        _add_token(expires_in=30)
        _add_token()
        responses.add(responses.POST, REQUEST_TO_PAY_URL, status=202)
        responses.add(responses.POST, REQUEST_TO_PAY_URL, status=202)

        client.request_to_pay(Decimal("100"), "0788123456", "INV-1")
        client.request_to_pay(Decimal("100"), "0788123456", "INV-2")

        token_calls = [c for c in responses.calls if c.request.url == TOKEN_URL]
        assert len(token_calls) == 2

    @responses.activate
    def test_token_rejected(self, client):
        responses.add(responses.POST, TOKEN_URL, status=401)

        with pytest.raises(MomoError) as exc:
            client.request_to_pay(Decimal("100"), "0788123456", "INV-1")

        assert exc.value.status_code == 401

    @pytest.mark.parametrize("status, message", [
        (400, "Invalid payment request"),
        (409, "Duplicate transaction reference"),
        (500, "temporarily unavailable"),
    ])
    @responses.activate
    def test_provider_errors(self, client, status, message):
        _add_token()
        responses.add(responses.POST, REQUEST_TO_PAY_URL, status=status, json={})

        with pytest.raises(MomoError, match=message) as exc:
            client.request_to_pay(Decimal("100"), "0788123456", "INV-1")

        assert exc.value.status_code == status

    @responses.activate
    def test_timeout(self, client):
        _add_token()
        responses.add(responses.POST, REQUEST_TO_PAY_URL, body=requests.exceptions.Timeout())

        with pytest.raises(MomoError) as exc:
            client.request_to_pay(Decimal("100"), "0788123456", "INV-1")

        assert exc.value.status_code == 504

    @responses.activate
    def test_connection_error(self, client):
        _add_token()
        responses.add(responses.POST, REQUEST_TO_PAY_URL, body=requests.exceptions.ConnectionError())

        with pytest.raises(MomoError) as exc:
            client.request_to_pay(Decimal("100"), "0788123456", "INV-1")

        assert exc.value.status_code == 503

    def test_invalid_phone_not_sent(self, client):
        with responses.RequestsMock() as rsps:
            with pytest.raises(ValueError):
                client.request_to_pay(Decimal("100"), "123", "INV-1")
            assert len(rsps.calls) == 0


class TestTransactionStatus:
    """Tests for get_transaction_status."""

    @responses.activate
    def test_returns_body(self, client):
        _add_token()
        responses.add(
            responses.GET, f"{REQUEST_TO_PAY_URL}/ref-1",
            json={"status": "SUCCESSFUL", "financialTransactionId": "42"}, status=200,
        )

        data = client.get_transaction_status("ref-1")

        assert data["status"] == "SUCCESSFUL"

    @responses.activate
    def test_not_found(self, client):
        _add_token()
        responses.add(responses.GET, f"{REQUEST_TO_PAY_URL}/ref-1", status=404, json={})

        with pytest.raises(MomoError) as exc:
            client.get_transaction_status("ref-1")

        assert exc.value.status_code == 404


class TestVerifySignature:
    """Tests for webhook HMAC verification."""

    BODY = b'{"transactionRef":"ref-1","status":"SUCCESSFUL"}'

    def _sign(self, secret="whsec"):
        return hmac.new(secret.encode(), self.BODY, hashlib.sha256).hexdigest()

    def test_valid_signature(self, client):
        assert client.verify_signature(self.BODY, self._sign()) is True

    def test_uppercase_hex_accepted(self, client):
        assert client.verify_signature(self.BODY, self._sign().upper()) is True

    def test_wrong_secret_rejected(self, client):
        assert client.verify_signature(self.BODY, self._sign("other")) is False

    def test_tampered_body_rejected(self, client):
        assert client.verify_signature(self.BODY + b" ", self._sign()) is False

    def test_missing_signature_rejected(self, client):
        assert client.verify_signature(self.BODY, None) is False

    def test_sandbox_skips_verification(self):
        client = MomoClient(_config(environment="sandbox"))

        assert client.verify_signature(self.BODY, None) is True

    def test_no_secret_accepts_signed_callback(self):
        client = MomoClient(_config(webhook_secret=None))

        assert client.verify_signature(self.BODY, "anything") is True
