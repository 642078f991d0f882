"""
MTN Mobile Money collection API client.

Requests a payment from a subscriber's wallet (request-to-pay), checks the
status of a request and verifies signed webhook callbacks. Credentials come
from Vault (see clients.vault_client.get_momo_config).
"""

import hashlib
import hmac
import logging
import re
import threading
import time
import uuid
from decimal import Decimal
from typing import Any, Dict

import requests
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.momodeveloper.mtn.com"

# Refresh the OAuth token this many seconds before the provider expires it
_TOKEN_EXPIRY_MARGIN = 60

_NON_DIGITS = re.compile(r"\D")


class MomoError(Exception):
    """Raised when a MoMo API request fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class MomoConfig(BaseModel):
    """Collection API settings. Empty credentials leave the client unconfigured."""

    api_user: str = ""
    api_key: str = ""
    primary_key: str = ""
    callback_url: str = ""
    base_url: str = SANDBOX_URL
    environment: str = "sandbox"
    webhook_secret: str | None = None
    currency: str = Field(default="RWF", min_length=3, max_length=3)
    timeout: int = Field(default=30, ge=1)


def sanitize_phone_number(phone_number: str) -> str:
    """
    Normalize a Rwandan number to MSISDN form (250XXXXXXXXX).

    Raises:
        ValueError: If the result is not 12 digits
    """
    sanitized = _NON_DIGITS.sub("", phone_number or "")

    if sanitized.startswith("0"):
        sanitized = "250" + sanitized[1:]
    elif not sanitized.startswith("250"):
        sanitized = "250" + sanitized

    if len(sanitized) != 12:
        raise ValueError(
            f"Invalid phone number format. Expected Rwanda number (e.g., 250788123456), got: {phone_number}"
        )

    return sanitized


def mask_phone_number(phone_number: str | None) -> str:
    """Keep the last three digits for logs."""
    if not phone_number:
        return "<none>"
    return "*" * max(len(phone_number) - 3, 0) + phone_number[-3:]


def format_amount(amount: Decimal) -> str:
    """Integral amounts go out without decimals ("23600"), others as-is."""
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return str(int(amount))
    return str(amount)


class MomoClient:
    """MoMo collection client with a cached OAuth token."""

    def __init__(self, config: MomoConfig):
        self.config = config
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

        missing = [
            name for name in ("api_user", "api_key", "primary_key", "callback_url")
            if not getattr(config, name)
        ]
        if missing:
            logger.warning(
                f"Missing MTN MoMo configuration: {', '.join(missing)}. "
                f"Mobile money payments are disabled."
            )

    @classmethod
    def from_config(cls, values: Dict[str, Any]) -> "MomoClient":
        """Build from the dict returned by get_momo_config()."""
        return cls(MomoConfig.model_validate(values))

    def is_configured(self) -> bool:
        return bool(
            self.config.api_user
            and self.config.api_key
            and self.config.primary_key
            and self.config.callback_url
        )

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _get_access_token(self) -> str:
        """
        OAuth access token, fetched with Basic auth and cached until shortly
        before it expires.

        Raises:
            MomoError: If the token endpoint fails
        """
        with self._token_lock:
            if self._token and self._token_expires_at > time.monotonic():
                return self._token

            try:
                response = requests.post(
                    self._url("/collection/token/"),
                    auth=(self.config.api_user, self.config.api_key),
                    headers={"Ocp-Apim-Subscription-Key": self.config.primary_key},
                    timeout=self.config.timeout,
                )
            except requests.exceptions.RequestException as e:
                logger.error(f"MTN MoMo token request failed: {e}")
                raise MomoError(f"Cannot connect to MTN MoMo service: {e}")

            if response.status_code != 200:
                logger.error(f"MTN MoMo token request rejected: {response.status_code} {response.text}")
                raise MomoError("Failed to authenticate with MTN MoMo", response.status_code)

            data = response.json()
            expires_in = int(data.get("expires_in") or 3600)
            self._token = data["access_token"]
            self._token_expires_at = time.monotonic() + expires_in - _TOKEN_EXPIRY_MARGIN

            logger.info("MTN MoMo access token obtained")
            return self._token

    def request_to_pay(
        self,
        amount: Decimal,
        phone_number: str,
        external_id: str,
        payer_message: str | None = None,
        payee_note: str | None = None,
    ) -> str:
        """
        Ask the subscriber to approve a payment on their phone.

        Args:
            amount: Amount in the configured currency
            phone_number: Subscriber number, sanitized to MSISDN form
            external_id: Our reference (the invoice number)
            payer_message: Text shown to the payer
            payee_note: Note stored with the transaction

        Returns:
            The X-Reference-Id identifying this request with the provider

        Raises:
            ValueError: If the phone number is invalid
            MomoError: If the provider rejects the request
        """
        msisdn = sanitize_phone_number(phone_number)
        token = self._get_access_token()
        reference_id = str(uuid.uuid4())

        payload = {
            "amount": format_amount(amount),
            "currency": self.config.currency,
            "externalId": external_id,
            "payer": {"partyIdType": "MSISDN", "partyId": msisdn},
            "payerMessage": payer_message or "MoFresh Invoice Payment",
            "payeeNote": payee_note or f"Payment for invoice {external_id}",
        }
        headers = {
            "Authorization": f"Bearer {token}",
            "Ocp-Apim-Subscription-Key": self.config.primary_key,
            "X-Reference-Id": reference_id,
            "X-Target-Environment": self.config.environment,
            "X-Callback-Url": self.config.callback_url,
            "Content-Type": "application/json",
        }

        logger.info(
            f"Requesting MTN MoMo payment of {payload['amount']} {self.config.currency} "
            f"from {mask_phone_number(msisdn)}"
        )

        try:
            response = requests.post(
                self._url("/collection/v1_0/requesttopay"),
                json=payload,
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error("MTN MoMo request to pay timed out")
            raise MomoError("Payment request timeout. Please try again.", 504)
        except requests.exceptions.RequestException as e:
            logger.error(f"MTN MoMo request to pay failed: {e}")
            raise MomoError(f"Cannot connect to MTN MoMo service: {e}", 503)

        if response.status_code not in (200, 201, 202):
            raise self._error_from_response(response)

        logger.info(f"MTN MoMo payment initiated. Reference ID: {reference_id}")
        return reference_id

    def get_transaction_status(self, reference_id: str) -> Dict[str, Any]:
        """
        Current provider view of a request-to-pay.

        Returns:
            Provider response body, including "status" (PENDING, SUCCESSFUL, FAILED)

        Raises:
            MomoError: If the provider rejects the request
        """
        token = self._get_access_token()

        try:
            response = requests.get(
                self._url(f"/collection/v1_0/requesttopay/{reference_id}"),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Ocp-Apim-Subscription-Key": self.config.primary_key,
                    "X-Target-Environment": self.config.environment,
                },
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"MTN MoMo status check failed: {e}")
            raise MomoError(f"Cannot connect to MTN MoMo service: {e}", 503)

        if response.status_code != 200:
            raise self._error_from_response(response)

        data = response.json()
        logger.info(f"MTN MoMo transaction {reference_id} status: {data.get('status')}")
        return data

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """
        Check an HMAC-SHA256 webhook signature (hex) against the raw body.

        Sandbox callbacks are unsigned and always accepted. Without a webhook
        secret configured, signed callbacks are accepted with a warning.
        """
        if self.config.environment == "sandbox":
            return True

        if not signature:
            logger.warning("Webhook signature missing in request headers")
            return False

        if not self.config.webhook_secret:
            logger.warning("MoMo webhook secret not configured; skipping signature verification")
            return True

        expected = hmac.new(
            self.config.webhook_secret.encode("utf-8"),
            raw_body,
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(expected, signature.strip().lower())

    @staticmethod
    def _error_from_response(response: requests.Response) -> MomoError:
        try:
            message = response.json().get("message")
        except ValueError:
            message = None

        status = response.status_code
        if status == 400:
            message = message or "Invalid payment request. Please check payment details."
        elif status == 401:
            message = "MTN MoMo authentication failed"
        elif status == 404:
            message = message or "Transaction not found at MTN MoMo"
        elif status == 409:
            message = "Duplicate transaction reference"
        elif status >= 500:
            message = "MTN MoMo service is temporarily unavailable"
        else:
            message = f"MTN MoMo error: {message or 'Unknown error'}"

        logger.error(f"MTN MoMo request failed ({status}): {response.text}")
        return MomoError(message, status)
