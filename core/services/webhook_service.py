"""
MoMo webhook reconciliation.

Maps provider callbacks onto PaymentService.confirm_payment. Callbacks can
arrive twice, out of order, or before the PENDING payment they refer to has
been committed (the provider may answer faster than initiate_payment writes
its row), so lookups of an unknown reference are retried briefly.

The provider gets a 200 for every authentic callback; the business outcome
travels in the WebhookResult body.
"""

import logging
import time
from typing import Callable

from core.config import BillingConfig
from core.errors import BillingError, NotFoundError
from core.models import MomoWebhookPayload, PaymentStatus, WebhookResult
from core.services.payment_service import PaymentService, map_provider_status

logger = logging.getLogger(__name__)


class WebhookReconciler:
    """Turns provider callbacks into payment confirmations."""

    def __init__(
        self,
        payments: PaymentService,
        config: BillingConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.payments = payments
        self.config = config or BillingConfig()
        self._sleep = sleep

    def process(self, payload: MomoWebhookPayload) -> WebhookResult:
        """
        Reconcile one callback.

        Never raises for business failures: unknown statuses, unknown
        references and rejected transitions come back as processed=False
        with an error code.
        """
        ref = payload.transaction_ref
        logger.info(f"Processing MTN MoMo webhook for transaction {ref} (status {payload.status})")

        outcome = map_provider_status(payload.status)
        if outcome is None:
            logger.warning(f"Unknown webhook status {payload.status!r} for transaction {ref}")
            return WebhookResult(
                processed=False,
                message=f"Unknown status: {payload.status}",
                transaction_ref=ref,
            )

        try:
            confirmation = self._confirm(ref, outcome, payload)
        except NotFoundError as e:
            logger.warning(f"Received webhook for unknown transaction {ref}")
            return WebhookResult(
                processed=False,
                message="Transaction not found",
                transaction_ref=ref,
                outcome=outcome,
                error_code=e.code,
            )
        except BillingError as e:
            logger.warning(f"Webhook for transaction {ref} rejected: {e.message} ({e.code})")
            return WebhookResult(
                processed=False,
                message=e.message,
                transaction_ref=ref,
                outcome=outcome,
                error_code=e.code,
            )

        if confirmation.idempotent:
            message = "Payment already processed"
        elif outcome == PaymentStatus.PENDING:
            message = "Payment still pending"
        elif outcome == PaymentStatus.SUCCESSFUL:
            message = "Payment reconciled"
        else:
            message = "Payment marked as failed"

        return WebhookResult(
            processed=True,
            message=message,
            transaction_ref=ref,
            outcome=outcome,
            payment_id=confirmation.payment.id,
            invoice_status=confirmation.invoice_status,
            idempotent=confirmation.idempotent,
        )

    def _confirm(self, ref: str, outcome: PaymentStatus, payload: MomoWebhookPayload):
        """confirm_payment with bounded retries for unknown refs and lock timeouts."""
        attempts = self.config.webhook_lookup_retries
        for attempt in range(1, attempts + 1):
            try:
                return self.payments.confirm_payment(
                    ref, outcome, amount=payload.amount, reason=payload.reason
                )
            except BillingError as e:
                if attempt == attempts or not (e.retryable or isinstance(e, NotFoundError)):
                    raise
                backoff = self.config.webhook_lookup_backoff_seconds * (2 ** (attempt - 1))
                logger.info(
                    f"Webhook for {ref} hit {e.code} (attempt {attempt}/{attempts}), "
                    f"retrying in {backoff:.2f}s"
                )
                self._sleep(backoff)
