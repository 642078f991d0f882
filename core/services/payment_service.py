"""
Payment recorder.

Two settlement paths feed the invoice ledger:
- Manual: staff record money received; delegated to InvoiceService.mark_paid.
- Mobile money: initiate_payment asks MTN MoMo to charge the client's phone
  and stores a PENDING payment keyed by the provider reference. The provider
  later reports the outcome (webhook or poll) and confirm_payment applies it.

confirm_payment is idempotent per transaction reference: the payment row is
locked FOR UPDATE, so a redelivered outcome sees the terminal state left by
the first delivery and changes nothing.
"""

import logging
from decimal import Decimal
from uuid import UUID, uuid4

from clients.momo_client import MomoClient, MomoError, sanitize_phone_number, mask_phone_number
from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction
from core.config import BillingConfig
from core.errors import (
    InvalidTransitionError, NotFoundError, PaymentProviderError,
    ProviderNotConfiguredError, ValidationFailedError,
)
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentFailed, PaymentSucceeded
from core.models import (
    Invoice, InvoiceStatus,
    Payment, PaymentConfirmation, PaymentMethod, PaymentStatus,
)
from core.services.invoice_builder import quantize_money
from core.services.invoice_service import InvoiceService, translate_db_errors
from utils.timezone import now_utc
from utils.user_context import get_current_actor

logger = logging.getLogger(__name__)

# Provider status vocabulary -> internal outcome
PROVIDER_STATUS_MAP = {
    "SUCCESSFUL": PaymentStatus.SUCCESSFUL,
    "PAID": PaymentStatus.SUCCESSFUL,
    "FAILED": PaymentStatus.FAILED,
    "REJECTED": PaymentStatus.FAILED,
    "TIMEOUT": PaymentStatus.FAILED,
    "PENDING": PaymentStatus.PENDING,
}


def map_provider_status(status: str | None) -> PaymentStatus | None:
    """Internal outcome for a provider status string, None if unrecognized."""
    return PROVIDER_STATUS_MAP.get((status or "").strip().upper())


class PaymentService:
    """Records payments against invoices."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        invoices: InvoiceService,
        momo: MomoClient | None = None,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.invoices = invoices
        self.momo = momo
        self.config = config or BillingConfig()

    def record_manual_payment(self, invoice_id: UUID, amount: Decimal, user_id: UUID | None = None) -> Invoice:
        """Staff-initiated settlement. See InvoiceService.mark_paid."""
        return self.invoices.mark_paid(invoice_id, amount, user_id=user_id)

    def initiate_payment(self, invoice_id: UUID, phone_number: str, user_id: UUID | None = None) -> Payment:
        """
        Charge the outstanding balance of an invoice to a mobile-money wallet.

        The provider is called outside any transaction; the PENDING payment is
        written once the provider has returned its reference.

        Args:
            invoice_id: Invoice to settle
            phone_number: Client's mobile-money number
            user_id: Actor recorded on the payment

        Returns:
            The PENDING payment carrying the provider reference

        Raises:
            NotFoundError: Invoice does not exist
            InvalidTransitionError: Invoice is PAID or VOID
            ValidationFailedError: No outstanding balance, or bad phone number
            ProviderNotConfiguredError: MoMo credentials are missing
            PaymentProviderError: The provider rejected the request
        """
        invoice = self.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)

        if invoice.status == InvoiceStatus.PAID:
            raise InvalidTransitionError(f"Invoice {invoice.invoice_number} is already paid")
        if invoice.status == InvoiceStatus.VOID:
            raise InvalidTransitionError(f"Cannot pay voided invoice {invoice.invoice_number}")

        amount_due = invoice.balance_due
        if amount_due <= 0:
            raise ValidationFailedError(f"Invoice {invoice.invoice_number} has no outstanding balance")

        if self.momo is None or not self.momo.is_configured():
            raise ProviderNotConfiguredError(
                "Mobile money payment is not configured. Use manual payment instead."
            )

        try:
            msisdn = sanitize_phone_number(phone_number)
        except ValueError as e:
            raise ValidationFailedError(str(e))

        try:
            transaction_ref = self.momo.request_to_pay(
                amount_due,
                msisdn,
                invoice.invoice_number,
                payer_message=f"Payment for invoice {invoice.invoice_number}",
                payee_note=f"MoFresh invoice payment - {invoice.invoice_number}",
            )
        except MomoError as e:
            logger.error(f"Failed to initiate MTN MoMo payment for {invoice.invoice_number}: {e}")
            raise PaymentProviderError(str(e), e.status_code)

        actor = str(user_id) if user_id is not None else get_current_actor()
        now = now_utc()

        with self.postgres.transaction() as tx:
            row = tx.execute_single(
                """
                INSERT INTO payments (
                    id, invoice_id, amount, payment_method, status,
                    momo_transaction_ref, phone_number, recorded_by, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(), invoice.id, amount_due, PaymentMethod.MOBILE_MONEY.value,
                    PaymentStatus.PENDING.value, transaction_ref, msisdn, actor, now, now
                )
            )
            payment = Payment.model_validate(row)

            self.audit.log_change(
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "amount": str(amount_due),
                    "payment_method": PaymentMethod.MOBILE_MONEY.value,
                    "momo_transaction_ref": transaction_ref,
                },
                user_id=actor,
                tx=tx,
            )

        logger.info(
            f"MTN MoMo payment initiated for {invoice.invoice_number}: payment {payment.id}, "
            f"ref {transaction_ref}, amount {amount_due}, phone {mask_phone_number(msisdn)}"
        )
        return payment

    def confirm_payment(
        self,
        transaction_ref: str,
        outcome: PaymentStatus,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> PaymentConfirmation:
        """
        Apply a provider outcome to the payment with this reference.

        - PENDING is a no-op.
        - A payment already in a terminal state accepts a repeat of the same
          outcome as a no-op (idempotent=True) and rejects a different one.
        - SUCCESSFUL adds the payment's recorded amount to the invoice.
        - FAILED stores the reason; the invoice is untouched.

        Args:
            transaction_ref: Provider reference from initiate_payment
            outcome: Internal outcome (see map_provider_status)
            amount: Amount reported by the provider, checked against the payment
            reason: Failure reason reported by the provider

        Raises:
            NotFoundError: No payment with this reference
            InvalidTransitionError: Conflicting outcome, amount mismatch, or the
                invoice can no longer accept payments
            OverpaymentError: Payment exceeds the invoice's balance due
            TransientLockError: Payment or invoice row lock timed out
        """
        invoice = None

        with translate_db_errors():
            with self.postgres.transaction(lock_timeout_ms=self.config.invoice_lock_timeout_ms) as tx:
                row = tx.execute_single(
                    "SELECT * FROM payments WHERE momo_transaction_ref = %s FOR UPDATE",
                    (transaction_ref,)
                )
                if row is None:
                    raise NotFoundError("Payment", transaction_ref)
                payment = Payment.model_validate(row)

                if payment.status.is_terminal or outcome == PaymentStatus.PENDING:
                    if outcome not in (payment.status, PaymentStatus.PENDING):
                        raise InvalidTransitionError(
                            f"Payment {transaction_ref} is already {payment.status.value}; "
                            f"cannot mark it {outcome.value}"
                        )
                    if payment.status.is_terminal:
                        logger.warning(
                            f"Duplicate {outcome.value} confirmation for transaction {transaction_ref} ignored"
                        )
                    return PaymentConfirmation(
                        payment=payment,
                        invoice_status=self._invoice_status(tx, payment.invoice_id),
                        idempotent=payment.status.is_terminal,
                    )

                now = now_utc()
                if outcome == PaymentStatus.SUCCESSFUL:
                    if amount is not None and quantize_money(amount) != payment.amount:
                        raise InvalidTransitionError(
                            f"Reported amount {amount} does not match payment amount {payment.amount} "
                            f"for transaction {transaction_ref}"
                        )

                    invoice, excess = self.invoices.apply_payment(
                        tx, payment.invoice_id, payment.amount, payment_id=payment.id
                    )
                    row = tx.execute_single(
                        """
                        UPDATE payments
                        SET status = %s, amount = %s, excess_amount = %s, paid_at = %s, updated_at = %s
                        WHERE id = %s
                        RETURNING *
                        """,
                        (
                            PaymentStatus.SUCCESSFUL.value, payment.amount - excess, excess,
                            now, now, payment.id
                        )
                    )
                    changes = {"status": {"old": payment.status.value, "new": PaymentStatus.SUCCESSFUL.value}}
                    if excess > 0:
                        changes["excess_amount"] = str(excess)
                    invoice_status = invoice.status
                else:
                    failure_reason = reason or "Payment failed"
                    row = tx.execute_single(
                        """
                        UPDATE payments SET status = %s, failure_reason = %s, updated_at = %s
                        WHERE id = %s
                        RETURNING *
                        """,
                        (PaymentStatus.FAILED.value, failure_reason, now, payment.id)
                    )
                    changes = {
                        "status": {"old": payment.status.value, "new": PaymentStatus.FAILED.value},
                        "failure_reason": failure_reason,
                    }
                    invoice_status = self._invoice_status(tx, payment.invoice_id)

                self.audit.log_change(
                    entity_type="payment",
                    entity_id=payment.id,
                    action=AuditAction.UPDATE,
                    changes={**changes, "momo_transaction_ref": transaction_ref},
                    tx=tx,
                )

        updated = Payment.model_validate(row)

        if outcome == PaymentStatus.SUCCESSFUL:
            logger.info(
                f"Payment {updated.id} reconciled: {updated.amount} applied to invoice "
                f"{invoice.invoice_number} (now {invoice.status.value})"
            )
            self.event_bus.publish(PaymentSucceeded.create(payment=updated))
            if invoice.status == InvoiceStatus.PAID:
                self.event_bus.publish(InvoicePaid.create(invoice=invoice))
        else:
            logger.info(f"Payment {updated.id} marked FAILED: {updated.failure_reason}")
            self.event_bus.publish(PaymentFailed.create(payment=updated))

        return PaymentConfirmation(payment=updated, invoice_status=invoice_status)

    def poll_payment_status(self, transaction_ref: str) -> PaymentConfirmation:
        """
        Ask the provider for a transaction's status and apply it.

        Reconciles payments whose webhook never arrived.

        Raises:
            ProviderNotConfiguredError, NotFoundError, PaymentProviderError,
            plus anything confirm_payment raises
        """
        if self.momo is None or not self.momo.is_configured():
            raise ProviderNotConfiguredError("Mobile money payment is not configured")

        if self.get_by_transaction_ref(transaction_ref) is None:
            raise NotFoundError("Payment", transaction_ref)

        try:
            data = self.momo.get_transaction_status(transaction_ref)
        except MomoError as e:
            raise PaymentProviderError(str(e), e.status_code)

        outcome = map_provider_status(data.get("status"))
        if outcome is None:
            raise PaymentProviderError(f"Unrecognized provider status: {data.get('status')}")

        reason = data.get("reason")
        return self.confirm_payment(transaction_ref, outcome, reason=str(reason) if reason else None)

    def get_payment(self, payment_id: UUID) -> Payment | None:
        row = self.postgres.execute_single("SELECT * FROM payments WHERE id = %s", (payment_id,))
        if row is None:
            return None
        return Payment.model_validate(row)

    def get_by_transaction_ref(self, transaction_ref: str) -> Payment | None:
        row = self.postgres.execute_single(
            "SELECT * FROM payments WHERE momo_transaction_ref = %s",
            (transaction_ref,)
        )
        if row is None:
            return None
        return Payment.model_validate(row)

    def list_payments(
        self,
        invoice_id: UUID | None = None,
        status: PaymentStatus | None = None,
        limit: int = 50,
    ) -> list[Payment]:
        """
        List payments, newest first.

        Args:
            invoice_id: Only payments for this invoice
            status: Only payments in this status
            limit: Maximum results
        """
        conditions = []
        params: list = []
        if invoice_id is not None:
            conditions.append("invoice_id = %s")
            params.append(invoice_id)
        if status is not None:
            conditions.append("status = %s")
            params.append(status.value)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self.postgres.execute(
            f"SELECT * FROM payments {where} ORDER BY created_at DESC LIMIT %s",
            tuple(params + [limit])
        )
        return [Payment.model_validate(row) for row in rows]

    @staticmethod
    def _invoice_status(tx: Transaction, invoice_id: UUID) -> InvoiceStatus | None:
        status = tx.execute_scalar("SELECT status FROM invoices WHERE id = %s", (invoice_id,))
        return InvoiceStatus(status) if status else None
