"""Typed exceptions for billing failures.

Each kind carries a machine-readable code and the HTTP status the API layer
renders it with. Preconditions raise these before any write happens.
"""

from decimal import Decimal


class BillingError(Exception):
    """Base class for invoice and payment errors."""

    code = "BILLING_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(BillingError):
    """Referenced order, rental, site, invoice or payment does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class InvalidStatusError(BillingError):
    """Source entity is not in a state eligible for invoicing."""

    code = "INVALID_STATUS"


class NoBillableItemsError(BillingError):
    """Source entity has nothing to bill (no order items, no asset, no fee)."""

    code = "NO_ITEMS"


class DuplicateInvoiceError(BillingError):
    """A non-void invoice already exists for this order or rental."""

    code = "DUPLICATE"
    http_status = 409

    def __init__(self, source_type: str, source_id, detail: str | None = None):
        self.source_type = source_type
        self.source_id = source_id
        message = f"Invoice already exists for {source_type} {source_id}"
        if detail:
            message = f"{message}. {detail}"
        super().__init__(message)


class OverpaymentError(BillingError):
    """Payment would push paid_amount past total_amount beyond the tolerance."""

    code = "OVERPAYMENT"

    def __init__(self, invoice_number: str, excess: Decimal, balance_due: Decimal):
        self.excess = excess
        self.balance_due = balance_due
        super().__init__(
            f"Payment exceeds balance due on invoice {invoice_number} by {excess}. "
            f"Balance due: {balance_due}"
        )


class InvalidTransitionError(BillingError):
    """
    Requested transition is not allowed from the current state.

    Covers paying or voiding a terminal invoice and conflicting provider
    outcomes for an already-resolved payment.
    """

    code = "INVALID_TRANSITION"
    http_status = 409


class TransientLockError(BillingError):
    """A row lock could not be acquired in time. Safe to retry."""

    code = "TRANSIENT_LOCK_FAILURE"
    http_status = 503
    retryable = True


class ValidationFailedError(BillingError):
    """Caller input is malformed (non-positive amount, short reason, bad phone)."""

    code = "VALIDATION_ERROR"


class PaymentProviderError(BillingError):
    """The mobile-money provider rejected or failed a request."""

    code = "PAYMENT_PROVIDER_ERROR"
    http_status = 502

    def __init__(self, message: str, provider_status: int | None = None):
        self.provider_status = provider_status
        super().__init__(message)


class ProviderNotConfiguredError(BillingError):
    """Mobile-money charges cannot be dispatched with the current configuration."""

    code = "PAYMENT_PROVIDER_UNAVAILABLE"
    http_status = 503
