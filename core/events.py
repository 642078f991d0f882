"""
Domain events for billing.

Immutable event objects published after an invoice or payment transaction
commits. Reports and notification modules subscribe without the ledger
knowing who is listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (generated, paid, voided)
- PaymentEvent: Payment lifecycle (succeeded, failed)

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice


@dataclass(frozen=True)
class InvoiceGenerated(InvoiceEvent):
    """A new invoice was issued for an order or rental."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceGenerated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice reached PAID."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceVoided(InvoiceEvent):
    """Invoice was voided."""
    reason: str = ""

    @classmethod
    def create(cls, invoice: Any, reason: str) -> "InvoiceVoided":
        return cls(invoice=invoice, reason=reason)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to payment lifecycle."""
    payment: Any = None  # Payment


@dataclass(frozen=True)
class PaymentSucceeded(PaymentEvent):
    """Provider confirmed a payment."""

    @classmethod
    def create(cls, payment: Any) -> "PaymentSucceeded":
        return cls(payment=payment)


@dataclass(frozen=True)
class PaymentFailed(PaymentEvent):
    """Provider reported a payment as failed."""

    @classmethod
    def create(cls, payment: Any) -> "PaymentFailed":
        return cls(payment=payment)
