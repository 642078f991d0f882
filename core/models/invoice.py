"""Invoice domain models.

Amounts are Decimals quantized to two places (NUMERIC(14,2) in the database).
An invoice bills exactly one source: an order or a rental.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status. PAID and VOID are terminal."""

    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    VOID = "VOID"

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.VOID)


def derive_status(paid_amount: Decimal, total_amount: Decimal, voided: bool = False) -> InvoiceStatus:
    """Invoice status as a function of what has been paid against the total."""
    if voided:
        return InvoiceStatus.VOID
    if paid_amount >= total_amount:
        return InvoiceStatus.PAID
    if paid_amount > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.UNPAID


class InvoiceItemDraft(BaseModel):
    """A computed invoice line, not yet persisted."""

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0)
    unit: str = Field(..., min_length=1, max_length=50)
    unit_price: Decimal = Field(..., ge=0)
    subtotal: Decimal = Field(..., ge=0)


class InvoiceItem(InvoiceItemDraft):
    """Invoice line as stored. Write-once."""

    id: UUID
    invoice_id: UUID
    position: int
    created_at: datetime

    model_config = {"from_attributes": True}


class InvoiceDraft(BaseModel):
    """Everything needed to insert an invoice, minus its number."""

    order_id: UUID | None = None
    rental_id: UUID | None = None
    client_id: UUID
    site_id: UUID
    subtotal: Decimal = Field(..., ge=0)
    tax_amount: Decimal = Field(..., ge=0)
    total_amount: Decimal = Field(..., ge=0)
    due_date: datetime
    items: list[InvoiceItemDraft] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_invariants(self) -> "InvoiceDraft":
        """Exactly one source; totals add up."""
        if (self.order_id is None) == (self.rental_id is None):
            raise ValueError("An invoice must have exactly one of order_id or rental_id")
        if self.total_amount != self.subtotal + self.tax_amount:
            raise ValueError("total_amount must equal subtotal + tax_amount")
        return self


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    invoice_number: str
    order_id: UUID | None
    rental_id: UUID | None
    client_id: UUID
    site_id: UUID
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    status: InvoiceStatus
    due_date: datetime
    paid_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None
    reissued_from: UUID | None = None
    created_at: datetime
    updated_at: datetime
    items: list[InvoiceItem] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @property
    def balance_due(self) -> Decimal:
        """Remaining amount to be paid."""
        return self.total_amount - self.paid_amount

    @property
    def source_type(self) -> str:
        """'order' or 'rental'."""
        return "order" if self.order_id is not None else "rental"

    @property
    def source_id(self) -> UUID:
        return self.order_id if self.order_id is not None else self.rental_id
