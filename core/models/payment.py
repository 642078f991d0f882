"""Payment domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.invoice import InvoiceStatus


class PaymentStatus(str, Enum):
    """Payment lifecycle status. SUCCESSFUL and FAILED are terminal."""

    PENDING = "PENDING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "MOBILE_MONEY"
    MANUAL = "MANUAL"


class Payment(BaseModel):
    """Payment entity as stored."""

    id: UUID
    invoice_id: UUID
    amount: Decimal
    excess_amount: Decimal = Decimal("0.00")
    payment_method: PaymentMethod
    status: PaymentStatus
    momo_transaction_ref: str | None = None
    phone_number: str | None = None
    failure_reason: str | None = None
    recorded_by: str | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentConfirmation(BaseModel):
    """Result of applying a provider outcome to a payment."""

    payment: Payment
    invoice_status: InvoiceStatus | None = None
    idempotent: bool = False


class MomoWebhookPayload(BaseModel):
    """Callback body delivered by the mobile-money provider."""

    transaction_ref: str = Field(..., min_length=1, alias="transactionRef")
    status: str = Field(..., min_length=1)
    amount: Decimal | None = Field(None, gt=0)
    reason: str | None = None
    external_id: str | None = Field(None, alias="externalId")
    financial_transaction_id: str | None = Field(None, alias="financialTransactionId")

    model_config = {"populate_by_name": True}


class WebhookResult(BaseModel):
    """Business outcome of one webhook delivery. Always acknowledged to the provider."""

    processed: bool
    message: str
    transaction_ref: str
    outcome: PaymentStatus | None = None
    payment_id: UUID | None = None
    invoice_status: InvoiceStatus | None = None
    idempotent: bool = False
    error_code: str | None = None
