"""Billing configuration."""

from decimal import Decimal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Invoice and payment settlement configuration.

    Money values are Decimals in the site currency. Lock timeouts are in
    milliseconds, backoffs in seconds.
    """

    # Invoicing
    tax_rate: Decimal = Field(
        default=Decimal("0.18"),
        description="VAT rate applied to the invoice subtotal",
        ge=0,
        le=1,
    )
    default_due_days: int = Field(
        default=7,
        description="Days from generation until an invoice is due",
        ge=0,
        le=365,
    )
    currency: str = Field(
        default="RWF",
        description="ISO currency code sent to the payment provider",
        min_length=3,
        max_length=3,
    )
    auto_reissue_after_void: bool = Field(
        default=False,
        description=(
            "Whether generate_*_invoice may bill a source whose only invoices are VOID. "
            "When False, reissue_invoice is the only way to rebill."
        ),
    )

    # Settlement
    overpayment_tolerance: Decimal = Field(
        default=Decimal("0"),
        description="Amount a payment may exceed the balance due by",
        ge=0,
    )
    min_void_reason_length: int = Field(
        default=3,
        description="Minimum characters in a void reason",
        ge=1,
    )

    # Locking
    sequence_lock_timeout_ms: int = Field(
        default=2000,
        description="Max wait for the per-site-per-year counter row lock",
        ge=100,
    )
    sequence_lock_retries: int = Field(
        default=3,
        description="Attempts at the counter lock before TRANSIENT_LOCK_FAILURE",
        ge=1,
        le=10,
    )
    sequence_retry_backoff_seconds: float = Field(
        default=0.05,
        description="Base backoff between counter lock attempts (doubles each try)",
        ge=0,
    )
    invoice_lock_timeout_ms: int = Field(
        default=5000,
        description="Max wait for an invoice or payment row lock",
        ge=100,
    )

    # Webhooks
    webhook_lookup_retries: int = Field(
        default=3,
        description="Lookups of an unknown transaction ref before NOT_FOUND",
        ge=1,
        le=10,
    )
    webhook_lookup_backoff_seconds: float = Field(
        default=0.2,
        description="Base backoff between lookups (doubles each try)",
        ge=0,
    )

    # Queries
    default_page_limit: int = Field(default=10, ge=1)
    max_page_limit: int = Field(default=100, ge=1)
