"""Core domain models."""

from core.models.invoice import (
    Invoice, InvoiceDraft, InvoiceItem, InvoiceItemDraft, InvoiceStatus, derive_status,
)
from core.models.payment import (
    Payment, PaymentStatus, PaymentMethod, PaymentConfirmation,
    MomoWebhookPayload, WebhookResult,
)
from core.models.source import (
    OrderView, OrderItemView, OrderStatus,
    RentalView, RentalStatus, AssetType,
)
from core.models.query import (
    InvoiceQuery, UnpaidInvoiceQuery, Page, PageMeta,
    UnpaidInvoiceRow, UnpaidInvoiceSummary, UnpaidInvoiceReport,
)

__all__ = [
    # Invoice
    "Invoice", "InvoiceDraft", "InvoiceItem", "InvoiceItemDraft", "InvoiceStatus", "derive_status",
    # Payment
    "Payment", "PaymentStatus", "PaymentMethod", "PaymentConfirmation",
    "MomoWebhookPayload", "WebhookResult",
    # Sources
    "OrderView", "OrderItemView", "OrderStatus",
    "RentalView", "RentalStatus", "AssetType",
    # Queries
    "InvoiceQuery", "UnpaidInvoiceQuery", "Page", "PageMeta",
    "UnpaidInvoiceRow", "UnpaidInvoiceSummary", "UnpaidInvoiceReport",
]
