"""Query and report models for the invoice ledger."""

import math
from datetime import datetime
from decimal import Decimal
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.models.invoice import InvoiceStatus

T = TypeVar("T")


class InvoiceQuery(BaseModel):
    """Filters for the paginated invoice listing. Dates bound created_at."""

    status: InvoiceStatus | None = None
    client_id: UUID | None = None
    site_id: UUID | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = Field(1, ge=1)
    limit: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def check_date_range(self) -> "InvoiceQuery":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class UnpaidInvoiceQuery(BaseModel):
    site_id: UUID | None = None
    overdue_only: bool = False
    page: int = Field(1, ge=1)
    limit: int | None = Field(None, ge=1)


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "PageMeta":
        return cls(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit))


class Page(BaseModel, Generic[T]):
    data: list[T]
    meta: PageMeta


class UnpaidInvoiceRow(BaseModel):
    id: UUID
    invoice_number: str
    client_id: UUID
    site_id: UUID
    site_name: str | None = None
    order_id: UUID | None = None
    rental_id: UUID | None = None
    total_amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    due_date: datetime
    days_overdue: int
    status: InvoiceStatus
    created_at: datetime


class UnpaidInvoiceSummary(BaseModel):
    total_unpaid_invoices: int
    total_balance_due: Decimal
    total_overdue_invoices: int
    total_overdue_amount: Decimal


class UnpaidInvoiceReport(BaseModel):
    data: list[UnpaidInvoiceRow]
    summary: UnpaidInvoiceSummary
    meta: PageMeta
