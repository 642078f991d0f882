"""Invoice routes: generation, queries, manual payment and voiding."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.base import success_response
from core.errors import NotFoundError
from core.models import Invoice, InvoiceQuery, InvoiceStatus, UnpaidInvoiceQuery


class GenerateInvoiceRequest(BaseModel):
    due_date: datetime | None = None


class MarkPaidRequest(BaseModel):
    amount: Decimal


class VoidInvoiceRequest(BaseModel):
    reason: str = Field(..., max_length=500)


def invoice_data(invoice: Invoice) -> dict:
    """Invoice as JSON, with the derived balance due."""
    data = invoice.model_dump(mode="json")
    data["balance_due"] = str(invoice.balance_due)
    return data


def _actor(request: Request) -> str | None:
    return getattr(request.state, "actor", None)


def create_invoices_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    @router.post("/invoices/orders/{order_id}", status_code=201)
    def generate_order_invoice(
        request: Request,
        order_id: UUID,
        body: GenerateInvoiceRequest | None = None,
    ):
        invoice = invoice_svc.generate_order_invoice(
            order_id,
            due_date=body.due_date if body else None,
            user_id=_actor(request),
        )
        return success_response(invoice_data(invoice), request).model_dump(mode="json")

    @router.post("/invoices/rentals/{rental_id}", status_code=201)
    def generate_rental_invoice(
        request: Request,
        rental_id: UUID,
        body: GenerateInvoiceRequest | None = None,
    ):
        invoice = invoice_svc.generate_rental_invoice(
            rental_id,
            due_date=body.due_date if body else None,
            user_id=_actor(request),
        )
        return success_response(invoice_data(invoice), request).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/reissue", status_code=201)
    def reissue_invoice(
        request: Request,
        invoice_id: UUID,
        body: GenerateInvoiceRequest | None = None,
    ):
        invoice = invoice_svc.reissue_invoice(
            invoice_id,
            due_date=body.due_date if body else None,
            user_id=_actor(request),
        )
        return success_response(invoice_data(invoice), request).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Queries (static paths before /invoices/{invoice_id})
    # -------------------------------------------------------------------------

    @router.get("/invoices")
    def list_invoices(
        request: Request,
        status: InvoiceStatus | None = Query(None),
        client_id: UUID | None = Query(None),
        site_id: UUID | None = Query(None),
        start_date: datetime | None = Query(None),
        end_date: datetime | None = Query(None),
        page: int = Query(1, ge=1),
        limit: int | None = Query(None, ge=1),
    ):
        result = invoice_svc.list_invoices(InvoiceQuery(
            status=status,
            client_id=client_id,
            site_id=site_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        ))
        return success_response(
            [invoice_data(i) for i in result.data],
            request,
            pagination=result.meta,
        ).model_dump(mode="json")

    @router.get("/invoices/unpaid")
    def unpaid_invoices(
        request: Request,
        site_id: UUID | None = Query(None),
        overdue_only: bool = Query(False),
        page: int = Query(1, ge=1),
        limit: int | None = Query(None, ge=1),
    ):
        report = invoice_svc.unpaid_report(UnpaidInvoiceQuery(
            site_id=site_id,
            overdue_only=overdue_only,
            page=page,
            limit=limit,
        ))
        return success_response(
            {
                "invoices": [row.model_dump(mode="json") for row in report.data],
                "summary": report.summary.model_dump(mode="json"),
            },
            request,
            pagination=report.meta,
        ).model_dump(mode="json")

    @router.get("/invoices/number/{invoice_number}")
    def get_invoice_by_number(
        request: Request,
        invoice_number: str,
        site_id: UUID | None = Query(None),
    ):
        invoice = invoice_svc.get_by_number(invoice_number, site_id=site_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_number)
        return success_response(invoice_data(invoice), request).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}")
    def get_invoice(
        request: Request,
        invoice_id: UUID,
        site_id: UUID | None = Query(None),
        client_id: UUID | None = Query(None),
    ):
        invoice = invoice_svc.get_by_id(invoice_id, site_id=site_id, client_id=client_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return success_response(invoice_data(invoice), request).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @router.post("/invoices/{invoice_id}/mark-paid")
    def mark_paid(request: Request, invoice_id: UUID, body: MarkPaidRequest):
        invoice = invoice_svc.mark_paid(invoice_id, body.amount, user_id=_actor(request))
        return success_response(invoice_data(invoice), request).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/void")
    def void_invoice(request: Request, invoice_id: UUID, body: VoidInvoiceRequest):
        invoice = invoice_svc.void_invoice(invoice_id, body.reason, user_id=_actor(request))
        return success_response(invoice_data(invoice), request).model_dump(mode="json")

    return router
