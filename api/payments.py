"""Payment routes: mobile-money initiation, lookups and status polling."""

from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.base import success_response
from core.errors import NotFoundError
from core.models import PaymentConfirmation, PaymentStatus


class InitiatePaymentRequest(BaseModel):
    invoice_id: UUID
    phone_number: str = Field(..., min_length=9, max_length=20)


def confirmation_data(confirmation: PaymentConfirmation) -> dict:
    return {
        "payment": confirmation.payment.model_dump(mode="json"),
        "invoice_status": confirmation.invoice_status.value if confirmation.invoice_status else None,
        "idempotent": confirmation.idempotent,
    }


def create_payments_router(services: dict) -> APIRouter:
    router = APIRouter()

    payment_svc = services["payment"]

    @router.post("/payments/initiate", status_code=201)
    def initiate_payment(request: Request, body: InitiatePaymentRequest):
        payment = payment_svc.initiate_payment(
            body.invoice_id,
            body.phone_number,
            user_id=getattr(request.state, "actor", None),
        )
        data = payment.model_dump(mode="json")
        data["message"] = "Payment request sent to your phone. Please approve to complete payment."
        return success_response(data, request).model_dump(mode="json")

    @router.get("/payments")
    def list_payments(
        request: Request,
        invoice_id: UUID | None = Query(None),
        status: PaymentStatus | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
    ):
        payments = payment_svc.list_payments(invoice_id=invoice_id, status=status, limit=limit)
        return success_response(
            [p.model_dump(mode="json") for p in payments],
            request,
        ).model_dump(mode="json")

    @router.get("/payments/{payment_id}")
    def get_payment(request: Request, payment_id: UUID):
        payment = payment_svc.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return success_response(payment.model_dump(mode="json"), request).model_dump(mode="json")

    @router.post("/payments/{transaction_ref}/poll")
    def poll_payment(request: Request, transaction_ref: str):
        confirmation = payment_svc.poll_payment_status(transaction_ref)
        return success_response(confirmation_data(confirmation), request).model_dump(mode="json")

    return router
