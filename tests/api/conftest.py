"""API test fixtures: TestClient over the real app with mocked services."""

from decimal import Decimal
from unittest.mock import Mock
from uuid import uuid4

import pytest
from starlette.testclient import TestClient

from clients.momo_client import MomoClient
from core.event_bus import EventBus
from core.models import Invoice, Payment
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from core.services.webhook_service import WebhookReconciler
from utils.timezone import now_utc, days_from_now


# =============================================================================
# MODEL FACTORIES
# =============================================================================


def make_invoice(**overrides) -> Invoice:
    now = now_utc()
    invoice_id = overrides.pop("id", uuid4())
    fields = dict(
        id=invoice_id,
        invoice_number="INV-MOFRESH_KIGALI-2026-00001",
        order_id=uuid4(),
        rental_id=None,
        client_id=uuid4(),
        site_id=uuid4(),
        subtotal=Decimal("20000.00"),
        tax_amount=Decimal("3600.00"),
        total_amount=Decimal("23600.00"),
        paid_amount=Decimal("0.00"),
        status="UNPAID",
        due_date=days_from_now(7, now),
        created_at=now,
        updated_at=now,
        items=[
            {
                "id": uuid4(), "invoice_id": invoice_id, "position": 1,
                "description": "Milk", "quantity": Decimal("10"), "unit": "kg",
                "unit_price": Decimal("1000.00"), "subtotal": Decimal("10000.00"),
                "created_at": now,
            },
            {
                "id": uuid4(), "invoice_id": invoice_id, "position": 2,
                "description": "Cheese", "quantity": Decimal("2"), "unit": "kg",
                "unit_price": Decimal("5000.00"), "subtotal": Decimal("10000.00"),
                "created_at": now,
            },
        ],
    )
    fields.update(overrides)
    return Invoice.model_validate(fields)


def make_payment(**overrides) -> Payment:
    now = now_utc()
    fields = dict(
        id=uuid4(),
        invoice_id=uuid4(),
        amount=Decimal("23600.00"),
        payment_method="MOBILE_MONEY",
        status="PENDING",
        momo_transaction_ref=str(uuid4()),
        phone_number="250788123456",
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return Payment.model_validate(fields)


# =============================================================================
# SERVICES
# =============================================================================


@pytest.fixture
def invoice_svc():
    return Mock(spec=InvoiceService)


@pytest.fixture
def payment_svc():
    return Mock(spec=PaymentService)


@pytest.fixture
def webhook_svc():
    return Mock(spec=WebhookReconciler)


@pytest.fixture
def momo_client():
    client = Mock(spec=MomoClient)
    client.verify_signature.return_value = True
    return client


@pytest.fixture
def services(invoice_svc, payment_svc, webhook_svc, momo_client):
    return {
        "invoice": invoice_svc,
        "payment": payment_svc,
        "webhook": webhook_svc,
        "momo": momo_client,
        "event_bus": EventBus(),
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    """Full billing app with middleware, error handlers and all routers."""
    from main import create_app

    return create_app(services)


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def invoice_factory():
    return make_invoice


@pytest.fixture
def payment_factory():
    return make_payment
