"""Service fixtures: database-backed services and seed data for orders and rentals."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock
from uuid import uuid4

import pytest

from utils.timezone import now_utc


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def published():
    """Events published on the bus, in order."""
    return []


@pytest.fixture
def event_bus(published):
    from core.event_bus import EventBus

    bus = EventBus()
    for name in ("InvoiceGenerated", "InvoicePaid", "InvoiceVoided", "PaymentSucceeded", "PaymentFailed"):
        bus.subscribe(name, published.append)
    return bus


@pytest.fixture
def audit(db):
    from core.audit import AuditLogger

    return AuditLogger(db)


@pytest.fixture
def invoice_service(db, audit, event_bus):
    from core.services.invoice_service import InvoiceService
    from core.services.sequence_service import SequenceAllocator
    from core.services.source_reader import PostgresSourceReader

    return InvoiceService(
        db, audit, event_bus,
        sequences=SequenceAllocator(db),
        sources=PostgresSourceReader(),
    )


@pytest.fixture
def momo():
    from clients.momo_client import MomoClient

    client = Mock(spec=MomoClient)
    client.is_configured.return_value = True
    client.request_to_pay.side_effect = lambda *args, **kwargs: str(uuid4())
    return client


@pytest.fixture
def payment_service(db, audit, event_bus, invoice_service, momo):
    from core.services.payment_service import PaymentService

    return PaymentService(db, audit, event_bus, invoice_service, momo=momo)


# =============================================================================
# SEED DATA
# =============================================================================


@pytest.fixture
def site(db):
    site_id = uuid4()
    db.execute("INSERT INTO sites (id, name) VALUES (%s, %s)", (site_id, "MoFresh Kigali"))
    return site_id


@pytest.fixture
def client_id():
    return uuid4()


@pytest.fixture
def make_order(db, site, client_id):
    """Insert an order with (name, quantity, unit price) items."""

    def _make(status="APPROVED", items=(("Milk", "10", "1000"), ("Cheese", "2", "5000"))):
        order_id = uuid4()
        db.execute(
            """
            INSERT INTO orders (id, site_id, client_id, status, approved_at)
            VALUES (%s, %s, %s, %s, now())
            """,
            (order_id, site, client_id, status)
        )
        for name, quantity, unit_price in items:
            product_id = uuid4()
            db.execute(
                """
                INSERT INTO products (id, site_id, name, unit, selling_price_per_unit)
                VALUES (%s, %s, %s, 'kg', %s)
                """,
                (product_id, site, name, Decimal(unit_price))
            )
            db.execute(
                """
                INSERT INTO order_items (id, order_id, product_id, quantity_kg, unit_price, subtotal)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (uuid4(), order_id, product_id, Decimal(quantity), Decimal(unit_price),
                 Decimal(quantity) * Decimal(unit_price))
            )
        return order_id

    return _make


@pytest.fixture
def make_rental(db, site, client_id):
    """Insert a cold-box rental."""

    def _make(status="APPROVED", fee="70000", days=7):
        cold_box_id = uuid4()
        db.execute(
            "INSERT INTO cold_boxes (id, site_id, identification_number) VALUES (%s, %s, %s)",
            (cold_box_id, site, "CB-001")
        )
        rental_id = uuid4()
        start = now_utc()
        db.execute(
            """
            INSERT INTO rentals (
                id, site_id, client_id, status, asset_type, cold_box_id,
                rental_start_date, rental_end_date, estimated_fee
            ) VALUES (%s, %s, %s, %s, 'COLD_BOX', %s, %s, %s, %s)
            """,
            (rental_id, site, client_id, status, cold_box_id,
             start, start + timedelta(days=days), Decimal(fee))
        )
        return rental_id

    return _make
