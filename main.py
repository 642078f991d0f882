"""
Billing API application factory.

Run with an ASGI server in factory mode, e.g.:
    uvicorn main:create_app --factory

Secrets (database URL, MoMo credentials) come from Vault; VAULT_* settings
may be supplied through a .env file.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from api.errors import register_error_handlers
from api.invoices import create_invoices_router
from api.middleware import ActorMiddleware, RequestIDMiddleware
from api.payments import create_payments_router
from api.webhooks import create_webhooks_router
from clients.momo_client import MomoClient, MomoConfig
from clients.postgres_client import PostgresClient
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.services.invoice_builder import InvoiceBuilder
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from core.services.sequence_service import SequenceAllocator
from core.services.source_reader import PostgresSourceReader
from core.services.webhook_service import WebhookReconciler

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def load_momo_client() -> MomoClient:
    """MoMo client from Vault settings; an unconfigured client if the secret is absent."""
    from clients.vault_client import get_momo_config

    try:
        return MomoClient.from_config(get_momo_config())
    except (KeyError, PermissionError) as e:
        logger.warning(f"MTN MoMo configuration unavailable ({e}); mobile money disabled")
        return MomoClient(MomoConfig())


def build_services(
    postgres: PostgresClient,
    momo: MomoClient,
    config: BillingConfig | None = None,
    event_bus: EventBus | None = None,
) -> dict:
    """
    Wire the billing services around one database and provider client.

    Nothing subscribes to the event bus here. Order, rental and notification
    modules hosting the billing core pass their own bus, or subscribe on the
    returned "event_bus", to react to InvoiceGenerated, InvoicePaid and the
    other billing events.
    """
    config = config or BillingConfig()
    event_bus = event_bus or EventBus()
    audit = AuditLogger(postgres)

    invoices = InvoiceService(
        postgres,
        audit,
        event_bus,
        sequences=SequenceAllocator(postgres, config),
        sources=PostgresSourceReader(),
        config=config,
        builder=InvoiceBuilder(config),
    )
    payments = PaymentService(postgres, audit, event_bus, invoices, momo=momo, config=config)

    return {
        "invoice": invoices,
        "payment": payments,
        "webhook": WebhookReconciler(payments, config),
        "momo": momo,
        "event_bus": event_bus,
    }


def create_app(services: dict | None = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Pre-built services (tests); built from Vault config otherwise
    """
    if services is None:
        load_dotenv(Path(__file__).parent / ".env")
        configure_logging()

        from clients.vault_client import get_database_url

        postgres = PostgresClient(get_database_url())
        services = build_services(postgres, load_momo_client())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        PostgresClient.close_all_pools()

    app = FastAPI(
        title="Cold-Chain Billing API",
        description="Invoice generation and payment settlement",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(ActorMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {"status": "ok"}

    app.include_router(create_invoices_router(services), prefix="/api")
    app.include_router(create_payments_router(services), prefix="/api")
    app.include_router(create_webhooks_router(services), prefix="/api")

    return app
