"""
Boundaries between the billing core and the Order/Rental modules.

Order and Rental modules depend on InvoiceIssuer and call it after they have
reserved resources and moved their entity to an invoiceable state:

    1. reserve stock / mark asset RENTED
    2. set status APPROVED
    3. issuer.generate_order_invoice(...) / issuer.generate_rental_invoice(...)
    4. optionally advance status (INVOICED / ACTIVE)

If step 3 raises, the caller rolls back steps 1-2. The issuer checks the
source state itself and refuses anything not invoiceable, so out-of-order
calls fail with INVALID_STATUS instead of producing an invoice.

The core reads order and rental data only through InvoiceSourceReader.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from clients.postgres_client import Transaction
from core.models import Invoice, OrderView, RentalView


class InvoiceIssuer(ABC):
    """Invoice generation entry points consumed by Order and Rental modules."""

    @abstractmethod
    def generate_order_invoice(
        self,
        order_id: UUID,
        due_date: datetime | None = None,
        user_id: UUID | None = None,
    ) -> Invoice:
        """
        Issue the invoice for an APPROVED order.

        Raises:
            NotFoundError, InvalidStatusError, NoBillableItemsError,
            DuplicateInvoiceError, TransientLockError
        """

    @abstractmethod
    def generate_rental_invoice(
        self,
        rental_id: UUID,
        due_date: datetime | None = None,
        user_id: UUID | None = None,
    ) -> Invoice:
        """
        Issue the invoice for an APPROVED or ACTIVE rental.

        Raises:
            NotFoundError, InvalidStatusError, NoBillableItemsError,
            DuplicateInvoiceError, TransientLockError
        """


class InvoiceSourceReader(ABC):
    """Read-only access to the entities invoices are billed from."""

    @abstractmethod
    def get_order(self, tx: Transaction, order_id: UUID) -> OrderView | None:
        """Order with its items, or None if it does not exist."""

    @abstractmethod
    def get_rental(self, tx: Transaction, rental_id: UUID) -> RentalView | None:
        """Rental with its attached asset, or None if it does not exist."""

    @abstractmethod
    def get_site_name(self, tx: Transaction, site_id: UUID) -> str | None:
        """Display name of a site, or None if it does not exist."""
