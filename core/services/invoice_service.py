"""
Invoice ledger.

Issues invoices from approved orders and rentals, applies payments and voids
them. Every mutation is one transaction: the invoice row, its items, its
number and its audit entry commit together or not at all. Events are
published after commit.

Generation locks in a fixed order: source row (FOR SHARE), then the sequence
counter, then the invoice insert. Payments and voids lock the invoice row
FOR UPDATE.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator
from uuid import UUID, uuid4

from psycopg2.errors import LockNotAvailable, UniqueViolation

from clients.postgres_client import PostgresClient, Transaction
from core.audit import AuditLogger, AuditAction
from core.config import BillingConfig
from core.contracts import InvoiceIssuer, InvoiceSourceReader
from core.errors import (
    DuplicateInvoiceError, InvalidTransitionError, NotFoundError,
    OverpaymentError, TransientLockError, ValidationFailedError,
)
from core.event_bus import EventBus
from core.events import InvoiceGenerated, InvoicePaid, InvoiceVoided, PaymentSucceeded
from core.models import (
    Invoice, InvoiceDraft, InvoiceStatus, derive_status,
    Payment, PaymentMethod, PaymentStatus,
    InvoiceQuery, UnpaidInvoiceQuery, Page, PageMeta,
    UnpaidInvoiceRow, UnpaidInvoiceSummary, UnpaidInvoiceReport,
)
from core.services.invoice_builder import (
    InvoiceBuilder, quantize_money,
    ORDER_INVOICEABLE, ORDER_REISSUABLE, RENTAL_INVOICEABLE, RENTAL_REISSUABLE,
)
from core.services.sequence_service import SequenceAllocator, format_invoice_number
from utils.timezone import now_utc, days_overdue
from utils.user_context import get_current_actor

logger = logging.getLogger(__name__)

# Partial unique indexes enforcing one non-void invoice per source
_ACTIVE_INVOICE_INDEXES = {
    "invoices_order_active": "order",
    "invoices_rental_active": "rental",
}

_OPEN_STATUSES = (InvoiceStatus.UNPAID.value, InvoiceStatus.PARTIALLY_PAID.value)


@contextmanager
def translate_db_errors(source_type: str | None = None, source_id: UUID | None = None) -> Iterator[None]:
    """
    Map lock timeouts and one-invoice-per-source violations to billing errors.

    Wrap it around a whole transaction() block so the rollback has happened
    by the time the billing error surfaces.
    """
    try:
        yield
    except LockNotAvailable:
        raise TransientLockError("Invoice is locked by another operation; retry the request")
    except UniqueViolation as e:
        constraint = getattr(e.diag, "constraint_name", None)
        if constraint in _ACTIVE_INVOICE_INDEXES and source_id is not None:
            raise DuplicateInvoiceError(source_type or _ACTIVE_INVOICE_INDEXES[constraint], source_id)
        raise


def _actor(user_id: UUID | str | None) -> str:
    return str(user_id) if user_id is not None else get_current_actor()


class InvoiceService(InvoiceIssuer):
    """Invoice lifecycle: generation, payment application, voiding and queries."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        sequences: SequenceAllocator,
        sources: InvoiceSourceReader,
        config: BillingConfig | None = None,
        builder: InvoiceBuilder | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.sequences = sequences
        self.sources = sources
        self.config = config or BillingConfig()
        self.builder = builder or InvoiceBuilder(self.config)

    # =========================================================================
    # GENERATION
    # =========================================================================

    def generate_order_invoice(
        self,
        order_id: UUID,
        due_date: datetime | None = None,
        user_id: UUID | None = None,
    ) -> Invoice:
        """
        Issue the invoice for an APPROVED order.

        Args:
            order_id: Order to bill
            due_date: Optional due date (defaults to now + default_due_days)
            user_id: Actor recorded in the audit log

        Returns:
            Created invoice in UNPAID status with its items

        Raises:
            NotFoundError: Order or its site does not exist
            InvalidStatusError: Order is not APPROVED
            NoBillableItemsError: Order has no items
            DuplicateInvoiceError: A non-void invoice already bills this order
            TransientLockError: Number allocation or source lock timed out
        """
        return self._generate("order", order_id, due_date, user_id)

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
        return self._generate("rental", rental_id, due_date, user_id)

    def reissue_invoice(
        self,
        invoice_id: UUID,
        due_date: datetime | None = None,
        user_id: UUID | None = None,
    ) -> Invoice:
        """
        Bill the source of a voided invoice again under a fresh number.

        The source may have moved past its invoiceable status (an INVOICED or
        COMPLETED order, a COMPLETED rental) and is still re-billable.

        Raises:
            NotFoundError: Invoice does not exist
            InvalidTransitionError: Invoice is not VOID
            DuplicateInvoiceError: The source already has a non-void invoice
        """
        voided = self.get_by_id(invoice_id)
        if voided is None:
            raise NotFoundError("Invoice", invoice_id)

        if voided.status != InvoiceStatus.VOID:
            raise InvalidTransitionError(
                f"Invoice {voided.invoice_number} is {voided.status.value}; only VOID invoices can be reissued"
            )

        return self._generate(
            voided.source_type, voided.source_id, due_date, user_id, reissued_from=voided.id
        )

    def _generate(
        self,
        source_type: str,
        source_id: UUID,
        due_date: datetime | None,
        user_id: UUID | None,
        reissued_from: UUID | None = None,
    ) -> Invoice:
        reissue = reissued_from is not None

        with translate_db_errors(source_type, source_id):
            with self.postgres.transaction(lock_timeout_ms=self.config.invoice_lock_timeout_ms) as tx:
                draft = self._build_draft(tx, source_type, source_id, due_date, reissue)
                last_voided = self._ensure_no_active_invoice(tx, source_type, source_id, allow_voided=reissue)
                invoice = self._persist(tx, draft, user_id, reissued_from or last_voided)

        logger.info(
            f"Generated invoice {invoice.invoice_number} for {source_type} {source_id} "
            f"(total {invoice.total_amount})"
        )
        self.event_bus.publish(InvoiceGenerated.create(invoice=invoice))

        return invoice

    def _build_draft(
        self,
        tx: Transaction,
        source_type: str,
        source_id: UUID,
        due_date: datetime | None,
        reissue: bool,
    ) -> InvoiceDraft:
        if source_type == "order":
            order = self.sources.get_order(tx, source_id)
            if order is None:
                raise NotFoundError("Order", source_id)
            eligible = ORDER_REISSUABLE if reissue else ORDER_INVOICEABLE
            return self.builder.build_order_draft(order, due_date, eligible=eligible)

        rental = self.sources.get_rental(tx, source_id)
        if rental is None:
            raise NotFoundError("Rental", source_id)
        eligible = RENTAL_REISSUABLE if reissue else RENTAL_INVOICEABLE
        return self.builder.build_rental_draft(rental, due_date, eligible=eligible)

    def _ensure_no_active_invoice(
        self,
        tx: Transaction,
        source_type: str,
        source_id: UUID,
        allow_voided: bool = False,
    ) -> UUID | None:
        """
        Refuse a second live invoice for the same source.

        Returns the most recent voided invoice id when rebilling after a void
        is allowed, else None. The partial unique index backs this check up
        against concurrent inserts.
        """
        column = "order_id" if source_type == "order" else "rental_id"
        rows = tx.execute(
            f"""
            SELECT id, invoice_number, status FROM invoices
            WHERE {column} = %s AND deleted_at IS NULL
            ORDER BY created_at DESC
            """,
            (source_id,)
        )

        for row in rows:
            if row["status"] != InvoiceStatus.VOID.value:
                raise DuplicateInvoiceError(
                    source_type, source_id, f"Existing invoice: {row['invoice_number']}"
                )

        if not rows:
            return None

        if not (allow_voided or self.config.auto_reissue_after_void):
            raise DuplicateInvoiceError(
                source_type,
                source_id,
                f"Invoice {rows[0]['invoice_number']} was voided; reissue it to bill again",
            )

        return rows[0]["id"]

    def _persist(
        self,
        tx: Transaction,
        draft: InvoiceDraft,
        user_id: UUID | None,
        reissued_from: UUID | None = None,
    ) -> Invoice:
        """Allocate the number and insert invoice, items and audit entry."""
        site_name = self.sources.get_site_name(tx, draft.site_id)
        if site_name is None:
            raise NotFoundError("Site", draft.site_id)

        now = now_utc()
        sequence = self.sequences.allocate(tx, draft.site_id, now.year)
        invoice_number = format_invoice_number(site_name, now.year, sequence)
        invoice_id = uuid4()

        row = tx.execute_single(
            """
            INSERT INTO invoices (
                id, invoice_number, order_id, rental_id, client_id, site_id,
                subtotal, tax_amount, total_amount, paid_amount, status,
                due_date, reissued_from, created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s, %s,
                %s, %s, %s, %s, %s,
                %s, %s, %s, %s
            )
            RETURNING *
            """,
            (
                invoice_id, invoice_number, draft.order_id, draft.rental_id, draft.client_id, draft.site_id,
                draft.subtotal, draft.tax_amount, draft.total_amount, Decimal("0.00"), InvoiceStatus.UNPAID.value,
                draft.due_date, reissued_from, now, now
            )
        )

        items = [
            tx.execute_single(
                """
                INSERT INTO invoice_items (
                    id, invoice_id, position, description, quantity, unit, unit_price, subtotal, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(), invoice_id, position, item.description, item.quantity,
                    item.unit, item.unit_price, item.subtotal, now
                )
            )
            for position, item in enumerate(draft.items, start=1)
        ]

        invoice = Invoice.model_validate({**row, "items": items})

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={
                "invoice_number": invoice_number,
                "source": {"type": invoice.source_type, "id": str(invoice.source_id)},
                "subtotal": str(invoice.subtotal),
                "tax_amount": str(invoice.tax_amount),
                "total_amount": str(invoice.total_amount),
                "due_date": invoice.due_date.isoformat(),
                "item_count": len(items),
                "reissued_from": str(reissued_from) if reissued_from else None,
            },
            user_id=user_id,
            tx=tx,
        )

        return invoice

    # =========================================================================
    # PAYMENTS AND VOIDS
    # =========================================================================

    def apply_payment(
        self,
        tx: Transaction,
        invoice_id: UUID,
        amount: Decimal,
        user_id: UUID | str | None = None,
        payment_id: UUID | None = None,
    ) -> tuple[Invoice, Decimal]:
        """
        Add a settled amount to an invoice inside the caller's transaction.

        Locks the invoice row, recomputes status from paid vs total and writes
        a PAYMENT_RECEIVED audit entry. The caller records the matching
        payments row in the same transaction, with `amount - excess` as the
        applied amount and the excess kept apart.

        Returns:
            (updated invoice, tolerated excess not applied to the invoice)

        Raises:
            ValidationFailedError: Amount is not positive
            NotFoundError: Invoice does not exist
            InvalidTransitionError: Invoice is PAID or VOID
            OverpaymentError: Amount exceeds the balance due beyond tolerance
        """
        if amount is None or amount <= 0:
            raise ValidationFailedError("Payment amount must be positive")
        amount = quantize_money(amount)

        current = self._lock_invoice(tx, invoice_id)

        if current.status.is_terminal:
            raise InvalidTransitionError(
                f"Invoice {current.invoice_number} is {current.status.value} and cannot accept payments"
            )

        new_paid = current.paid_amount + amount
        excess = max(new_paid - current.total_amount, Decimal("0.00"))
        if excess > self.config.overpayment_tolerance:
            raise OverpaymentError(current.invoice_number, excess, current.balance_due)

        # Tolerated excess is not carried on the invoice
        new_paid -= excess
        new_status = derive_status(new_paid, current.total_amount)
        now = now_utc()
        paid_at = now if new_status == InvoiceStatus.PAID else current.paid_at

        row = tx.execute_single(
            """
            UPDATE invoices
            SET paid_amount = %s, status = %s, paid_at = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (new_paid, new_status.value, paid_at, now, current.id)
        )

        self.audit.log_change(
            entity_type="invoice",
            entity_id=current.id,
            action=AuditAction.PAYMENT_RECEIVED,
            changes={
                "amount": str(amount),
                "payment_id": str(payment_id) if payment_id else None,
                "paid_amount": {"old": str(current.paid_amount), "new": str(new_paid)},
                "status": {"old": current.status.value, "new": new_status.value},
                "excess": str(excess) if excess > 0 else None,
            },
            user_id=user_id,
            tx=tx,
        )

        invoice = Invoice.model_validate({**row, "items": self._load_items(tx, [current.id]).get(row["id"], [])})
        return invoice, excess

    def mark_paid(self, invoice_id: UUID, amount: Decimal, user_id: UUID | None = None) -> Invoice:
        """
        Record a staff-confirmed payment against an invoice.

        Writes a SUCCESSFUL MANUAL payment row alongside the invoice update so
        paid_amount always equals the sum of successful payments.

        Returns:
            Updated invoice (PARTIALLY_PAID or PAID)

        Raises:
            ValidationFailedError, NotFoundError, InvalidTransitionError,
            OverpaymentError, TransientLockError
        """
        payment_id = uuid4()
        actor = _actor(user_id)

        with translate_db_errors():
            with self.postgres.transaction(lock_timeout_ms=self.config.invoice_lock_timeout_ms) as tx:
                invoice, excess = self.apply_payment(tx, invoice_id, amount, actor, payment_id)
                now = now_utc()
                payment_row = tx.execute_single(
                    """
                    INSERT INTO payments (
                        id, invoice_id, amount, excess_amount, payment_method, status,
                        recorded_by, paid_at, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        payment_id, invoice.id, quantize_money(amount) - excess, excess,
                        PaymentMethod.MANUAL.value, PaymentStatus.SUCCESSFUL.value,
                        actor, now, now, now
                    )
                )

        payment = Payment.model_validate(payment_row)
        logger.info(
            f"Recorded manual payment of {payment.amount} on invoice "
            f"{invoice.invoice_number} (now {invoice.status.value})"
        )

        self.event_bus.publish(PaymentSucceeded.create(payment=payment))
        if invoice.status == InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=invoice))

        return invoice

    def void_invoice(self, invoice_id: UUID, reason: str, user_id: UUID | None = None) -> Invoice:
        """
        Void an UNPAID or PARTIALLY_PAID invoice.

        Frees the source order or rental to be billed again. Amounts already
        paid stay on the voided invoice.

        Raises:
            ValidationFailedError: Reason shorter than min_void_reason_length
            NotFoundError: Invoice does not exist
            InvalidTransitionError: Invoice is already PAID or VOID
        """
        reason = (reason or "").strip()
        if len(reason) < self.config.min_void_reason_length:
            raise ValidationFailedError(
                f"Void reason must be at least {self.config.min_void_reason_length} characters"
            )

        with translate_db_errors():
            with self.postgres.transaction(lock_timeout_ms=self.config.invoice_lock_timeout_ms) as tx:
                current = self._lock_invoice(tx, invoice_id)

                if current.status.is_terminal:
                    raise InvalidTransitionError(
                        f"Invoice {current.invoice_number} is {current.status.value} and cannot be voided"
                    )

                now = now_utc()
                row = tx.execute_single(
                    """
                    UPDATE invoices
                    SET status = %s, voided_at = %s, void_reason = %s, updated_at = %s
                    WHERE id = %s
                    RETURNING *
                    """,
                    (InvoiceStatus.VOID.value, now, reason, now, current.id)
                )

                self.audit.log_change(
                    entity_type="invoice",
                    entity_id=current.id,
                    action=AuditAction.VOID,
                    changes={
                        "status": {"old": current.status.value, "new": InvoiceStatus.VOID.value},
                        "reason": reason,
                        "paid_amount": str(current.paid_amount),
                    },
                    user_id=user_id,
                    tx=tx,
                )

                items = self._load_items(tx, [current.id]).get(row["id"], [])

        voided = Invoice.model_validate({**row, "items": items})
        logger.info(f"Voided invoice {voided.invoice_number}: {reason}")
        self.event_bus.publish(InvoiceVoided.create(invoice=voided, reason=reason))

        return voided

    def _lock_invoice(self, tx: Transaction, invoice_id: UUID) -> Invoice:
        row = tx.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
            (invoice_id,)
        )
        if row is None:
            raise NotFoundError("Invoice", invoice_id)
        return Invoice.model_validate(row)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_by_id(
        self,
        invoice_id: UUID,
        site_id: UUID | None = None,
        client_id: UUID | None = None,
    ) -> Invoice | None:
        """
        Get invoice by ID, optionally scoped to a site or client.

        Returns:
            Invoice with items if found within scope, None otherwise.
        """
        conditions = ["id = %s", "deleted_at IS NULL"]
        params: list = [invoice_id]
        if site_id is not None:
            conditions.append("site_id = %s")
            params.append(site_id)
        if client_id is not None:
            conditions.append("client_id = %s")
            params.append(client_id)

        row = self.postgres.execute_single(
            f"SELECT * FROM invoices WHERE {' AND '.join(conditions)}",
            tuple(params)
        )
        if row is None:
            return None

        return self._with_items([row])[0]

    def get_by_number(self, invoice_number: str, site_id: UUID | None = None) -> Invoice | None:
        conditions = ["invoice_number = %s", "deleted_at IS NULL"]
        params: list = [invoice_number]
        if site_id is not None:
            conditions.append("site_id = %s")
            params.append(site_id)

        row = self.postgres.execute_single(
            f"SELECT * FROM invoices WHERE {' AND '.join(conditions)}",
            tuple(params)
        )
        if row is None:
            return None

        return self._with_items([row])[0]

    def list_invoices(self, query: InvoiceQuery) -> Page[Invoice]:
        """
        Paginated invoice listing, newest first.

        Args:
            query: Filters on status, client, site and created_at range

        Returns:
            Page of invoices with total/page/limit/total_pages
        """
        limit = self._page_limit(query.limit)
        conditions = ["deleted_at IS NULL"]
        params: list = []

        if query.status is not None:
            conditions.append("status = %s")
            params.append(query.status.value)
        if query.client_id is not None:
            conditions.append("client_id = %s")
            params.append(query.client_id)
        if query.site_id is not None:
            conditions.append("site_id = %s")
            params.append(query.site_id)
        if query.start_date is not None:
            conditions.append("created_at >= %s")
            params.append(query.start_date)
        if query.end_date is not None:
            conditions.append("created_at <= %s")
            params.append(query.end_date)

        where = " AND ".join(conditions)
        total = self.postgres.execute_scalar(f"SELECT COUNT(*) FROM invoices WHERE {where}", tuple(params))

        rows = self.postgres.execute(
            f"""
            SELECT * FROM invoices
            WHERE {where}
            ORDER BY created_at DESC, invoice_number DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params + [limit, (query.page - 1) * limit])
        )

        return Page[Invoice](
            data=self._with_items(rows),
            meta=PageMeta.build(total or 0, query.page, limit),
        )

    def unpaid_report(self, query: UnpaidInvoiceQuery, now: datetime | None = None) -> UnpaidInvoiceReport:
        """
        Open invoices (UNPAID or PARTIALLY_PAID), earliest due first.

        An invoice is overdue once its due date has passed. Rows carry the
        balance due and whole days overdue; the summary aggregates over every
        matching invoice, not just the page.
        """
        now = now or now_utc()
        limit = self._page_limit(query.limit)

        conditions = ["i.status IN (%s, %s)", "i.deleted_at IS NULL"]
        params: list = list(_OPEN_STATUSES)
        if query.site_id is not None:
            conditions.append("i.site_id = %s")
            params.append(query.site_id)
        if query.overdue_only:
            conditions.append("i.due_date < %s")
            params.append(now)
        where = " AND ".join(conditions)

        summary_row = self.postgres.execute_single(
            f"""
            SELECT
                COUNT(*) AS total_unpaid_invoices,
                COALESCE(SUM(i.total_amount - i.paid_amount), 0) AS total_balance_due,
                COUNT(*) FILTER (WHERE i.due_date < %s) AS total_overdue_invoices,
                COALESCE(SUM(i.total_amount - i.paid_amount) FILTER (WHERE i.due_date < %s), 0)
                    AS total_overdue_amount
            FROM invoices i
            WHERE {where}
            """,
            tuple([now, now] + params)
        )

        rows = self.postgres.execute(
            f"""
            SELECT i.id, i.invoice_number, i.client_id, i.site_id, s.name AS site_name,
                   i.order_id, i.rental_id, i.total_amount, i.paid_amount,
                   i.total_amount - i.paid_amount AS balance_due,
                   i.due_date, i.status, i.created_at
            FROM invoices i
            LEFT JOIN sites s ON s.id = i.site_id
            WHERE {where}
            ORDER BY i.due_date ASC, i.created_at ASC
            LIMIT %s OFFSET %s
            """,
            tuple(params + [limit, (query.page - 1) * limit])
        )

        data = [
            UnpaidInvoiceRow.model_validate({**row, "days_overdue": days_overdue(row["due_date"], now)})
            for row in rows
        ]

        summary = UnpaidInvoiceSummary.model_validate(summary_row)

        return UnpaidInvoiceReport(
            data=data,
            summary=summary,
            meta=PageMeta.build(summary.total_unpaid_invoices, query.page, limit),
        )

    def _page_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.config.default_page_limit
        return max(1, min(limit, self.config.max_page_limit))

    def _with_items(self, rows: list[dict]) -> list[Invoice]:
        items = self._load_items(self.postgres, [row["id"] for row in rows])
        return [Invoice.model_validate({**row, "items": items.get(row["id"], [])}) for row in rows]

    @staticmethod
    def _load_items(executor: PostgresClient | Transaction, invoice_ids: list) -> dict:
        """Items for the given invoices keyed by invoice id, in line order."""
        if not invoice_ids:
            return {}

        rows = executor.execute(
            """
            SELECT * FROM invoice_items
            WHERE invoice_id = ANY(%s::uuid[])
            ORDER BY invoice_id, position
            """,
            ([str(invoice_id) for invoice_id in invoice_ids],)
        )

        by_invoice: dict = {}
        for row in rows:
            by_invoice.setdefault(row["invoice_id"], []).append(row)
        return by_invoice
