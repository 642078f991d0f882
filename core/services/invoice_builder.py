"""
Invoice assembly from orders and rentals.

Pure computation: validates that a source can be billed and produces an
InvoiceDraft (lines, subtotal, tax, total, due date). Persistence and number
allocation happen in InvoiceService.

Money is rounded half-up to two places. Order lines bill quantity x unit
price. A rental bills one line whose subtotal is the rental fee itself; its
unit price is fee / days and may not multiply back exactly.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from core.config import BillingConfig
from core.errors import InvalidStatusError, NoBillableItemsError, ValidationFailedError
from core.models import (
    InvoiceDraft, InvoiceItemDraft,
    OrderView, OrderStatus,
    RentalView, RentalStatus,
)
from utils.timezone import now_utc, to_utc, days_from_now, billable_days

CENT = Decimal("0.01")

ORDER_INVOICEABLE = frozenset({OrderStatus.APPROVED})
RENTAL_INVOICEABLE = frozenset({RentalStatus.APPROVED, RentalStatus.ACTIVE})

# A voided invoice may be reissued after the source has moved on.
ORDER_REISSUABLE = frozenset({OrderStatus.APPROVED, OrderStatus.INVOICED, OrderStatus.COMPLETED})
RENTAL_REISSUABLE = frozenset({RentalStatus.APPROVED, RentalStatus.ACTIVE, RentalStatus.COMPLETED})


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_tax(subtotal: Decimal, rate: Decimal) -> Decimal:
    return quantize_money(subtotal * rate)


class InvoiceBuilder:
    """Turns billable sources into invoice drafts."""

    def __init__(self, config: BillingConfig | None = None):
        self.config = config or BillingConfig()

    def resolve_due_date(self, due_date: datetime | None, now: datetime | None = None) -> datetime:
        """Supplied due date in UTC, else now + default_due_days."""
        if due_date is None:
            return days_from_now(self.config.default_due_days, now)
        try:
            return to_utc(due_date)
        except ValueError as e:
            raise ValidationFailedError(f"Invalid due date: {e}")

    def build_order_draft(
        self,
        order: OrderView,
        due_date: datetime | None = None,
        eligible: frozenset[OrderStatus] = ORDER_INVOICEABLE,
        now: datetime | None = None,
    ) -> InvoiceDraft:
        """
        Draft the invoice for an order: one line per order item.

        Raises:
            InvalidStatusError: Order deleted or not in an eligible status
            NoBillableItemsError: Order has no items or bills nothing
        """
        if order.deleted_at is not None:
            raise InvalidStatusError(f"Order {order.id} has been deleted and cannot be invoiced")

        if order.status not in eligible:
            allowed = ", ".join(sorted(s.value for s in eligible))
            raise InvalidStatusError(
                f"Order must be {allowed} before generating invoice. "
                f"Current status: {order.status.value}"
            )

        if not order.items:
            raise NoBillableItemsError(f"Order {order.id} has no items. Cannot generate invoice.")

        items = [
            InvoiceItemDraft(
                description=item.product_name,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=quantize_money(item.unit_price),
                subtotal=quantize_money(item.quantity * item.unit_price),
            )
            for item in order.items
        ]

        return self._draft(
            items,
            due_date,
            now,
            order_id=order.id,
            client_id=order.client_id,
            site_id=order.site_id,
        )

    def build_rental_draft(
        self,
        rental: RentalView,
        due_date: datetime | None = None,
        eligible: frozenset[RentalStatus] = RENTAL_INVOICEABLE,
        now: datetime | None = None,
    ) -> InvoiceDraft:
        """
        Draft the invoice for a rental: a single "{Asset} Rental - {id}" line.

        Raises:
            InvalidStatusError: Rental deleted or not in an eligible status
            NoBillableItemsError: No single attached asset, no fee, or an
                end date before the start date
        """
        if rental.deleted_at is not None:
            raise InvalidStatusError(f"Rental {rental.id} has been deleted and cannot be invoiced")

        if rental.status not in eligible:
            allowed = ", ".join(sorted(s.value for s in eligible))
            raise InvalidStatusError(
                f"Rental must be {allowed} before generating invoice. "
                f"Current status: {rental.status.value}"
            )

        assets = rental.attached_assets()
        if not assets:
            raise NoBillableItemsError(f"Rental {rental.id} has no associated asset")
        if len(assets) > 1:
            raise NoBillableItemsError(
                f"Rental {rental.id} references {len(assets)} assets; exactly one is required"
            )
        asset_type, identifier = assets[0]

        fee = rental.fee
        if fee is None or fee <= 0:
            raise NoBillableItemsError(f"Rental {rental.id} has no fee to bill")
        fee = quantize_money(fee)

        try:
            days = billable_days(rental.rental_start_date, rental.rental_end_date)
        except ValueError as e:
            raise NoBillableItemsError(f"Invalid rental duration for rental {rental.id}: {e}")

        item = InvoiceItemDraft(
            description=f"{asset_type.label} Rental - {identifier or 'N/A'}",
            quantity=Decimal(days),
            unit="days",
            unit_price=quantize_money(fee / days),
            subtotal=fee,
        )

        return self._draft(
            [item],
            due_date,
            now,
            rental_id=rental.id,
            client_id=rental.client_id,
            site_id=rental.site_id,
        )

    def _draft(self, items: list[InvoiceItemDraft], due_date, now, **source) -> InvoiceDraft:
        subtotal = sum((item.subtotal for item in items), Decimal("0.00"))
        if subtotal <= 0:
            raise NoBillableItemsError("Invoice subtotal is zero; nothing to bill")

        tax_amount = calculate_tax(subtotal, self.config.tax_rate)

        return InvoiceDraft(
            **source,
            subtotal=subtotal,
            tax_amount=tax_amount,
            total_amount=subtotal + tax_amount,
            due_date=self.resolve_due_date(due_date, now or now_utc()),
            items=items,
        )
