"""
PostgreSQL implementation of InvoiceSourceReader.

Orders and rentals are read with FOR SHARE so their status cannot change
under an invoice transaction. This is the first lock taken in every
generation, ahead of the sequence counter and the invoice insert.
"""

from uuid import UUID

from clients.postgres_client import Transaction
from core.contracts import InvoiceSourceReader
from core.models import OrderView, OrderItemView, RentalView


class PostgresSourceReader(InvoiceSourceReader):
    """Reads orders, rentals and sites owned by the operations modules."""

    def get_order(self, tx: Transaction, order_id: UUID) -> OrderView | None:
        row = tx.execute_single(
            """
            SELECT id, site_id, client_id, status, approved_by, approved_at, deleted_at
            FROM orders
            WHERE id = %s
            FOR SHARE
            """,
            (order_id,)
        )
        if row is None:
            return None

        items = tx.execute(
            """
            SELECT p.name AS product_name, p.unit, oi.quantity_kg AS quantity, oi.unit_price
            FROM order_items oi
            JOIN products p ON p.id = oi.product_id
            WHERE oi.order_id = %s
            ORDER BY p.name, oi.id
            """,
            (order_id,)
        )

        return OrderView.model_validate({
            **row,
            "items": [OrderItemView.model_validate(item) for item in items],
        })

    def get_rental(self, tx: Transaction, rental_id: UUID) -> RentalView | None:
        row = tx.execute_single(
            """
            SELECT r.id, r.site_id, r.client_id, r.status,
                   r.cold_box_id, cb.identification_number AS cold_box_identification,
                   r.cold_plate_id, cp.identification_number AS cold_plate_identification,
                   r.tricycle_id, t.plate_number AS tricycle_plate_number,
                   r.rental_start_date, r.rental_end_date,
                   r.estimated_fee, r.actual_fee, r.approved_at, r.deleted_at
            FROM rentals r
            LEFT JOIN cold_boxes cb ON cb.id = r.cold_box_id
            LEFT JOIN cold_plates cp ON cp.id = r.cold_plate_id
            LEFT JOIN tricycles t ON t.id = r.tricycle_id
            WHERE r.id = %s
            FOR SHARE OF r
            """,
            (rental_id,)
        )
        if row is None:
            return None

        return RentalView.model_validate(row)

    def get_site_name(self, tx: Transaction, site_id: UUID) -> str | None:
        return tx.execute_scalar(
            "SELECT name FROM sites WHERE id = %s AND deleted_at IS NULL",
            (site_id,)
        )
