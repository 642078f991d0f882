"""
Audit trail for invoice and payment changes.

Records who generated, paid or voided an invoice and when. The audit log is
append-only. Entries are written inside the caller's transaction when one is
passed, so an audit row exists exactly when the change it describes does.
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, Transaction
from utils.user_context import get_current_actor
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    VOID = "VOID"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"


class AuditLogger:
    """
    Append-only audit sink.

    Always pass JSON-ready values in `changes` (use model_dump(mode="json") or
    str() for UUIDs and Decimals).

    Usage:
        audit = AuditLogger(postgres)

        with postgres.transaction() as tx:
            ...
            audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.VOID,
                changes={"reason": reason},
                tx=tx,
            )
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | str | None = None,
        tx: Transaction | None = None,
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: "invoice" or "payment"
            entity_id: ID of the entity
            action: The action performed
            changes: Details of the change
            user_id: Actor (defaults to the current actor context, else SYSTEM)
            tx: Open transaction to write in; a standalone write otherwise
        """
        actor = str(user_id) if user_id is not None else get_current_actor()
        query = """
            INSERT INTO audit_log (id, user_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
        """
        params = (uuid4(), actor, entity_type, entity_id, action.value, Json(changes), now_utc())

        if tx is not None:
            tx.execute(query, params)
        else:
            self.postgres.execute(query, params)

    def get_entity_history(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, user_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )
