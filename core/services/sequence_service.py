"""
Invoice number allocation.

Numbers are INV-{SITE_NAME}-{YEAR}-{SEQUENCE:05d}, gap-free per site per year.
The counter lives in invoice_sequences, one row per (site_id, year). The
upsert that bumps it takes the row lock and holds it until the surrounding
invoice transaction ends, so a rolled-back invoice also rolls back its number.
"""

import logging
import re
import time
from typing import Callable
from uuid import UUID

from psycopg2.errors import LockNotAvailable

from clients.postgres_client import PostgresClient, Transaction
from core.config import BillingConfig
from core.errors import TransientLockError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_site_name(site_name: str) -> str:
    """Uppercase with whitespace runs replaced by underscores."""
    return _WHITESPACE.sub("_", site_name.strip().upper())


def format_invoice_number(site_name: str, year: int, sequence: int) -> str:
    """
    Render an invoice number.

    Example:
        format_invoice_number("MoFresh Kigali", 2026, 1) == "INV-MOFRESH_KIGALI-2026-00001"
    """
    return f"INV-{normalize_site_name(site_name)}-{year}-{sequence:05d}"


class SequenceAllocator:
    """Per-site-per-year counter backed by a locked row."""

    def __init__(
        self,
        postgres: PostgresClient,
        config: BillingConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.postgres = postgres
        self.config = config or BillingConfig()
        self._sleep = sleep

    def allocate(self, tx: Transaction, site_id: UUID, year: int) -> int:
        """
        Take the next number for (site_id, year) inside an open transaction.

        The first call for a new pair creates the row at 1. Lock timeouts are
        retried from a savepoint with exponential backoff. The transaction's
        own lock_timeout is restored afterwards.

        Raises:
            TransientLockError: Lock still unavailable after the configured retries.
        """
        previous_timeout = tx.execute("SHOW lock_timeout")[0]["lock_timeout"]
        tx.execute("SET LOCAL lock_timeout = %s", (f"{self.config.sequence_lock_timeout_ms}ms",))
        try:
            return self._increment(tx, site_id, year)
        finally:
            tx.execute("SELECT set_config('lock_timeout', %s, true)", (previous_timeout,))

    def _increment(self, tx: Transaction, site_id: UUID, year: int) -> int:
        attempts = self.config.sequence_lock_retries
        for attempt in range(1, attempts + 1):
            try:
                with tx.savepoint("invoice_sequence"):
                    return tx.execute_scalar(
                        """
                        INSERT INTO invoice_sequences (site_id, year, last_value, updated_at)
                        VALUES (%s, %s, 1, now())
                        ON CONFLICT (site_id, year)
                        DO UPDATE SET last_value = invoice_sequences.last_value + 1,
                                      updated_at = now()
                        RETURNING last_value
                        """,
                        (site_id, year)
                    )
            except LockNotAvailable:
                if attempt == attempts:
                    logger.error(
                        f"Sequence lock for site {site_id} year {year} unavailable after {attempts} attempts"
                    )
                    raise TransientLockError(
                        f"Invoice number allocation for site {site_id} timed out; retry the request"
                    )
                backoff = self.config.sequence_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Sequence lock timeout for site {site_id} year {year} "
                    f"(attempt {attempt}/{attempts}), retrying in {backoff:.2f}s"
                )
                self._sleep(backoff)

    def next_sequence(self, site_id: UUID, year: int) -> int:
        """Allocate and commit one number on its own."""
        with self.postgres.transaction() as tx:
            return self.allocate(tx, site_id, year)
