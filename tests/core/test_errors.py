"""Tests for billing error kinds."""

from decimal import Decimal
from uuid import uuid4

import pytest

from core.errors import (
    BillingError, DuplicateInvoiceError, InvalidStatusError, InvalidTransitionError,
    NoBillableItemsError, NotFoundError, OverpaymentError, PaymentProviderError,
    ProviderNotConfiguredError, TransientLockError, ValidationFailedError,
)


class TestErrorCodes:
    """Each kind carries its code and HTTP status."""

    @pytest.mark.parametrize("error, code, status", [
        (NotFoundError("Order", "x"), "NOT_FOUND", 404),
        (InvalidStatusError("no"), "INVALID_STATUS", 400),
        (NoBillableItemsError("no"), "NO_ITEMS", 400),
        (DuplicateInvoiceError("order", "x"), "DUPLICATE", 409),
        (OverpaymentError("INV-1", Decimal("1"), Decimal("2")), "OVERPAYMENT", 400),
        (InvalidTransitionError("no"), "INVALID_TRANSITION", 409),
        (TransientLockError("no"), "TRANSIENT_LOCK_FAILURE", 503),
        (ValidationFailedError("no"), "VALIDATION_ERROR", 400),
        (PaymentProviderError("no"), "PAYMENT_PROVIDER_ERROR", 502),
        (ProviderNotConfiguredError("no"), "PAYMENT_PROVIDER_UNAVAILABLE", 503),
    ])
    def test_code_and_status(self, error, code, status):
        assert isinstance(error, BillingError)
        assert error.code == code
        assert error.http_status == status

    def test_only_lock_failures_are_retryable(self):
        assert TransientLockError("x").retryable is True
        assert InvalidTransitionError("x").retryable is False


class TestMessages:

    def test_not_found_names_entity(self):
        order_id = uuid4()
        error = NotFoundError("Order", order_id)

        assert error.message == f"Order {order_id} not found"
        assert error.entity == "Order"

    def test_duplicate_includes_detail(self):
        error = DuplicateInvoiceError("rental", "r-1", "Existing invoice: INV-HUYE-2026-00001")

        assert "rental r-1" in error.message
        assert error.message.endswith("Existing invoice: INV-HUYE-2026-00001")

    def test_overpayment_reports_balance(self):
        error = OverpaymentError("INV-HUYE-2026-00001", Decimal("5.00"), Decimal("100.00"))

        assert "by 5.00" in error.message
        assert "Balance due: 100.00" in error.message
