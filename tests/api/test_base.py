"""Tests for api/base.py - Unified API response format."""

from datetime import timezone
from types import SimpleNamespace

from api.base import (
    request_id_of,
    success_response,
    error_response,
    ErrorCodes,
)
from core.models import PageMeta


class TestSuccessResponse:
    """Tests for success_response()."""

    def test_structure(self):
        resp = success_response({"foo": "bar"})
        assert resp.success is True
        assert resp.data == {"foo": "bar"}
        assert resp.error is None

    def test_request_id_generated(self):
        resp = success_response({})
        assert resp.meta.request_id is not None
        assert len(resp.meta.request_id) > 0

    def test_timestamp_is_utc(self):
        resp = success_response({})
        assert resp.meta.timestamp.tzinfo == timezone.utc

    def test_pagination_only_when_given(self):
        assert success_response([]).meta.pagination is None

        resp = success_response([], pagination=PageMeta.build(total=25, page=1, limit=10))
        assert resp.meta.pagination.total_pages == 3


class TestErrorResponse:
    """Tests for error_response()."""

    def test_structure(self):
        resp = error_response("TEST_ERROR", "Something went wrong")
        assert resp.success is False
        assert resp.data is None
        assert resp.error.code == "TEST_ERROR"
        assert resp.error.message == "Something went wrong"

    def test_timestamp_is_utc(self):
        resp = error_response("ERR", "msg")
        assert resp.meta.timestamp.tzinfo == timezone.utc


class TestRequestIdOf:
    """Tests for request_id_of()."""

    def test_uses_middleware_id(self):
        request = SimpleNamespace(state=SimpleNamespace(request_id="req-1"))
        assert request_id_of(request) == "req-1"

    def test_generates_without_middleware(self):
        request = SimpleNamespace(state=SimpleNamespace())
        assert len(request_id_of(request)) == 36

    def test_generates_without_request(self):
        assert request_id_of(None) != request_id_of(None)


class TestErrorCodes:
    """Request-layer error codes."""

    def test_has_internal_error(self):
        assert ErrorCodes.INTERNAL_ERROR == "INTERNAL_ERROR"

    def test_has_not_found(self):
        assert ErrorCodes.NOT_FOUND == "NOT_FOUND"

    def test_has_validation_error(self):
        assert ErrorCodes.VALIDATION_ERROR == "VALIDATION_ERROR"

    def test_has_invalid_signature(self):
        assert ErrorCodes.INVALID_SIGNATURE == "INVALID_SIGNATURE"
