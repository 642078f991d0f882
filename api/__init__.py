"""HTTP interface: response envelope, error handlers and billing routers."""

from api.base import (
    APIError,
    APIMeta,
    APIResponse,
    request_id_of,
    success_response,
    error_response,
    ErrorCodes,
)
