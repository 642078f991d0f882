"""POST /api/webhooks/momo: MTN MoMo payment callbacks."""

import logging

from fastapi import APIRouter, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from api.base import success_response, error_response, ErrorCodes
from core.models import MomoWebhookPayload

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-Signature", "X-Momo-Signature")


def create_webhooks_router(services: dict) -> APIRouter:
    router = APIRouter()

    reconciler = services["webhook"]
    momo = services["momo"]

    @router.post("/webhooks/momo")
    async def momo_webhook(request: Request):
        raw_body = await request.body()
        signature = next(
            (request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers),
            None,
        )

        if not await run_in_threadpool(momo.verify_signature, raw_body, signature):
            logger.error("Rejected MoMo webhook with invalid signature")
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.INVALID_SIGNATURE, "Invalid webhook signature", request
                ).model_dump(mode="json"),
            )

        try:
            payload = MomoWebhookPayload.model_validate_json(raw_body)
        except ValidationError as e:
            logger.warning(f"Malformed MoMo webhook body: {e.error_count()} errors")
            return JSONResponse(
                status_code=400,
                content=error_response(
                    ErrorCodes.VALIDATION_ERROR, str(e.errors(include_url=False)), request
                ).model_dump(mode="json"),
            )

        # Lookup retries sleep between attempts
        result = await run_in_threadpool(reconciler.process, payload)
        return success_response(result.model_dump(mode="json"), request).model_dump(mode="json")

    return router
