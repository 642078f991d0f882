"""Request-scoped middleware for API requests."""

from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from utils.user_context import actor_context, SYSTEM_ACTOR


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class ActorMiddleware(BaseHTTPMiddleware):
    """
    Binds the caller identity from X-User-Id to the actor context.

    Authentication happens upstream; requests without the header act as SYSTEM.
    """

    header = "X-User-Id"

    async def dispatch(self, request: Request, call_next):
        actor = request.headers.get(self.header, "").strip() or SYSTEM_ACTOR
        request.state.actor = actor
        with actor_context(actor):
            return await call_next(request)
