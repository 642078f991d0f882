"""Propagate the acting user through the call stack using contextvars.

Authentication happens upstream; the billing core only needs to know who to
attribute audit entries to. Webhook-driven changes run with no actor and are
attributed to SYSTEM_ACTOR.
"""

from contextlib import contextmanager
from contextvars import ContextVar

SYSTEM_ACTOR = "SYSTEM"

_current_actor: ContextVar[str | None] = ContextVar("current_actor", default=None)


def get_current_actor() -> str:
    """Current actor id, or SYSTEM_ACTOR when no actor is set."""
    return _current_actor.get() or SYSTEM_ACTOR


def set_current_actor(actor: str) -> None:
    """Set current actor. Called by the API layer per request."""
    _current_actor.set(actor)


def clear_current_actor() -> None:
    """
    Clear actor context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_actor.set(None)


@contextmanager
def actor_context(actor: str | None):
    """
    Temporarily set the acting user.

    Example:
        with actor_context(str(user_id)):
            invoice_service.void_invoice(invoice_id, "Order cancelled")
    """
    token = _current_actor.set(actor)
    try:
        yield
    finally:
        _current_actor.reset(token)
