"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, days_from_now, billable_days, days_overdue
from utils.user_context import (
    SYSTEM_ACTOR,
    get_current_actor,
    set_current_actor,
    clear_current_actor,
    actor_context,
)
