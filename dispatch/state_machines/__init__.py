from .assignment_state import (
    COURIER_TRANSITIONS,
    DISPATCH_TRANSITIONS,
    ORDER_STATUS_FOR,
    can_transition,
    ensure_courier_transition,
    ensure_dispatch_transition,
    order_status_for,
)

__all__ = [
    "COURIER_TRANSITIONS",
    "DISPATCH_TRANSITIONS",
    "ORDER_STATUS_FOR",
    "can_transition",
    "ensure_courier_transition",
    "ensure_dispatch_transition",
    "order_status_for",
]
