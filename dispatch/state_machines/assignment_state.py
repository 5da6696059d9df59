"""
Purpose: The delivery assignment state machine, as data.
What it does:
- COURIER_TRANSITIONS: edges a courier (or ops) may request through the Lifecycle Controller
- DISPATCH_TRANSITIONS: edges only the Dispatcher / Sweeper may take
- ORDER_STATUS_FOR: order projection written after each courier transition

Cancellation is legal from every non-terminal state.
"""

from typing import Dict, FrozenSet, Optional

from orders.models import OrderStatus
from ..errors import InvalidTransition
from ..models import AssignmentStatus

COURIER_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.QUEUED: frozenset({AssignmentStatus.CANCELLED}),
    AssignmentStatus.OFFERED: frozenset({AssignmentStatus.ACCEPTED, AssignmentStatus.CANCELLED}),
    AssignmentStatus.ACCEPTED: frozenset({AssignmentStatus.PICKED_UP, AssignmentStatus.CANCELLED}),
    AssignmentStatus.PICKED_UP: frozenset({AssignmentStatus.EN_ROUTE, AssignmentStatus.CANCELLED}),
    AssignmentStatus.EN_ROUTE: frozenset({AssignmentStatus.DELIVERED, AssignmentStatus.CANCELLED}),
    AssignmentStatus.DELIVERED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
}

# offered -> queued is the sweeper taking an offer back from a silent courier
DISPATCH_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.QUEUED: frozenset({AssignmentStatus.OFFERED}),
    AssignmentStatus.OFFERED: frozenset({AssignmentStatus.QUEUED}),
}

ORDER_STATUS_FOR: Dict[AssignmentStatus, OrderStatus] = {
    AssignmentStatus.ACCEPTED: OrderStatus.PREPARING,
    AssignmentStatus.PICKED_UP: OrderStatus.DISPATCHED,
    AssignmentStatus.EN_ROUTE: OrderStatus.IN_TRANSIT,
    AssignmentStatus.DELIVERED: OrderStatus.DELIVERED,
    AssignmentStatus.CANCELLED: OrderStatus.DELIVERY_CANCELLED,
}


def can_transition(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    return target in COURIER_TRANSITIONS.get(current, frozenset())


def ensure_courier_transition(current: AssignmentStatus, target: AssignmentStatus) -> None:
    """
    Raises InvalidTransition naming both statuses.
    """
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)


def ensure_dispatch_transition(current: AssignmentStatus, target: AssignmentStatus) -> None:
    if target not in DISPATCH_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current.value, target.value)


def order_status_for(status: AssignmentStatus) -> Optional[OrderStatus]:
    return ORDER_STATUS_FOR.get(status)
