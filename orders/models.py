"""
Purpose: Domain view of the Order entity as the dispatch engine sees it.
What it does:
- Defines the Order snapshot (id, pickup / drop-off coords, total, status)
- Defines OrderStatus, including the delivery values the engine may advance

Orders are owned by the marketplace; the engine only reads them and pushes
delivery-related status values back.

Rule: No dispatch logic. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

LatLon = Tuple[float, float]


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PREPARING = "preparing"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    DELIVERY_CANCELLED = "delivery_cancelled"


# values the engine is allowed to write back to the order record
DELIVERY_STATUSES = frozenset({
    OrderStatus.PREPARING,
    OrderStatus.DISPATCHED,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.DELIVERY_CANCELLED,
})


@dataclass(frozen=True)
class Order:
    """
    Read-only snapshot of a marketplace order.
    pickup comes from the selling store's base location, dropoff from the customer address.
    Either may be None when the marketplace never captured it.
    """

    id: str
    pickup: Optional[LatLon]
    dropoff: Optional[LatLon]
    total: Decimal = Decimal("0")
    status: OrderStatus = OrderStatus.PENDING

    # precomputed by the marketplace; carried onto the assignment untouched
    delivery_fee: Optional[Decimal] = None

    @property
    def is_payable(self) -> bool:
        return self.status == OrderStatus.PAID
