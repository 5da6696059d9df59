"""
Purpose: The engine's port onto the marketplace order subsystem.
What it does:
- get_order(order_id): resolve the order snapshot the Dispatcher needs
- update_status(order_id, status): push a delivery status back (outbound order update)

Implementations:
- InMemoryOrderBook (tests, simulations)
- DjangoOrderGateway (backend/logistics/repositories.py)
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, List

from .models import DELIVERY_STATUSES, Order, OrderStatus


class OrderNotFound(LookupError):
    """Raised when the order subsystem has no record of the id."""
    pass


class OrderGateway:

    def get_order(self, order_id: str) -> Order:
        raise NotImplementedError

    def update_status(self, order_id: str, status: OrderStatus) -> None:
        raise NotImplementedError


def ensure_delivery_status(status: OrderStatus) -> OrderStatus:
    status = OrderStatus(status)
    if status not in DELIVERY_STATUSES:
        raise ValueError(f"{status.value} is not a delivery status the engine may write")
    return status


class InMemoryOrderBook(OrderGateway):
    """
    Dict-backed order book. Keeps every status written so tests can check the
    order projection.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self.status_history: Dict[str, List[OrderStatus]] = {}

    def add(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = order
        return order

    def get_order(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def update_status(self, order_id: str, status: OrderStatus) -> None:
        status = ensure_delivery_status(status)
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found")
            self._orders[order_id] = replace(order, status=status)
            self.status_history.setdefault(order_id, []).append(status)
