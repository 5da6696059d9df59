"""
Orders boundary package.

The engine does not own orders. This package describes what it needs from them
and how it talks back.

Public API:
- Domain models: Order, OrderStatus
- Port: OrderGateway, InMemoryOrderBook, OrderNotFound
- Reconciliation: ReconciliationQueue, ReconciliationGap
"""
from .gateway import InMemoryOrderBook, OrderGateway, OrderNotFound
from .models import DELIVERY_STATUSES, Order, OrderStatus
from .reconciliation import ReconciliationGap, ReconciliationQueue

__all__ = ["DELIVERY_STATUSES",
           "InMemoryOrderBook",
             "Order",
               "OrderGateway",
               "OrderNotFound",
               "OrderStatus",
               "ReconciliationGap",
               "ReconciliationQueue",
               ]
