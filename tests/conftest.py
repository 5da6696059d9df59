from datetime import datetime, timezone

import pytest

from dispatch.engine import DeliveryEngine
from orders.gateway import InMemoryOrderBook
from orders.models import Order, OrderStatus
from riders.identity import RiderIdentity

# Lagos, Yaba-ish
LAGOS_PICKUP = (6.53, 3.41)
LAGOS_DROPOFF = (6.55, 3.38)


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def order_book():
    return InMemoryOrderBook()


@pytest.fixture
def engine(order_book):
    return DeliveryEngine.in_memory(orders=order_book)


@pytest.fixture
def add_order(order_book):
    """
    Adds an order to the in-memory book. Paid by default so it can be dispatched.
    """
    def _add(order_id="order-1", pickup=LAGOS_PICKUP, dropoff=LAGOS_DROPOFF, status=OrderStatus.PAID, fee=None):
        return order_book.add(Order(id=order_id, pickup=pickup, dropoff=dropoff, status=status, delivery_fee=fee))
    return _add


@pytest.fixture
def register(engine, now):
    """
    Registers a courier whose device is identified by `agent` (the User-Agent string).
    """
    def _register(agent, lat=None, lng=None, at=None, name="Tunde", phone="+2348031234567"):
        identity = RiderIdentity.from_signals(user_agent=agent)
        return engine.register_rider(identity, name, phone, lat=lat, lng=lng, now=at or now)
    return _register
