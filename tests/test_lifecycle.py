import threading
from datetime import timedelta

import pytest

from dispatch.engine import DeliveryEngine
from dispatch.errors import (
    AssignmentNotFound,
    ConcurrentTransition,
    InvalidTransition,
    MissingProof,
    NotAssignedRider,
    ValidationError,
)
from dispatch.models import AssignmentStatus
from dispatch.state_machines import can_transition, order_status_for
from dispatch.store import InMemoryAssignmentStore
from orders.gateway import InMemoryOrderBook
from orders.models import Order, OrderStatus
from riders.directory import InMemoryRiderDirectory
from riders.identity import RiderIdentity

PROOF = "https://cdn.example.com/pod/order-1.jpg"


@pytest.fixture
def offered(engine, add_order, register, now):
    """
    One courier holding an offer for order-1.
    """
    rider = register("rider-a", 6.52, 3.40)
    add_order("order-1")
    assignment = engine.order_paid("order-1", now=now)
    assert assignment.status == AssignmentStatus.OFFERED
    return assignment, rider


def _walk(engine, assignment, rider, actions, now):
    for action in actions:
        assignment = engine.courier_action(assignment.id, action, rider_session_id=rider.id, now=now)
    return assignment


def test_full_delivery(engine, order_book, offered, now):
    """
    accept -> picked_up -> en_route -> delivered with proof and a rating of 5:
    courier free again, order delivered.
    """
    assignment, rider = offered
    later = now + timedelta(minutes=25)

    assignment = _walk(engine, assignment, rider, ["accept", "picked_up", "en_route"], now)
    done = engine.courier_action(
        assignment.id, "delivered", proof_url=PROOF, notes="Left with gateman", rating=5,
        rider_session_id=rider.id, now=later,
    )

    assert done.status == AssignmentStatus.DELIVERED
    assert done.completed_at == later
    assert done.accepted_at == now
    assert done.proof_of_delivery_url == PROOF
    assert done.delivery_notes == "Left with gateman"
    assert done.customer_rating == 5
    freed = engine.riders.get(rider.id)
    assert freed.is_available
    assert freed.last_seen_at == later
    assert order_book.get_order("order-1").status == OrderStatus.DELIVERED
    assert order_book.status_history["order-1"] == [
        OrderStatus.PREPARING,
        OrderStatus.DISPATCHED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
    ]


def test_skipping_steps_is_rejected(engine, offered, now):
    assignment, rider = offered
    assignment = _walk(engine, assignment, rider, ["accept"], now)

    with pytest.raises(InvalidTransition) as exc:
        engine.courier_action(assignment.id, "delivered", proof_url=PROOF, rider_session_id=rider.id, now=now)

    assert "accepted" in str(exc.value) and "delivered" in str(exc.value)
    assert engine.get_assignment(assignment.id).status == AssignmentStatus.ACCEPTED


def test_skipping_steps_without_proof_reports_the_transition(engine, offered, now):
    assignment, rider = offered
    assignment = _walk(engine, assignment, rider, ["accept"], now)

    with pytest.raises(InvalidTransition):
        engine.courier_action(assignment.id, "delivered", rider_session_id=rider.id, now=now)


@pytest.mark.parametrize("proof", [None, ""])
def test_delivered_needs_proof(engine, offered, now, proof):
    assignment, rider = offered
    assignment = _walk(engine, assignment, rider, ["accept", "picked_up", "en_route"], now)

    with pytest.raises(MissingProof):
        engine.courier_action(assignment.id, "delivered", proof_url=proof, rider_session_id=rider.id, now=now)

    stored = engine.get_assignment(assignment.id)
    assert stored.status == AssignmentStatus.EN_ROUTE
    assert stored.completed_at is None
    assert not engine.riders.get(rider.id).is_available


@pytest.mark.parametrize("history, again", [
    (["accept"], "accept"),
    (["accept", "picked_up"], "accept"),
    (["accept", "picked_up", "en_route"], "picked_up"),
])
def test_no_going_back(engine, offered, now, history, again):
    assignment, rider = offered
    assignment = _walk(engine, assignment, rider, history, now)
    before = assignment.status

    with pytest.raises(InvalidTransition):
        engine.courier_action(assignment.id, again, rider_session_id=rider.id, now=now)
    assert engine.get_assignment(assignment.id).status == before


@pytest.mark.parametrize("history", [[], ["accept"], ["accept", "picked_up"], ["accept", "picked_up", "en_route"]])
def test_cancel_from_any_live_state_releases_courier(engine, order_book, offered, now, history):
    assignment, rider = offered
    assignment = _walk(engine, assignment, rider, history, now)

    cancelled = engine.courier_action(assignment.id, "cancel", rider_session_id=rider.id, now=now)

    assert cancelled.status == AssignmentStatus.CANCELLED
    assert engine.riders.get(rider.id).is_available
    assert order_book.get_order("order-1").status == OrderStatus.DELIVERY_CANCELLED


def test_terminal_states_are_final(engine, offered, now):
    assignment, rider = offered
    _walk(engine, assignment, rider, ["cancel"], now)

    for action in ["accept", "cancel", "delivered"]:
        with pytest.raises(InvalidTransition):
            engine.courier_action(assignment.id, action, proof_url=PROOF, rider_session_id=rider.id, now=now)


def test_terminal_assignment_is_not_redispatched(engine, offered, register, now):
    assignment, rider = offered
    _walk(engine, assignment, rider, ["cancel"], now)
    register("rider-b", 6.52, 3.40)

    again = engine.order_paid("order-1", now=now)
    assert again.id == assignment.id
    assert again.status == AssignmentStatus.CANCELLED


def test_ops_can_cancel_a_queued_assignment(engine, order_book, add_order, now):
    add_order("order-1")
    queued = engine.order_paid("order-1", now=now)

    cancelled = engine.lifecycle.apply_transition(queued.id, AssignmentStatus.CANCELLED, now=now)

    assert cancelled.status == AssignmentStatus.CANCELLED
    assert order_book.get_order("order-1").status == OrderStatus.DELIVERY_CANCELLED


def test_queued_cannot_be_accepted(engine, add_order, now):
    add_order("order-1")
    queued = engine.order_paid("order-1", now=now)

    with pytest.raises(InvalidTransition):
        engine.lifecycle.apply_transition(queued.id, "accepted", now=now)


def test_only_the_holder_may_act(engine, offered, register, now):
    assignment, rider = offered
    intruder = register("rider-b", 6.52, 3.40)

    with pytest.raises(NotAssignedRider):
        engine.courier_action(assignment.id, "accept", rider_session_id=intruder.id, now=now)
    assert engine.get_assignment(assignment.id).status == AssignmentStatus.OFFERED


def test_unknown_assignment(engine, now):
    with pytest.raises(AssignmentNotFound):
        engine.courier_action("nope", "accept", now=now)


def test_unknown_action(engine, offered, now):
    assignment, rider = offered
    with pytest.raises(ValidationError):
        engine.courier_action(assignment.id, "teleport", rider_session_id=rider.id, now=now)


@pytest.mark.parametrize("rating", [0, 6, 4.5, True])
def test_rating_must_be_one_to_five(engine, offered, now, rating):
    assignment, rider = offered
    assignment = _walk(engine, assignment, rider, ["accept", "picked_up", "en_route"], now)

    with pytest.raises(ValidationError):
        engine.courier_action(
            assignment.id, "delivered", proof_url=PROOF, rating=rating, rider_session_id=rider.id, now=now,
        )
    assert engine.get_assignment(assignment.id).status == AssignmentStatus.EN_ROUTE


def test_half_a_position_is_rejected(engine, offered, now):
    assignment, rider = offered
    with pytest.raises(ValidationError):
        engine.courier_action(assignment.id, "accept", lat=6.5, rider_session_id=rider.id, now=now)


def test_out_of_range_position_is_rejected(engine, offered, now):
    assignment, rider = offered
    with pytest.raises(ValidationError):
        engine.courier_action(assignment.id, "accept", lat=6.5, lng=500, rider_session_id=rider.id, now=now)
    assert engine.get_assignment(assignment.id).status == AssignmentStatus.OFFERED


def test_position_is_forwarded_to_directory(engine, offered, now):
    assignment, rider = offered
    later = now + timedelta(seconds=40)

    engine.courier_action(assignment.id, "accept", lat=6.525, lng=3.405, rider_session_id=rider.id, now=later)

    stored = engine.riders.get(rider.id)
    assert stored.position == (6.525, 3.405)
    assert stored.last_seen_at == later
    # a position update never frees a courier mid-delivery
    assert not stored.is_available


class _RacingStore(InMemoryAssignmentStore):
    """
    Lets a test slip a write in between the controller's read and its swap.
    """

    def __init__(self):
        super().__init__()
        self.interfere = None

    def get(self, assignment_id):
        row = super().get(assignment_id)
        if self.interfere is not None:
            hook, self.interfere = self.interfere, None
            hook(row)
        return row


def test_concurrent_writer_wins(add_order, order_book, now):
    store = _RacingStore()
    engine = DeliveryEngine(InMemoryRiderDirectory(), store, order_book)
    rider = engine.register_rider(RiderIdentity.from_signals(user_agent="a"), "A", "+2348031234567", 6.52, 3.40, now=now)
    add_order("order-1")
    assignment = engine.order_paid("order-1", now=now)

    def ops_cancels(row):
        store.compare_and_set(row.id, row.status, now, status=AssignmentStatus.CANCELLED)

    store.interfere = ops_cancels

    with pytest.raises(ConcurrentTransition):
        engine.courier_action(assignment.id, "accept", rider_session_id=rider.id, now=now)
    assert store.get(assignment.id).status == AssignmentStatus.CANCELLED
    assert order_book.status_history.get("order-1") is None


class _FlakyOrderBook(InMemoryOrderBook):

    def __init__(self):
        super().__init__()
        self.down = True

    def update_status(self, order_id, status):
        if self.down:
            raise RuntimeError("orders service unavailable")
        super().update_status(order_id, status)


def test_order_write_failure_is_queued_for_reconciliation(now):
    orders = _FlakyOrderBook()
    engine = DeliveryEngine.in_memory(orders=orders)

    rider = engine.register_rider(RiderIdentity.from_signals(user_agent="a"), "A", "+2348031234567", 6.52, 3.40, now=now)
    orders.add(Order(id="order-1", pickup=(6.53, 3.41), dropoff=(6.55, 3.38), status=OrderStatus.PAID))
    assignment = engine.order_paid("order-1", now=now)

    accepted = engine.courier_action(assignment.id, "accept", rider_session_id=rider.id, now=now)
    picked = engine.courier_action(assignment.id, "picked_up", rider_session_id=rider.id, now=now)

    # courier-facing state committed regardless
    assert accepted.status == AssignmentStatus.ACCEPTED
    assert picked.status == AssignmentStatus.PICKED_UP

    gaps = engine.reconciliation.pending()
    assert len(gaps) == 1
    assert gaps[0].status == OrderStatus.DISPATCHED
    assert gaps[0].assignment_id == assignment.id

    assert engine.reconciliation.retry(orders) == 0

    orders.down = False
    assert engine.reconciliation.retry(orders) == 1
    assert engine.reconciliation.pending() == []
    assert orders.get_order("order-1").status == OrderStatus.DISPATCHED


def test_heartbeat_cannot_free_a_busy_courier(engine, offered, now):
    assignment, rider = offered

    updated = engine.heartbeat(rider.id, 6.521, 3.401, available=True, now=now + timedelta(seconds=30))
    assert not updated.is_available
    assert updated.position == (6.521, 3.401)


class _DispatchLandsMidHeartbeat(InMemoryRiderDirectory):
    """
    Runs `hook` after a heartbeat has been accepted but before its write lands.
    """

    def __init__(self):
        super().__init__()
        self.hook = None

    def _write_presence(self, session_id, position, now, availability, idle_check=None):
        if self.hook is not None:
            hook, self.hook = self.hook, None
            hook()
        return super()._write_presence(session_id, position, now, availability, idle_check)


def test_offer_landing_mid_heartbeat_is_kept(add_order, order_book, now):
    riders = _DispatchLandsMidHeartbeat()
    engine = DeliveryEngine(riders, InMemoryAssignmentStore(), order_book)
    rider = engine.register_rider(RiderIdentity.from_signals(user_agent="a"), "A", "+2348031234567", 6.52, 3.40, now=now)
    add_order("order-1")
    add_order("order-2")
    riders.hook = lambda: engine.order_paid("order-1", now=now)

    engine.heartbeat(rider.id, 6.52, 3.40, available=True, now=now)

    first = engine.assignment_for_order("order-1")
    assert first.status == AssignmentStatus.OFFERED
    assert first.rider_session_id == rider.id
    assert not riders.get(rider.id).is_available

    # the courier is not offered a second job
    second = engine.order_paid("order-2", now=now)
    assert second.status == AssignmentStatus.QUEUED


def test_heartbeats_racing_dispatches_never_double_book(engine, add_order, register, now):
    rider = register("rider-a", 6.52, 3.40)
    for i in range(20):
        add_order(f"order-{i}")

    stop = threading.Event()

    def keep_beating():
        while not stop.is_set():
            engine.heartbeat(rider.id, 6.52, 3.40, available=True, now=now)

    beater = threading.Thread(target=keep_beating)
    beater.start()
    try:
        results = [engine.order_paid(f"order-{i}", now=now) for i in range(20)]
    finally:
        stop.set()
        beater.join()

    offered = [a for a in results if a.status == AssignmentStatus.OFFERED]
    assert len(offered) == 1
    assert engine.assignments.active_for_rider(rider.id).id == offered[0].id
    assert not engine.riders.get(rider.id).is_available


def test_off_shift_courier_can_come_back(engine, register, now):
    rider = register("rider-a", 6.52, 3.40)

    off = engine.heartbeat(rider.id, 6.52, 3.40, available=False, now=now)
    assert not off.is_available

    back = engine.heartbeat(rider.id, 6.52, 3.40, available=True, now=now + timedelta(minutes=5))
    assert back.is_available


def test_state_machine_tables():
    assert can_transition(AssignmentStatus.OFFERED, AssignmentStatus.ACCEPTED)
    assert not can_transition(AssignmentStatus.OFFERED, AssignmentStatus.QUEUED)
    assert not can_transition(AssignmentStatus.DELIVERED, AssignmentStatus.CANCELLED)
    assert order_status_for(AssignmentStatus.EN_ROUTE) == OrderStatus.IN_TRANSIT
    assert order_status_for(AssignmentStatus.OFFERED) is None
