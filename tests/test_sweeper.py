from datetime import timedelta

import pytest

from dispatch.engine import DeliveryEngine
from dispatch.models import AssignmentStatus
from dispatch.store import InMemoryAssignmentStore
from dispatch.sweeper import FAILED, REASSIGNED, REQUEUED, SKIPPED
from riders.directory import InMemoryRiderDirectory
from riders.identity import RiderIdentity


@pytest.fixture
def offered_at_t(engine, add_order, register, now):
    """
    Order offered at `now` to the only courier around.
    """
    rider = register("silent", 6.52, 3.40)
    add_order("order-1")
    assignment = engine.order_paid("order-1", now=now)
    assert assignment.rider_session_id == rider.id
    return assignment, rider


def test_timed_out_offer_goes_to_next_nearest(engine, register, offered_at_t, now):
    """
    Offered at T, two couriers show up at T+150s, sweep at T+180s:
    the silent courier is released and the nearer newcomer gets a fresh offer.
    """
    assignment, silent = offered_at_t
    t150 = now + timedelta(seconds=150)
    t180 = now + timedelta(seconds=180)

    further = register("late-far", 6.56, 3.44, at=t150)
    nearer = register("late-near", 6.532, 3.412, at=t150)

    summary = engine.sweep(now=t180)

    assert summary.processed == 1
    assert summary.reassigned == 1
    result = summary.results[0]
    assert result.outcome == REASSIGNED
    assert result.previous_rider_id == silent.id
    assert result.new_rider_id == nearer.id

    moved = engine.get_assignment(assignment.id)
    assert moved.status == AssignmentStatus.OFFERED
    assert moved.rider_session_id == nearer.id
    assert moved.offered_at == t180
    assert engine.riders.get(silent.id).is_available
    assert not engine.riders.get(nearer.id).is_available
    assert engine.riders.get(further.id).is_available


def test_timed_out_offer_is_requeued_when_nobody_else_is_free(engine, offered_at_t, now):
    assignment, silent = offered_at_t

    summary = engine.sweep(now=now + timedelta(seconds=121))

    assert summary.requeued == 1
    assert summary.results[0].outcome == REQUEUED

    back = engine.get_assignment(assignment.id)
    assert back.status == AssignmentStatus.QUEUED
    assert back.rider_session_id is None
    assert back.offered_at is None
    assert back.distance_km is None
    assert engine.riders.get(silent.id).is_available


def test_silent_courier_is_not_offered_the_same_job_again(engine, offered_at_t, now):
    assignment, silent = offered_at_t
    later = now + timedelta(seconds=130)
    # the silent courier is still sending heartbeats
    engine.heartbeat(silent.id, 6.52, 3.40, now=later)

    engine.sweep(now=later)

    back = engine.get_assignment(assignment.id)
    assert back.status == AssignmentStatus.QUEUED
    assert back.rider_session_id is None


def test_offers_within_grace_are_left_alone(engine, offered_at_t, now):
    assignment, silent = offered_at_t

    summary = engine.sweep(now=now + timedelta(seconds=119))

    assert summary.processed == 0
    assert engine.get_assignment(assignment.id).rider_session_id == silent.id


def test_accepted_assignments_are_never_swept(engine, offered_at_t, now):
    assignment, silent = offered_at_t
    engine.courier_action(assignment.id, "accept", rider_session_id=silent.id, now=now + timedelta(seconds=60))

    summary = engine.sweep(now=now + timedelta(minutes=10))

    assert summary.processed == 0
    assert engine.get_assignment(assignment.id).status == AssignmentStatus.ACCEPTED


class _AcceptLandsMidSweep(InMemoryAssignmentStore):
    """
    The courier's accept arrives after the sweeper listed the stale rows
    but before it swaps them back to queued.
    """

    def list_offered_before(self, cutoff):
        stale = super().list_offered_before(cutoff)
        for row in stale:
            self.compare_and_set(row.id, AssignmentStatus.OFFERED, cutoff, status=AssignmentStatus.ACCEPTED)
        return stale


def test_late_accept_wins_over_the_sweep(add_order, order_book, now):
    riders = InMemoryRiderDirectory()
    engine = DeliveryEngine(riders, _AcceptLandsMidSweep(), order_book)
    rider = engine.register_rider(RiderIdentity.from_signals(user_agent="a"), "A", "+2348031234567", 6.52, 3.40, now=now)
    add_order("order-1")
    assignment = engine.order_paid("order-1", now=now)

    summary = engine.sweep(now=now + timedelta(minutes=3))

    assert summary.skipped == 1
    assert summary.results[0].outcome == SKIPPED
    assert engine.get_assignment(assignment.id).status == AssignmentStatus.ACCEPTED
    assert engine.get_assignment(assignment.id).rider_session_id == rider.id
    assert not riders.get(rider.id).is_available


class _ReleaseFailsFor(InMemoryRiderDirectory):

    def __init__(self):
        super().__init__()
        self.broken = set()

    def release(self, session_id, now=None):
        if session_id in self.broken:
            raise RuntimeError("presence store timeout")
        super().release(session_id, now)


def test_one_failure_does_not_stop_the_batch(add_order, order_book, now):
    riders = _ReleaseFailsFor()
    engine = DeliveryEngine(riders, InMemoryAssignmentStore(), order_book)
    first = engine.register_rider(RiderIdentity.from_signals(user_agent="a"), "A", "+2348031234567", 6.52, 3.40, now=now)
    second = engine.register_rider(RiderIdentity.from_signals(user_agent="b"), "B", "+2348031234568", 6.52, 3.40, now=now)
    add_order("order-1")
    add_order("order-2")
    engine.order_paid("order-1", now=now)
    engine.order_paid("order-2", now=now)
    riders.broken.add(first.id)

    summary = engine.sweep(now=now + timedelta(minutes=3))

    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.requeued == 1
    failed = [r for r in summary.results if r.outcome == FAILED][0]
    assert failed.previous_rider_id == first.id
    assert "presence store timeout" in failed.error
    assert riders.get(second.id).is_available


def test_summary_shape(engine, offered_at_t, now):
    summary = engine.sweep(now=now + timedelta(minutes=3))
    body = summary.to_dict()

    assert body["processed"] == 1
    assert body["requeued"] == 1
    assert body["results"][0]["order_id"] == "order-1"
    assert body["results"][0]["status"] == REQUEUED
