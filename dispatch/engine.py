"""
Purpose: One object that wires the dispatch engine together.
What it does:
Builds Dispatcher, LifecycleController and TimeoutSweeper over a shared rider
directory, assignment store, order gateway, event hub and reconciliation queue,
and exposes the inbound interfaces the HTTP layer (or a script) calls:

- register_rider / heartbeat     courier presence
- order_paid                     order-paid event -> Dispatcher
- courier_action                 accept / picked_up / en_route / delivered / cancel
- nearest_assignment             courier poll
- sweep                          scheduled timeout recovery
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from orders.gateway import InMemoryOrderBook, OrderGateway
from orders.reconciliation import ReconciliationQueue
from riders.directory import InMemoryRiderDirectory, RiderDirectory
from riders.identity import RiderIdentity
from riders.models import RiderNotFound, RiderSession
from .dispatcher import Dispatcher
from .errors import ValidationError
from .events import AssignmentEvents
from .lifecycle import LifecycleController, status_for_action
from .models import CompletionArtifacts, DeliveryAssignment
from .policy import DispatchPolicy, default_dispatch_policy
from .store import AssignmentStore, InMemoryAssignmentStore
from .sweeper import SweepSummary, TimeoutSweeper


class DeliveryEngine:

    def __init__(
        self,
        riders: RiderDirectory,
        assignments: AssignmentStore,
        orders: OrderGateway,
        policy: Optional[DispatchPolicy] = None,
        events: Optional[AssignmentEvents] = None,
        reconciliation: Optional[ReconciliationQueue] = None,
    ):
        self.policy = policy or default_dispatch_policy()
        self.riders = riders
        self.assignments = assignments
        self.orders = orders
        self.events = events or AssignmentEvents()
        self.reconciliation = reconciliation or ReconciliationQueue()

        self.dispatcher = Dispatcher(riders, assignments, orders, self.policy, self.events)
        self.lifecycle = LifecycleController(riders, assignments, orders, self.reconciliation, self.events)
        self.sweeper = TimeoutSweeper(self.dispatcher)

    @classmethod
    def in_memory(
        cls,
        orders: Optional[OrderGateway] = None,
        policy: Optional[DispatchPolicy] = None,
    ) -> DeliveryEngine:
        policy = policy or default_dispatch_policy()
        return cls(
            riders=InMemoryRiderDirectory(freshness_seconds=policy.stale_presence_seconds),
            assignments=InMemoryAssignmentStore(),
            orders=orders or InMemoryOrderBook(),
            policy=policy,
        )

    # --- courier presence ---

    def register_rider(
        self,
        identity: RiderIdentity,
        name: str,
        phone: str,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> RiderSession:
        position = _optional_position(lat, lng)
        rider = self.riders.register_rider(identity, name, phone, position, now=now)
        if rider.position is not None:
            self.events.publish_position(rider)
        return rider

    def rider_for(self, identity: RiderIdentity) -> RiderSession:
        rider = self.riders.get_by_fingerprint(identity.fingerprint)
        if rider is None:
            raise RiderNotFound("No rider session registered for this device")
        return rider

    def heartbeat(
        self,
        session_id: str,
        lat: float,
        lng: float,
        available: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> RiderSession:
        """
        A courier who owns a live assignment stays unavailable whatever the app says.
        The ownership check runs at write time, in the same atomic block a dispatch
        uses for its claim, so an offer landing mid-heartbeat is never overwritten.
        """
        with self.assignments.atomic():
            rider = self.riders.update_position(
                session_id,
                lat,
                lng,
                availability=available,
                now=now,
                idle_check=lambda: self.assignments.active_for_rider(session_id) is None,
            )
        self.events.publish_position(rider)
        return rider

    # --- dispatch ---

    def order_paid(self, order_id: str, now: Optional[datetime] = None) -> DeliveryAssignment:
        return self.dispatcher.dispatch(order_id, now=now)

    def nearest_assignment(self, session_id: str, now: Optional[datetime] = None) -> Optional[DeliveryAssignment]:
        return self.dispatcher.offer_nearest_queued(session_id, now=now)

    def courier_action(
        self,
        assignment_id: str,
        action: str,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        proof_url: Optional[str] = None,
        notes: Optional[str] = None,
        rating: Optional[int] = None,
        rider_session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DeliveryAssignment:
        return self.lifecycle.apply_transition(
            assignment_id,
            status_for_action(action),
            rider_position=_optional_position(lat, lng),
            completion=CompletionArtifacts(
                proof_of_delivery_url=proof_url,
                delivery_notes=notes,
                customer_rating=rating,
            ),
            rider_session_id=rider_session_id,
            now=now,
        )

    def sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        return self.sweeper.run(now=now)

    # --- reads ---

    def get_assignment(self, assignment_id: str) -> DeliveryAssignment:
        return self.assignments.get(assignment_id)

    def assignment_for_order(self, order_id: str) -> Optional[DeliveryAssignment]:
        return self.assignments.get_by_order(order_id)


def _optional_position(lat, lng):
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("lat and lng must be given together")
    return (lat, lng)
