"""
Purpose: Orchestrator that matches a paid order to the nearest free courier.
What it does:
Accepts an order id from the order-paid event, creates (or reuses) the order's
single DeliveryAssignment, and offers it to the nearest available courier.

Race handling:
- Two dispatches can pick the same "nearest courier". The courier claim is a
  conditional flip (available -> busy); the loser moves on to the next candidate.
- Two dispatches can work the same order. The queued -> offered write is a
  compare-and-swap; the loser gives its courier back and returns the winner's row.

The order record is never touched here. The Lifecycle Controller moves it on
the first real courier transition.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from orders.gateway import OrderGateway
from orders.models import Order
from riders.directory import RiderDirectory
from riders.models import RiderSession, utcnow
from routing.geomath import InvalidCoordinates, LatLon, distance_km, estimate_duration_minutes, validate_position
from .errors import ConcurrentTransition, OrderNotPayable, UnresolvableLocation, ValidationError
from .events import AssignmentEvents
from .models import AssignmentStatus, DeliveryAssignment
from .policy import DispatchPolicy, default_dispatch_policy
from .state_machines.assignment_state import ensure_dispatch_transition
from .store import AssignmentStore, new_assignment_id

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Creates assignments and makes offers. Safe to call concurrently and repeatedly.
    """

    def __init__(
        self,
        riders: RiderDirectory,
        assignments: AssignmentStore,
        orders: OrderGateway,
        policy: Optional[DispatchPolicy] = None,
        events: Optional[AssignmentEvents] = None,
    ):
        self.riders = riders
        self.assignments = assignments
        self.orders = orders
        self.policy = policy or default_dispatch_policy()
        self.events = events or AssignmentEvents()

    def dispatch(self, order_id: str, now: Optional[datetime] = None) -> DeliveryAssignment:
        """
        Returns the order's assignment: offered when a courier was found,
        queued when nobody is free. Dispatching twice returns the same assignment.
        """
        now = now or utcnow()

        existing = self.assignments.get_by_order(order_id)
        if existing is not None and existing.status != AssignmentStatus.QUEUED:
            logger.info(f"Order {order_id} already has assignment {existing.id} ({existing.status.value})")
            return existing

        if existing is None:
            order = self.orders.get_order(order_id)
            if not order.is_payable:
                raise OrderNotPayable(order.id, order.status.value)

            assignment, created = self.assignments.get_or_create_queued(self._draft(order, now))
            if created:
                logger.info(f"Created assignment {assignment.id} for order {order_id}")
                self.events.publish_assignment(assignment)
            if assignment.status != AssignmentStatus.QUEUED:
                return assignment
        else:
            assignment = existing

        return self._offer_to_nearest(assignment, now)

    def reoffer(
        self,
        assignment: DeliveryAssignment,
        exclude_session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DeliveryAssignment:
        """
        Re-enter candidate selection for a queued assignment, skipping one courier.
        Used by the Timeout Sweeper after taking an offer back.
        """
        return self._offer_to_nearest(assignment, now or utcnow(), exclude_session_id)

    def dispatch_queued(self, now: Optional[datetime] = None) -> List[DeliveryAssignment]:
        """
        Try every queued assignment again, e.g. after capacity frees up.
        One failing row does not stop the others.
        """
        now = now or utcnow()
        results = []
        for assignment in self.assignments.list_by_status(AssignmentStatus.QUEUED):
            try:
                results.append(self._offer_to_nearest(assignment, now))
            except Exception as e:
                logger.error(f"Re-dispatch of assignment {assignment.id} failed: {e}")
        return results

    def offer_nearest_queued(self, session_id: str, now: Optional[datetime] = None) -> Optional[DeliveryAssignment]:
        """
        Courier poll. Returns the courier's live assignment if they have one,
        otherwise offers them the queued assignment with the closest pickup.
        None means nothing is available.
        """
        now = now or utcnow()
        rider = self.riders.get(session_id)

        active = self.assignments.active_for_rider(session_id)
        if active is not None:
            return active

        if not rider.is_available or rider.position is None:
            return None
        if not rider.is_fresh(now, self.riders.freshness_seconds):
            logger.info(f"Rider {session_id} polled with stale presence, no offer made")
            return None

        queued = self.assignments.list_by_status(AssignmentStatus.QUEUED)
        queued.sort(key=lambda assignment: (distance_km(rider.position, assignment.pickup), assignment.id))

        for assignment in queued:
            result = self._try_offer(assignment, rider, now)
            if result is None:
                # somebody else claimed this courier while we were looking
                return self.assignments.active_for_rider(session_id)
            if result.rider_session_id == rider.id and result.status == AssignmentStatus.OFFERED:
                return result

        return None

    def queued_estimates(self, pickup: LatLon, dropoff: LatLon) -> dict:
        """
        Distance fields for an assignment nobody holds: no pickup leg yet.
        """
        delivery_leg = distance_km(pickup, dropoff)
        return {
            "distance_km": None,
            "route_distance_km": delivery_leg,
            "estimated_duration_minutes": self._estimate(delivery_leg),
        }

    # --- internals ---

    def _draft(self, order: Order, now: datetime) -> DeliveryAssignment:
        pickup, dropoff = self._resolve_locations(order)

        return DeliveryAssignment(
            id=new_assignment_id(),
            order_id=order.id,
            pickup=pickup,
            dropoff=dropoff,
            status=AssignmentStatus.QUEUED,
            delivery_fee=order.delivery_fee,
            created_at=now,
            updated_at=now,
            **self.queued_estimates(pickup, dropoff),
        )

    def _resolve_locations(self, order: Order) -> Tuple[LatLon, LatLon]:
        if order.pickup is None:
            raise UnresolvableLocation(order.id, "pickup")
        if order.dropoff is None:
            raise UnresolvableLocation(order.id, "dropoff")

        try:
            return validate_position(*order.pickup), validate_position(*order.dropoff)
        except InvalidCoordinates as e:
            raise ValidationError(f"Order {order.id} has invalid coordinates: {e}") from e

    def _estimate(self, route_km: float) -> int:
        return estimate_duration_minutes(
            route_km,
            self.policy.average_speed_kmh,
            self.policy.minimum_duration_minutes,
        )

    def _offer_to_nearest(
        self,
        assignment: DeliveryAssignment,
        now: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> DeliveryAssignment:
        candidates = self.riders.find_available_near(assignment.pickup, exclude_session_id, now)
        if not candidates:
            logger.info(f"No available riders for assignment {assignment.id}, left queued")
            return assignment

        for rider in candidates[: self.policy.max_claim_attempts]:
            result = self._try_offer(assignment, rider, now)
            if result is None:
                continue
            return result

        logger.info(f"Every candidate for assignment {assignment.id} was claimed concurrently, left queued")
        return self.assignments.get(assignment.id)

    def _try_offer(
        self,
        assignment: DeliveryAssignment,
        rider: RiderSession,
        now: datetime,
    ) -> Optional[DeliveryAssignment]:
        """
        Claim `rider` and swap the assignment queued -> offered in one atomic block.

        Returns None when the courier was already claimed (try the next one),
        otherwise the assignment as it now stands: offered to this courier, or
        whatever a concurrent caller turned it into.
        """
        ensure_dispatch_transition(assignment.status, AssignmentStatus.OFFERED)
        pickup_leg = distance_km(rider.position, assignment.pickup)
        route_km = pickup_leg + distance_km(assignment.pickup, assignment.dropoff)

        with self.assignments.atomic():
            if not self.riders.claim(rider.id):
                logger.info(f"Rider {rider.id} was claimed concurrently, trying next candidate")
                return None

            try:
                offered = self.assignments.compare_and_set(
                    assignment.id,
                    AssignmentStatus.QUEUED,
                    now,
                    status=AssignmentStatus.OFFERED,
                    rider_session_id=rider.id,
                    offered_at=now,
                    distance_km=pickup_leg,
                    route_distance_km=route_km,
                    estimated_duration_minutes=self._estimate(route_km),
                )
            except ConcurrentTransition as e:
                self.riders.release(rider.id)
                logger.info(f"Assignment {assignment.id} moved on concurrently ({e.actual}), released rider {rider.id}")
                return self.assignments.get(assignment.id)
            except Exception:
                self.riders.release(rider.id)
                raise

        logger.info(
            f"Offered assignment {offered.id} to rider {rider.id} "
            f"({pickup_leg:.2f} km to pickup, {offered.estimated_duration_minutes} min)"
        )
        self.events.publish_assignment(offered)
        return offered
