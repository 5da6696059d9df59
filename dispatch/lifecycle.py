"""
Purpose: Lifecycle Controller, applies courier actions to an assignment.
What it does:
- validates the requested edge against the state machine
- writes the new status with compare-and-swap against the persisted status
- forwards the courier's reported position to the Rider Directory
- releases the courier on delivered / cancelled
- projects the new status onto the order record

Side effects run in that order. If the order write fails the courier-facing
state stays committed and the gap goes to the ReconciliationQueue.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from orders.gateway import OrderGateway
from orders.reconciliation import ReconciliationQueue
from riders.directory import RiderDirectory
from riders.models import utcnow
from routing.geomath import InvalidCoordinates, LatLon, validate_position
from .errors import MissingProof, NotAssignedRider, ValidationError
from .events import AssignmentEvents
from .models import AssignmentStatus, CompletionArtifacts, DeliveryAssignment
from .state_machines.assignment_state import ensure_courier_transition, order_status_for
from .store import AssignmentStore

logger = logging.getLogger(__name__)

# courier app verbs -> target status
COURIER_ACTIONS = {
    "accept": AssignmentStatus.ACCEPTED,
    "picked_up": AssignmentStatus.PICKED_UP,
    "en_route": AssignmentStatus.EN_ROUTE,
    "delivered": AssignmentStatus.DELIVERED,
    "cancel": AssignmentStatus.CANCELLED,
}


def status_for_action(action: str) -> AssignmentStatus:
    try:
        return COURIER_ACTIONS[action]
    except KeyError:
        raise ValidationError(f"Unknown courier action {action!r}, expected one of {sorted(COURIER_ACTIONS)}")


class LifecycleController:

    def __init__(
        self,
        riders: RiderDirectory,
        assignments: AssignmentStore,
        orders: OrderGateway,
        reconciliation: Optional[ReconciliationQueue] = None,
        events: Optional[AssignmentEvents] = None,
    ):
        self.riders = riders
        self.assignments = assignments
        self.orders = orders
        self.reconciliation = reconciliation or ReconciliationQueue()
        self.events = events or AssignmentEvents()

    def apply_transition(
        self,
        assignment_id: str,
        target_status: Union[AssignmentStatus, str],
        rider_position: Optional[LatLon] = None,
        completion: Optional[CompletionArtifacts] = None,
        rider_session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DeliveryAssignment:
        """
        Move an assignment one step along the lifecycle.

        Raises InvalidTransition, MissingProof, NotAssignedRider or ValidationError
        before anything is written, and ConcurrentTransition when another caller
        changed the row between our read and our write.
        """
        target = self._parse_status(target_status)
        completion = completion or CompletionArtifacts()

        if rider_position is not None:
            try:
                rider_position = validate_position(*rider_position)
            except InvalidCoordinates as e:
                raise ValidationError(str(e)) from e

        rating = completion.customer_rating
        if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5):
            raise ValidationError(f"customer_rating must be an integer from 1 to 5, got {rating!r}")

        now = now or utcnow()
        current = self.assignments.get(assignment_id)

        if rider_session_id is not None and current.rider_session_id != rider_session_id:
            raise NotAssignedRider(assignment_id, rider_session_id)

        ensure_courier_transition(current.status, target)

        changes = {"status": target}
        if target == AssignmentStatus.ACCEPTED:
            changes["accepted_at"] = now
        elif target == AssignmentStatus.DELIVERED:
            if not completion.proof_of_delivery_url:
                raise MissingProof(assignment_id)
            changes.update(
                completed_at=now,
                proof_of_delivery_url=completion.proof_of_delivery_url,
                delivery_notes=completion.delivery_notes,
                customer_rating=completion.customer_rating,
            )

        # 1. assignment row
        updated = self.assignments.compare_and_set(
            current.id,
            current.status,
            now,
            expected_rider_id=current.rider_session_id,
            **changes,
        )
        logger.info(f"Assignment {updated.id}: {current.status.value} -> {updated.status.value}")

        # 2. courier presence
        holder = updated.rider_session_id
        if holder is not None:
            if rider_position is not None:
                self._forward_position(holder, rider_position, now)
            if updated.is_terminal:
                self.riders.release(holder, now=now)
                logger.info(f"Released rider {holder} after {updated.status.value}")

        # 3. order projection
        self._project_order(updated, now)

        self.events.publish_assignment(updated)
        return updated

    def _parse_status(self, target_status) -> AssignmentStatus:
        try:
            return AssignmentStatus(target_status)
        except ValueError:
            raise ValidationError(f"Unknown assignment status {target_status!r}")

    def _forward_position(self, session_id: str, position: LatLon, now: datetime) -> None:
        try:
            rider = self.riders.update_position(session_id, position[0], position[1], now=now)
        except Exception as e:
            # a missed position is superseded by the next heartbeat
            logger.warning(f"Failed to update position for rider {session_id}: {e}")
            return
        self.events.publish_position(rider)

    def _project_order(self, assignment: DeliveryAssignment, now: datetime) -> None:
        order_status = order_status_for(assignment.status)
        if order_status is None:
            return

        try:
            self.orders.update_status(assignment.order_id, order_status)
        except Exception as e:
            self.reconciliation.record(assignment.order_id, order_status, assignment.id, e, now=now)
