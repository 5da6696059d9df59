"""
Django ORM implementations of the engine's storage ports.

Every state change is a conditional UPDATE:
- courier claim:   UPDATE rider_session SET is_available = false WHERE id = ? AND is_available = true
- status change:   UPDATE delivery_assignment SET ... WHERE id = ? AND status = ? [AND rider_session_id = ?]
- back on shift:   UPDATE rider_session SET is_available = true WHERE id = ? AND NOT EXISTS (live assignment)
A zero row count means a concurrent caller got there first.
"""

import logging

from django.db import IntegrityError, transaction
from django.db.models import Exists, OuterRef
from django.utils import timezone

from dispatch.errors import AssignmentNotFound, ConcurrentTransition
from dispatch.models import AssignmentStatus, DeliveryAssignment
from dispatch.store import ANY_RIDER, AssignmentStore
from orders.gateway import OrderGateway, OrderNotFound, ensure_delivery_status
from orders.models import Order, OrderStatus
from riders.directory import RiderDirectory
from riders.models import RiderNotFound, RiderSession

from . import models

logger = logging.getLogger(__name__)

TERMINAL = [AssignmentStatus.DELIVERED.value, AssignmentStatus.CANCELLED.value]


def _position(lat, lng):
    if lat is None or lng is None:
        return None
    return (lat, lng)


def rider_to_domain(record: models.RiderSession) -> RiderSession:
    return RiderSession(
        id=record.id,
        device_fingerprint=record.device_fingerprint,
        name=record.rider_name,
        phone=str(record.phone),
        position=_position(record.current_lat, record.current_lng),
        last_seen_at=record.last_seen_at,
        is_available=record.is_available,
        created_at=record.created_at,
    )


def assignment_to_domain(record: models.DeliveryAssignment) -> DeliveryAssignment:
    return DeliveryAssignment(
        id=record.id,
        order_id=str(record.order_id),
        pickup=(record.pickup_lat, record.pickup_lng),
        dropoff=(record.dropoff_lat, record.dropoff_lng),
        status=AssignmentStatus(record.status),
        rider_session_id=record.rider_session_id,
        distance_km=record.distance_km,
        route_distance_km=record.route_distance_km,
        estimated_duration_minutes=record.estimated_duration_minutes,
        delivery_fee=record.delivery_fee,
        offered_at=record.offered_at,
        accepted_at=record.accepted_at,
        completed_at=record.completed_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
        proof_of_delivery_url=record.proof_of_delivery_url,
        delivery_notes=record.delivery_notes,
        customer_rating=record.customer_rating,
    )


class DjangoRiderDirectory(RiderDirectory):

    def get(self, session_id):
        try:
            return rider_to_domain(models.RiderSession.objects.get(pk=session_id))
        except models.RiderSession.DoesNotExist:
            raise RiderNotFound(f"Rider session {session_id} not found")

    def get_by_fingerprint(self, fingerprint):
        record = models.RiderSession.objects.filter(device_fingerprint=fingerprint).first()
        return rider_to_domain(record) if record else None

    def claim(self, session_id):
        claimed = models.RiderSession.objects.filter(pk=session_id, is_available=True).update(is_available=False)
        if claimed:
            return True
        if not models.RiderSession.objects.filter(pk=session_id).exists():
            raise RiderNotFound(f"Rider session {session_id} not found")
        return False

    def release(self, session_id, now=None):
        fields = {"is_available": True}
        if now is not None:
            fields["last_seen_at"] = now
        released = models.RiderSession.objects.filter(pk=session_id).update(**fields)
        if not released:
            raise RiderNotFound(f"Rider session {session_id} not found")

    def _register(self, fingerprint, name, phone, position, now):
        defaults = {"rider_name": name, "phone": phone, "last_seen_at": now}
        if position is not None:
            defaults["current_lat"], defaults["current_lng"] = position

        # availability is left alone on resume; new rows take the model default (available)
        record, _ = models.RiderSession.objects.update_or_create(
            device_fingerprint=fingerprint,
            defaults=defaults,
        )
        return rider_to_domain(record)

    def _write_presence(self, session_id, position, now, availability, idle_check=None):
        fields = {"current_lat": position[0], "current_lng": position[1], "last_seen_at": now}

        with transaction.atomic():
            # takes the row lock first, so a claim still in flight commits before the check below
            if not models.RiderSession.objects.filter(pk=session_id).update(**fields):
                raise RiderNotFound(f"Rider session {session_id} not found")

            if availability is not None:
                query = models.RiderSession.objects.filter(pk=session_id)
                if availability and idle_check is not None:
                    # same check as idle_check, evaluated by the database in the UPDATE itself
                    query = query.exclude(Exists(
                        models.DeliveryAssignment.objects
                        .filter(rider_session=OuterRef("pk"))
                        .exclude(status__in=TERMINAL)
                    ))
                if not query.update(is_available=availability):
                    logger.info(f"Rider {session_id} asked to go available while holding an assignment, ignored")

        return self.get(session_id)

    def _list_available(self):
        records = models.RiderSession.objects.filter(
            is_available=True,
            current_lat__isnull=False,
            current_lng__isnull=False,
        )
        return [rider_to_domain(record) for record in records]


class DjangoAssignmentStore(AssignmentStore):

    def atomic(self):
        return transaction.atomic()

    def get(self, assignment_id):
        try:
            return assignment_to_domain(models.DeliveryAssignment.objects.get(pk=assignment_id))
        except models.DeliveryAssignment.DoesNotExist:
            raise AssignmentNotFound(assignment_id)

    def get_by_order(self, order_id):
        try:
            record = models.DeliveryAssignment.objects.filter(order_id=order_id).first()
        except (ValueError, TypeError):
            return None
        return assignment_to_domain(record) if record else None

    def get_or_create_queued(self, draft):
        existing = self.get_by_order(draft.order_id)
        if existing is not None:
            return existing, False

        try:
            with transaction.atomic():
                record = models.DeliveryAssignment.objects.create(
                    id=draft.id,
                    order_id=draft.order_id,
                    rider_session=None,
                    status=AssignmentStatus.QUEUED.value,
                    pickup_lat=draft.pickup[0],
                    pickup_lng=draft.pickup[1],
                    dropoff_lat=draft.dropoff[0],
                    dropoff_lng=draft.dropoff[1],
                    distance_km=draft.distance_km,
                    route_distance_km=draft.route_distance_km,
                    estimated_duration_minutes=draft.estimated_duration_minutes,
                    delivery_fee=draft.delivery_fee,
                    created_at=draft.created_at or timezone.now(),
                    updated_at=draft.updated_at or timezone.now(),
                )
        except IntegrityError:
            # lost the insert race on the unique order_id
            logger.info(f"Assignment for order {draft.order_id} created concurrently, reusing it")
            return self.get_by_order(draft.order_id), False

        return assignment_to_domain(record), True

    def compare_and_set(self, assignment_id, expected_status, now, expected_rider_id=ANY_RIDER, **changes):
        columns = {
            key: value.value if isinstance(value, AssignmentStatus) else value
            for key, value in changes.items()
        }
        columns["updated_at"] = now

        # savepoint: a failed write must not poison an enclosing atomic() block
        with transaction.atomic():
            query = models.DeliveryAssignment.objects.filter(pk=assignment_id, status=expected_status.value)
            if expected_rider_id is not ANY_RIDER:
                query = query.filter(rider_session_id=expected_rider_id)
            updated = query.update(**columns)

        if not updated:
            current = self.get(assignment_id)
            raise ConcurrentTransition(assignment_id, expected_status.value, current.status.value)

        return self.get(assignment_id)

    def list_by_status(self, status):
        records = models.DeliveryAssignment.objects.filter(status=status.value).order_by("created_at", "id")
        return [assignment_to_domain(record) for record in records]

    def list_offered_before(self, cutoff):
        records = models.DeliveryAssignment.objects.filter(
            status=AssignmentStatus.OFFERED.value,
            offered_at__lt=cutoff,
        ).order_by("offered_at")
        return [assignment_to_domain(record) for record in records]

    def active_for_rider(self, rider_session_id):
        record = (
            models.DeliveryAssignment.objects
            .filter(rider_session_id=rider_session_id)
            .exclude(status__in=TERMINAL)
            .first()
        )
        return assignment_to_domain(record) if record else None


class DjangoOrderGateway(OrderGateway):
    """
    Orders live in the same database. Pickup is the store's base location,
    drop-off the customer's captured coordinates.
    """

    def get_order(self, order_id):
        try:
            record = models.Order.objects.select_related("store").get(pk=order_id)
        except (models.Order.DoesNotExist, ValueError, TypeError):
            raise OrderNotFound(f"Order {order_id} not found")

        return Order(
            id=str(record.pk),
            pickup=_position(record.store.lat, record.store.lng),
            dropoff=_position(record.delivery_lat, record.delivery_lng),
            total=record.total_amount,
            status=OrderStatus(record.status),
            delivery_fee=record.delivery_fee,
        )

    def update_status(self, order_id, status):
        status = ensure_delivery_status(status)
        try:
            updated = models.Order.objects.filter(pk=order_id).update(status=status.value, updated_at=timezone.now())
        except (ValueError, TypeError):
            updated = 0
        if not updated:
            raise OrderNotFound(f"Order {order_id} not found")
