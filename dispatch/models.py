"""
Purpose: Core data models for delivery assignments.
What it does:
Defines DeliveryAssignment, its status enum and the completion artifacts a
courier submits at drop-off. Pure dataclasses, no ORM.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from routing.geomath import LatLon


class AssignmentStatus(str, Enum):
    QUEUED = "queued"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    EN_ROUTE = "en_route"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (AssignmentStatus.DELIVERED, AssignmentStatus.CANCELLED)


@dataclass(frozen=True)
class CompletionArtifacts:
    proof_of_delivery_url: Optional[str] = None
    delivery_notes: Optional[str] = None
    customer_rating: Optional[int] = None


@dataclass(frozen=True)
class DeliveryAssignment:
    """
    The durable record binding one order to one delivery attempt.
    Exactly one per order; rows are never deleted.
    """
    id: str
    order_id: str
    pickup: LatLon
    dropoff: LatLon
    status: AssignmentStatus = AssignmentStatus.QUEUED
    rider_session_id: Optional[str] = None

    # courier -> pickup. None while queued.
    distance_km: Optional[float] = None
    # courier -> pickup -> dropoff, or just pickup -> dropoff while queued
    route_distance_km: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None
    delivery_fee: Optional[Decimal] = None

    offered_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    proof_of_delivery_url: Optional[str] = None
    delivery_notes: Optional[str] = None
    customer_rating: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        """JSON-friendly snapshot for notifications and the HTTP layer."""
        def stamp(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "order_id": self.order_id,
            "rider_session_id": self.rider_session_id,
            "status": self.status.value,
            "pickup_lat": self.pickup[0],
            "pickup_lng": self.pickup[1],
            "dropoff_lat": self.dropoff[0],
            "dropoff_lng": self.dropoff[1],
            "distance_km": self.distance_km,
            "route_distance_km": self.route_distance_km,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "delivery_fee": str(self.delivery_fee) if self.delivery_fee is not None else None,
            "offered_at": stamp(self.offered_at),
            "accepted_at": stamp(self.accepted_at),
            "completed_at": stamp(self.completed_at),
            "updated_at": stamp(self.updated_at),
            "proof_of_delivery_url": self.proof_of_delivery_url,
            "delivery_notes": self.delivery_notes,
            "customer_rating": self.customer_rating,
        }
