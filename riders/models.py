"""
Purpose: Core data models for the riders (couriers) domain.
What it does:
Defines the structure of a RiderSession without relying on Django ORM constraints.
A session is keyed by a device fingerprint rather than an account.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from routing.geomath import LatLon


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiderNotFound(LookupError):
    """Raised when a session id or fingerprint does not match any rider."""
    pass


class InvalidRiderDetails(ValueError):
    """Raised when registration data is missing required fields."""
    pass


@dataclass(frozen=True)
class RiderSession:
    """
    A snapshot of one courier device/session at a point in time.
    Stores hand out copies; mutate through the directory, never in place.
    """
    id: str
    device_fingerprint: str
    name: str
    phone: str

    position: Optional[LatLon] = None
    last_seen_at: Optional[datetime] = None
    is_available: bool = True

    created_at: Optional[datetime] = None

    def with_position(self, position: LatLon, seen_at: datetime) -> RiderSession:
        return replace(self, position=position, last_seen_at=seen_at)

    def is_fresh(self, now: datetime, freshness_seconds: int) -> bool:
        if self.last_seen_at is None:
            return False
        return (now - self.last_seen_at).total_seconds() <= freshness_seconds

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "lat": self.position[0] if self.position else None,
            "lng": self.position[1] if self.position else None,
            "is_available": self.is_available,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
        }
