"""
Purpose: Rider Directory and presence tracking.
What it does:
- registers / resumes courier sessions keyed by device fingerprint
- stores each courier's live position and last-seen heartbeat
- answers "who is free and near X" sorted by haversine distance
- exposes the conditional claim (available -> busy) used to stop two dispatch
  attempts from grabbing the same courier

RiderDirectory holds the rules. Storage lives in subclasses:
InMemoryRiderDirectory here, the Django ORM one in backend/logistics/repositories.py.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from routing.geomath import LatLon, distance_km, validate_position
from .identity import RiderIdentity
from .models import InvalidRiderDetails, RiderNotFound, RiderSession, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_SECONDS = 120


class RiderDirectory:
    """
    Shared directory behaviour. Subclasses implement the storage primitives below.
    """

    def __init__(self, freshness_seconds: int = DEFAULT_FRESHNESS_SECONDS):
        if freshness_seconds <= 0:
            raise ValueError("freshness_seconds must be > 0")
        self.freshness_seconds = freshness_seconds

    # --- Public API ---

    def register_rider(
        self,
        identity: RiderIdentity,
        name: str,
        phone: str,
        position: Optional[LatLon] = None,
        now: Optional[datetime] = None,
    ) -> RiderSession:
        """
        Create a session for a new fingerprint, or resume the existing one.
        A position is optional here but required before the courier can get work.
        """
        name = (name or "").strip()
        phone = (phone or "").strip()
        if not name or not phone:
            raise InvalidRiderDetails("name and phone are required")

        if position is not None:
            position = validate_position(*position)

        now = now or utcnow()
        rider = self._register(identity.fingerprint, name, phone, position, now)
        logger.info(f"Rider session {rider.id} registered (available={rider.is_available})")
        return rider

    def update_position(
        self,
        session_id: str,
        lat: float,
        lng: float,
        availability: Optional[bool] = None,
        now: Optional[datetime] = None,
        idle_check: Optional[Callable[[], bool]] = None,
    ) -> RiderSession:
        """
        Heartbeat. Position and last_seen_at always move; availability only when given.
        Last write wins.

        With `idle_check`, availability=True is applied only if the check still
        passes at write time, inside the same lock/row lock as the write.
        """
        position = validate_position(lat, lng)
        now = now or utcnow()
        return self._write_presence(session_id, position, now, availability, idle_check)

    def find_available_near(
        self,
        point: LatLon,
        exclude_session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[RiderSession]:
        """
        Available, fresh riders with a known position, nearest first.
        Ties on distance fall back to the lowest session id.
        An empty list is a normal answer.
        """
        point = validate_position(*point)
        now = now or utcnow()

        candidates = []
        for rider in self._list_available():
            if not rider.is_available or rider.position is None:
                continue
            if exclude_session_id is not None and rider.id == exclude_session_id:
                continue
            if not rider.is_fresh(now, self.freshness_seconds):
                continue
            candidates.append((distance_km(point, rider.position), rider.id, rider))

        candidates.sort(key=lambda candidate: (candidate[0], candidate[1]))
        return [rider for _, _, rider in candidates]

    def get(self, session_id: str) -> RiderSession:
        raise NotImplementedError

    def get_by_fingerprint(self, fingerprint: str) -> Optional[RiderSession]:
        raise NotImplementedError

    def claim(self, session_id: str) -> bool:
        """
        Atomically flip is_available True -> False.
        Returns False when someone else already holds the courier.
        """
        raise NotImplementedError

    def release(self, session_id: str, now: Optional[datetime] = None) -> None:
        """
        Mark the courier available again. `now`, when given, also counts as a sighting.
        """
        raise NotImplementedError

    # --- Storage primitives ---

    def _register(
        self,
        fingerprint: str,
        name: str,
        phone: str,
        position: Optional[LatLon],
        now: datetime,
    ) -> RiderSession:
        raise NotImplementedError

    def _write_presence(
        self,
        session_id: str,
        position: LatLon,
        now: datetime,
        availability: Optional[bool],
        idle_check: Optional[Callable[[], bool]] = None,
    ) -> RiderSession:
        raise NotImplementedError

    def _list_available(self) -> List[RiderSession]:
        raise NotImplementedError


class InMemoryRiderDirectory(RiderDirectory):
    """
    Process-local directory. Every primitive runs under one lock so claim/release
    behave like a conditional UPDATE.
    """

    def __init__(self, freshness_seconds: int = DEFAULT_FRESHNESS_SECONDS):
        super().__init__(freshness_seconds)
        self._lock = threading.Lock()
        self._riders: Dict[str, RiderSession] = {}
        self._by_fingerprint: Dict[str, str] = {}

    def get(self, session_id: str) -> RiderSession:
        with self._lock:
            rider = self._riders.get(session_id)
        if rider is None:
            raise RiderNotFound(f"Rider session {session_id} not found")
        return rider

    def get_by_fingerprint(self, fingerprint: str) -> Optional[RiderSession]:
        with self._lock:
            session_id = self._by_fingerprint.get(fingerprint)
            return self._riders.get(session_id) if session_id else None

    def claim(self, session_id: str) -> bool:
        with self._lock:
            rider = self._riders.get(session_id)
            if rider is None:
                raise RiderNotFound(f"Rider session {session_id} not found")
            if not rider.is_available:
                return False
            self._riders[session_id] = _replace_availability(rider, False)
            return True

    def release(self, session_id: str, now: Optional[datetime] = None) -> None:
        with self._lock:
            rider = self._riders.get(session_id)
            if rider is None:
                raise RiderNotFound(f"Rider session {session_id} not found")
            rider = _replace_availability(rider, True)
            if now is not None:
                rider = replace(rider, last_seen_at=now)
            self._riders[session_id] = rider

    def _register(self, fingerprint, name, phone, position, now):
        with self._lock:
            session_id = self._by_fingerprint.get(fingerprint)
            existing = self._riders.get(session_id) if session_id else None

            if existing is None:
                rider = RiderSession(
                    id=str(uuid.uuid4()),
                    device_fingerprint=fingerprint,
                    name=name,
                    phone=phone,
                    position=position,
                    last_seen_at=now,
                    is_available=True,
                    created_at=now,
                )
                self._by_fingerprint[fingerprint] = rider.id
            else:
                rider = RiderSession(
                    id=existing.id,
                    device_fingerprint=fingerprint,
                    name=name,
                    phone=phone,
                    position=position if position is not None else existing.position,
                    last_seen_at=now,
                    is_available=existing.is_available,
                    created_at=existing.created_at,
                )

            self._riders[rider.id] = rider
            return rider

    def _write_presence(self, session_id, position, now, availability, idle_check=None):
        with self._lock:
            rider = self._riders.get(session_id)
            if rider is None:
                raise RiderNotFound(f"Rider session {session_id} not found")
            rider = rider.with_position(position, now)
            # idle_check reads the assignment store; store code never calls back in here
            if availability and idle_check is not None and not idle_check():
                logger.info(f"Rider {session_id} asked to go available while holding an assignment, ignored")
                availability = None
            if availability is not None:
                rider = _replace_availability(rider, availability)
            self._riders[session_id] = rider
            return rider

    def _list_available(self) -> List[RiderSession]:
        with self._lock:
            return [rider for rider in self._riders.values() if rider.is_available]


def _replace_availability(rider: RiderSession, available: bool) -> RiderSession:
    return replace(rider, is_available=available)
