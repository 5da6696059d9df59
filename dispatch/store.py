"""
Purpose: Assignment Store, the single source of truth for delivery lifecycles.
What it does:
- get / get_by_order / list queries
- get_or_create_queued(): idempotent upsert keyed by order id
- compare_and_set(): the only way a status changes. The write succeeds only if
  the persisted status (and optionally rider) still equal what the caller read.
- atomic(): a block in which a courier claim and an assignment write commit together

AssignmentStore is the contract. InMemoryAssignmentStore lives here, the Django ORM
store in backend/logistics/repositories.py.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import nullcontext
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .errors import AssignmentNotFound, ConcurrentTransition
from .models import AssignmentStatus, DeliveryAssignment

# marker for "do not check the rider" in compare_and_set
ANY_RIDER = object()


def new_assignment_id() -> str:
    return str(uuid.uuid4())


class AssignmentStore:

    def atomic(self):
        return nullcontext()

    def get(self, assignment_id: str) -> DeliveryAssignment:
        raise NotImplementedError

    def get_by_order(self, order_id: str) -> Optional[DeliveryAssignment]:
        raise NotImplementedError

    def get_or_create_queued(self, draft: DeliveryAssignment) -> Tuple[DeliveryAssignment, bool]:
        """
        Insert `draft` as a queued row unless the order already has one.
        Returns (row, created).
        """
        raise NotImplementedError

    def compare_and_set(
        self,
        assignment_id: str,
        expected_status: AssignmentStatus,
        now: datetime,
        expected_rider_id=ANY_RIDER,
        **changes,
    ) -> DeliveryAssignment:
        """
        Apply `changes` only if the row is still in `expected_status`
        (and held by `expected_rider_id` when given). Raises ConcurrentTransition otherwise.
        """
        raise NotImplementedError

    def list_by_status(self, status: AssignmentStatus) -> List[DeliveryAssignment]:
        raise NotImplementedError

    def list_offered_before(self, cutoff: datetime) -> List[DeliveryAssignment]:
        raise NotImplementedError

    def active_for_rider(self, rider_session_id: str) -> Optional[DeliveryAssignment]:
        """The courier's live (non-terminal) assignment, if any."""
        raise NotImplementedError


class InMemoryAssignmentStore(AssignmentStore):

    def __init__(self):
        self._lock = threading.Lock()
        # held across a claim + swap, and across a heartbeat's idle check + write
        self._block = threading.RLock()
        self._rows: Dict[str, DeliveryAssignment] = {}
        self._by_order: Dict[str, str] = {}

    def atomic(self):
        return self._block

    def get(self, assignment_id: str) -> DeliveryAssignment:
        with self._lock:
            row = self._rows.get(assignment_id)
        if row is None:
            raise AssignmentNotFound(assignment_id)
        return row

    def get_by_order(self, order_id: str) -> Optional[DeliveryAssignment]:
        with self._lock:
            assignment_id = self._by_order.get(order_id)
            return self._rows.get(assignment_id) if assignment_id else None

    def get_or_create_queued(self, draft: DeliveryAssignment) -> Tuple[DeliveryAssignment, bool]:
        with self._lock:
            existing_id = self._by_order.get(draft.order_id)
            if existing_id is not None:
                return self._rows[existing_id], False

            row = replace(draft, status=AssignmentStatus.QUEUED, rider_session_id=None)
            self._rows[row.id] = row
            self._by_order[row.order_id] = row.id
            return row, True

    def compare_and_set(self, assignment_id, expected_status, now, expected_rider_id=ANY_RIDER, **changes):
        with self._lock:
            row = self._rows.get(assignment_id)
            if row is None:
                raise AssignmentNotFound(assignment_id)

            if row.status != expected_status:
                raise ConcurrentTransition(assignment_id, expected_status.value, row.status.value)
            if expected_rider_id is not ANY_RIDER and row.rider_session_id != expected_rider_id:
                raise ConcurrentTransition(
                    assignment_id,
                    f"{expected_status.value} held by {expected_rider_id}",
                    f"{row.status.value} held by {row.rider_session_id}",
                )

            row = replace(row, updated_at=now, **changes)
            self._rows[assignment_id] = row
            return row

    def list_by_status(self, status: AssignmentStatus) -> List[DeliveryAssignment]:
        with self._lock:
            rows = [row for row in self._rows.values() if row.status == status]
        return sorted(rows, key=_created_order)

    def list_offered_before(self, cutoff: datetime) -> List[DeliveryAssignment]:
        with self._lock:
            rows = [
                row for row in self._rows.values()
                if row.status == AssignmentStatus.OFFERED
                and row.offered_at is not None
                and row.offered_at < cutoff
            ]
        return sorted(rows, key=lambda row: row.offered_at)

    def active_for_rider(self, rider_session_id: str) -> Optional[DeliveryAssignment]:
        with self._lock:
            for row in self._rows.values():
                if row.rider_session_id == rider_session_id and not row.is_terminal:
                    return row
        return None


def _created_order(row: DeliveryAssignment):
    return (row.created_at is None, row.created_at or datetime.min, row.id)
