"""
Purpose: Change notifications for tracking views and courier apps.
What it does:
An in-process observer hub. The engine publishes assignment snapshots and rider
positions; subscribers filter by order id, assignment id or session id.
Transports (polling endpoints, websockets, webhooks, a message bus) sit behind
a subscriber callback. A failing subscriber is logged and skipped, it never
fails the engine operation that published.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from riders.models import RiderSession
from .models import DeliveryAssignment

logger = logging.getLogger(__name__)

AssignmentCallback = Callable[[DeliveryAssignment], None]
PositionCallback = Callable[[RiderSession], None]


@dataclass(frozen=True)
class _AssignmentSubscription:
    callback: AssignmentCallback
    order_id: Optional[str] = None
    assignment_id: Optional[str] = None

    def matches(self, assignment: DeliveryAssignment) -> bool:
        if self.order_id is not None and assignment.order_id != self.order_id:
            return False
        if self.assignment_id is not None and assignment.id != self.assignment_id:
            return False
        return True


@dataclass(frozen=True)
class _PositionSubscription:
    callback: PositionCallback
    session_id: Optional[str] = None

    def matches(self, rider: RiderSession) -> bool:
        return self.session_id is None or rider.id == self.session_id


class AssignmentEvents:

    def __init__(self):
        self._lock = threading.Lock()
        self._assignment_subs: List[_AssignmentSubscription] = []
        self._position_subs: List[_PositionSubscription] = []

    def subscribe(
        self,
        callback: AssignmentCallback,
        order_id: Optional[str] = None,
        assignment_id: Optional[str] = None,
    ) -> Callable[[], None]:
        """
        Register for assignment-changed events. Returns an unsubscribe function.
        """
        subscription = _AssignmentSubscription(callback, order_id, assignment_id)
        with self._lock:
            self._assignment_subs.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._assignment_subs:
                    self._assignment_subs.remove(subscription)

        return unsubscribe

    def subscribe_positions(
        self,
        callback: PositionCallback,
        session_id: Optional[str] = None,
    ) -> Callable[[], None]:
        subscription = _PositionSubscription(callback, session_id)
        with self._lock:
            self._position_subs.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._position_subs:
                    self._position_subs.remove(subscription)

        return unsubscribe

    def publish_assignment(self, assignment: DeliveryAssignment) -> None:
        with self._lock:
            targets = [sub for sub in self._assignment_subs if sub.matches(assignment)]

        for sub in targets:
            try:
                sub.callback(assignment)
            except Exception as e:
                logger.error(f"Assignment subscriber failed for {assignment.id}: {e}")

    def publish_position(self, rider: RiderSession) -> None:
        with self._lock:
            targets = [sub for sub in self._position_subs if sub.matches(rider)]

        for sub in targets:
            try:
                sub.callback(rider)
            except Exception as e:
                logger.error(f"Position subscriber failed for rider {rider.id}: {e}")
