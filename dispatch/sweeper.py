"""
Purpose: Timeout Sweeper, recovers offers a courier never answered.
What it does:
Runs on an external schedule (cron, `manage.py sweep_assignments`, POST /sweeps/).
Every `offered` assignment older than the grace period is taken back from its
courier, the courier is released, and the assignment is offered to the next
nearest free courier, or returned to the queue when there is none.

Each assignment is handled on its own: one failure is logged and recorded,
the rest of the batch carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from riders.models import utcnow
from .dispatcher import Dispatcher
from .errors import ConcurrentTransition
from .models import AssignmentStatus, DeliveryAssignment
from .state_machines.assignment_state import ensure_dispatch_transition

logger = logging.getLogger(__name__)

REASSIGNED = "reassigned"
REQUEUED = "requeued"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class SweepResult:
    assignment_id: str
    order_id: str
    outcome: str
    previous_rider_id: Optional[str] = None
    new_rider_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "assignment_id": self.assignment_id,
            "order_id": self.order_id,
            "status": self.outcome,
            "previous_rider": self.previous_rider_id,
            "new_rider": self.new_rider_id,
            "error": self.error,
        }


@dataclass
class SweepSummary:
    results: List[SweepResult] = field(default_factory=list)

    def _count(self, outcome: str) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def reassigned(self) -> int:
        return self._count(REASSIGNED)

    @property
    def requeued(self) -> int:
        return self._count(REQUEUED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "reassigned": self.reassigned,
            "requeued": self.requeued,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [result.to_dict() for result in self.results],
        }


class TimeoutSweeper:

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self.assignments = dispatcher.assignments
        self.riders = dispatcher.riders
        self.events = dispatcher.events
        self.policy = dispatcher.policy

    def run(self, now: Optional[datetime] = None) -> SweepSummary:
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.policy.offer_grace_period_seconds)

        stale = self.assignments.list_offered_before(cutoff)
        logger.info(f"Found {len(stale)} timed out assignments")

        summary = SweepSummary()
        for assignment in stale:
            try:
                result = self._recover(assignment, now)
            except Exception as e:
                logger.error(f"Error processing timed out assignment {assignment.id}: {e}")
                result = SweepResult(
                    assignment_id=assignment.id,
                    order_id=assignment.order_id,
                    outcome=FAILED,
                    previous_rider_id=assignment.rider_session_id,
                    error=str(e),
                )
            summary.results.append(result)

        logger.info(
            f"Timeout sweep done: processed={summary.processed} reassigned={summary.reassigned} "
            f"requeued={summary.requeued} skipped={summary.skipped} failed={summary.failed}"
        )
        return summary

    def _recover(self, assignment: DeliveryAssignment, now: datetime) -> SweepResult:
        ensure_dispatch_transition(assignment.status, AssignmentStatus.QUEUED)
        previous = assignment.rider_session_id

        # take the offer back first; a courier accepting at this instant wins the swap
        with self.assignments.atomic():
            try:
                requeued = self.assignments.compare_and_set(
                    assignment.id,
                    AssignmentStatus.OFFERED,
                    now,
                    expected_rider_id=previous,
                    status=AssignmentStatus.QUEUED,
                    rider_session_id=None,
                    offered_at=None,
                    **self.dispatcher.queued_estimates(assignment.pickup, assignment.dropoff),
                )
            except ConcurrentTransition as e:
                logger.info(f"Assignment {assignment.id} changed before timeout could apply: {e}")
                return SweepResult(assignment.id, assignment.order_id, SKIPPED, previous_rider_id=previous)

            if previous is not None:
                self.riders.release(previous)

        logger.info(f"Took assignment {assignment.id} back from rider {previous}")
        self.events.publish_assignment(requeued)

        result = self.dispatcher.reoffer(requeued, exclude_session_id=previous, now=now)

        if result.status == AssignmentStatus.OFFERED and result.rider_session_id not in (None, previous):
            logger.info(f"Assignment {assignment.id} reassigned from {previous} to {result.rider_session_id}")
            return SweepResult(
                assignment.id,
                assignment.order_id,
                REASSIGNED,
                previous_rider_id=previous,
                new_rider_id=result.rider_session_id,
            )

        logger.info(f"Assignment {assignment.id} requeued - no available riders")
        return SweepResult(assignment.id, assignment.order_id, REQUEUED, previous_rider_id=previous)
