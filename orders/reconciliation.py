"""
Purpose: Track order-status writes that failed after the courier-facing state committed.
What it does:
- record(): remember the (order_id, status) the order projection is missing
- retry(gateway): the out-of-band reconciliation pass; replays pending gaps
  oldest first and keeps the ones that still fail

The courier's view is authoritative. A lagging order record never fails the
courier's action, it lands here instead.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from riders.models import utcnow
from .gateway import OrderGateway
from .models import OrderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationGap:
    order_id: str
    status: OrderStatus
    assignment_id: str
    error: str
    recorded_at: datetime


class ReconciliationQueue:

    def __init__(self):
        self._lock = threading.Lock()
        # keyed by order id: a newer status for the same order supersedes the older gap
        self._pending: Dict[str, ReconciliationGap] = {}

    def record(
        self,
        order_id: str,
        status: OrderStatus,
        assignment_id: str,
        error: Exception,
        now: Optional[datetime] = None,
    ) -> ReconciliationGap:
        gap = ReconciliationGap(
            order_id=order_id,
            status=status,
            assignment_id=assignment_id,
            error=str(error),
            recorded_at=now or utcnow(),
        )
        with self._lock:
            self._pending[order_id] = gap
        logger.error(
            f"Reconciliation gap: order {order_id} should be {status.value} "
            f"(assignment {assignment_id}): {error}"
        )
        return gap

    def pending(self) -> List[ReconciliationGap]:
        with self._lock:
            return sorted(self._pending.values(), key=lambda gap: gap.recorded_at)

    def retry(self, gateway: OrderGateway) -> int:
        """
        Replays every pending gap. Returns how many were resolved.
        """
        resolved = 0
        for gap in self.pending():
            try:
                gateway.update_status(gap.order_id, gap.status)
            except Exception as e:
                logger.warning(f"Reconciliation retry for order {gap.order_id} failed: {e}")
                continue

            with self._lock:
                # only drop it if nothing newer was recorded meanwhile
                if self._pending.get(gap.order_id) is gap:
                    del self._pending[gap.order_id]
            resolved += 1

        return resolved
