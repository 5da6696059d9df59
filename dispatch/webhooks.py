#Purpose: Webhook transport for assignment change notifications.
#Sole responsibility: POST assignment snapshots / rider positions as JSON to a URL.
#Plugs into AssignmentEvents as a subscriber; it holds no dispatch rules.
#
#Configured from the environment (or a .env file):
#ASSIGNMENT_WEBHOOK_URL=https://tracking.example.com/hooks/deliveries
#ASSIGNMENT_WEBHOOK_TIMEOUT=5

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv

from riders.models import RiderSession
from .events import AssignmentEvents
from .models import DeliveryAssignment

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Raised when the webhook endpoint rejects a notification."""
    pass


class WebhookNotifier:
    """
    Webhook adapter

    - assignment snapshots go out as {"event": "assignment.changed", "assignment": {...}}
    - positions go out as {"event": "rider.position", "rider": {...}}
    """

    def __init__(self, url: str, timeout: float = 5, session: Optional[requests.Session] = None):
        if not url:
            raise ValueError("Webhook URL not set. Please set ASSIGNMENT_WEBHOOK_URL in the .env file.")
        self.url = url
        self.timeout = timeout #seconds to wait for the receiver before giving up
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls) -> Optional[WebhookNotifier]:
        """
        Returns None when no webhook is configured.
        """
        load_dotenv()
        url = os.getenv("ASSIGNMENT_WEBHOOK_URL")
        if not url:
            return None
        timeout = float(os.getenv("ASSIGNMENT_WEBHOOK_TIMEOUT", "5"))
        return cls(url, timeout=timeout)

    def attach(self, events: AssignmentEvents) -> None:
        events.subscribe(self.send_assignment)
        events.subscribe_positions(self.send_position)

    def send_assignment(self, assignment: DeliveryAssignment) -> None:
        self._post({"event": "assignment.changed", "assignment": assignment.to_dict()})

    def send_position(self, rider: RiderSession) -> None:
        self._post({"event": "rider.position", "rider": rider.to_dict()})

    def _post(self, payload: Dict[str, Any]) -> None:
        response = self.session.post(self.url, json=payload, timeout=self.timeout)

        if response.status_code >= 400:
            raise WebhookError(f"Webhook {self.url} answered {response.status_code}")

        logger.debug(f"Webhook delivered {payload['event']} to {self.url}")
