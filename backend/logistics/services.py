"""
Wires one DeliveryEngine over the Django repositories for the whole process.
"""

import logging
from functools import lru_cache

from dispatch.engine import DeliveryEngine
from dispatch.policy import policy_from_env
from dispatch.webhooks import WebhookNotifier
from riders.identity import RiderIdentity

from .repositories import DjangoAssignmentStore, DjangoOrderGateway, DjangoRiderDirectory

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> DeliveryEngine:
    policy = policy_from_env()
    engine = DeliveryEngine(
        riders=DjangoRiderDirectory(freshness_seconds=policy.stale_presence_seconds),
        assignments=DjangoAssignmentStore(),
        orders=DjangoOrderGateway(),
        policy=policy,
    )

    notifier = WebhookNotifier.from_env()
    if notifier is not None:
        notifier.attach(engine.events)
        logger.info(f"Assignment webhook enabled: {notifier.url}")

    return engine


def rider_identity(request) -> RiderIdentity:
    meta = request.META
    return RiderIdentity.from_signals(
        user_agent=meta.get("HTTP_USER_AGENT"),
        forwarded_for=meta.get("HTTP_X_FORWARDED_FOR"),
        real_ip=meta.get("HTTP_X_REAL_IP"),
        connecting_ip=meta.get("HTTP_CF_CONNECTING_IP"),
    )
