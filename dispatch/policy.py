"""
Purpose: Central configuration for dispatch, presence and timeout recovery.
What it does:

Stores all tunable thresholds:

STALE_PRESENCE_SECONDS = 120
OFFER_GRACE_PERIOD_SECONDS = 120
AVERAGE_SPEED_KMH = 20
MINIMUM_DURATION_MINUTES = 5

Values can be overridden from the environment (or a .env file):

DISPATCH_STALE_PRESENCE_SECONDS=120
DISPATCH_OFFER_GRACE_PERIOD_SECONDS=120
DISPATCH_AVERAGE_SPEED_KMH=20
DISPATCH_MINIMUM_DURATION_MINUTES=5
DISPATCH_MAX_CLAIM_ATTEMPTS=5

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class DispatchPolicy:
    """
    Central configuration for courier matching and offer timeouts.
    """

    # --- Presence ---
    # A courier whose last heartbeat is older than this is treated as gone.
    # The client pings every ~30s, so this tolerates a few missed beats.
    stale_presence_seconds: int = 120

    # --- Timeout Sweeper ---
    # How long an offer may sit unaccepted before it is taken back.
    offer_grace_period_seconds: int = 120

    # --- ETA ---
    # 20 km/h is the "3 minutes per km" city rule of thumb.
    average_speed_kmh: float = 20.0
    minimum_duration_minutes: int = 5

    # --- Claim races ---
    # How many candidates the Dispatcher tries before giving up and queueing.
    max_claim_attempts: int = 5

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.stale_presence_seconds <= 0:
            raise ValueError("stale_presence_seconds must be > 0")

        if self.offer_grace_period_seconds <= 0:
            raise ValueError("offer_grace_period_seconds must be > 0")

        if self.average_speed_kmh <= 0:
            raise ValueError("average_speed_kmh must be > 0")

        if self.minimum_duration_minutes < 0:
            raise ValueError("minimum_duration_minutes must be >= 0")

        if self.max_claim_attempts < 1:
            raise ValueError("max_claim_attempts must be >= 1")


def default_dispatch_policy() -> DispatchPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DispatchPolicy()
    p.validate()
    return p


def policy_from_env(environ: Optional[Mapping[str, str]] = None) -> DispatchPolicy:
    """
    Builds a policy from DISPATCH_* variables, falling back to the defaults.
    Reads a .env file first when no explicit mapping is passed.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    defaults = DispatchPolicy()

    def read(name, cast, default):
        raw = environ.get(f"DISPATCH_{name}")
        if raw is None or raw == "":
            return default
        try:
            return cast(raw)
        except ValueError:
            raise ValueError(f"DISPATCH_{name} must be {cast.__name__}, got {raw!r}")

    p = DispatchPolicy(
        stale_presence_seconds=read("STALE_PRESENCE_SECONDS", int, defaults.stale_presence_seconds),
        offer_grace_period_seconds=read("OFFER_GRACE_PERIOD_SECONDS", int, defaults.offer_grace_period_seconds),
        average_speed_kmh=read("AVERAGE_SPEED_KMH", float, defaults.average_speed_kmh),
        minimum_duration_minutes=read("MINIMUM_DURATION_MINUTES", int, defaults.minimum_duration_minutes),
        max_claim_attempts=read("MAX_CLAIM_ATTEMPTS", int, defaults.max_claim_attempts),
    )
    p.validate()
    return p
