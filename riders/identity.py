"""
Purpose: Zero-login courier identity.
What it does:
Derives a best-effort session key from network + client signals at the HTTP
boundary, once, and passes it through the engine by value.

This is NOT a credential. Two devices behind the same NAT with the same browser
build share a fingerprint, and anyone can forge the headers. That is an accepted
product tradeoff for the no-account courier flow.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Optional

FINGERPRINT_LENGTH = 32
UNKNOWN_IP = "0.0.0.0"
UNKNOWN_AGENT = "unknown"


@dataclass(frozen=True)
class RiderIdentity:
    fingerprint: str

    @classmethod
    def from_signals(
        cls,
        user_agent: Optional[str] = None,
        forwarded_for: Optional[str] = None,
        real_ip: Optional[str] = None,
        connecting_ip: Optional[str] = None,
    ) -> RiderIdentity:
        """
        First X-Forwarded-For hop wins, then X-Real-IP, then CF-Connecting-IP.
        """
        ip = None
        if forwarded_for:
            ip = forwarded_for.split(",")[0].strip() or None
        ip = ip or real_ip or connecting_ip or UNKNOWN_IP
        agent = user_agent or UNKNOWN_AGENT

        raw = f"{ip}:{agent}".encode("utf-8")
        encoded = base64.b64encode(raw).decode("ascii")
        return cls(fingerprint=encoded[:FINGERPRINT_LENGTH])

    def __str__(self) -> str:
        return self.fingerprint
