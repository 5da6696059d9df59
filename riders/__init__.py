"""
Riders domain package.

Public API:
- Domain models: RiderSession, RiderIdentity
- Presence: RiderDirectory, InMemoryRiderDirectory
- Errors: RiderNotFound, InvalidRiderDetails
"""
from .directory import InMemoryRiderDirectory, RiderDirectory
from .identity import RiderIdentity
from .models import InvalidRiderDetails, RiderNotFound, RiderSession, utcnow

__all__ = [
    "InMemoryRiderDirectory",
    "InvalidRiderDetails",
    "RiderDirectory",
    "RiderIdentity",
    "RiderNotFound",
    "RiderSession",
    "utcnow",
]
