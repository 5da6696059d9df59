#Expose the high-level pipeline pieces:
#Dispatcher (order paid -> offer to nearest courier)
#Lifecycle Controller (courier actions -> state machine)
#Timeout Sweeper (take back unanswered offers)
#DeliveryEngine (the "one object" entry point that wires them together)

from .dispatcher import Dispatcher
from .engine import DeliveryEngine
from .events import AssignmentEvents
from .lifecycle import COURIER_ACTIONS, LifecycleController
from .models import AssignmentStatus, CompletionArtifacts, DeliveryAssignment
from .policy import DispatchPolicy, default_dispatch_policy, policy_from_env
from .store import AssignmentStore, InMemoryAssignmentStore
from .sweeper import SweepSummary, TimeoutSweeper

__all__ = [
    "AssignmentEvents",
    "AssignmentStatus",
    "AssignmentStore",
    "COURIER_ACTIONS",
    "CompletionArtifacts",
    "DeliveryAssignment",
    "DeliveryEngine",
    "DispatchPolicy",
    "Dispatcher",
    "InMemoryAssignmentStore",
    "LifecycleController",
    "SweepSummary",
    "TimeoutSweeper",
    "default_dispatch_policy",
    "policy_from_env",
]
