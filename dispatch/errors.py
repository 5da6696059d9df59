"""
Purpose: Error taxonomy of the dispatch engine.

ValidationError   -> bad input, nothing was written (also a ValueError)
NotFoundError     -> unknown id (also a LookupError)
InvalidTransition -> edge not in the state machine
MissingProof      -> delivered without a proof-of-delivery URL
NotAssignedRider  -> a courier acting on someone else's assignment
ConcurrentTransition -> compare-and-swap lost to a concurrent writer

"No courier available" is not an error: dispatch returns a queued assignment.
"""


class DispatchError(Exception):
    """Base class for engine errors."""
    pass


class ValidationError(DispatchError, ValueError):
    pass


class UnresolvableLocation(ValidationError):
    """Pickup or drop-off coordinates are missing for an order."""

    def __init__(self, order_id: str, which: str):
        self.order_id = order_id
        self.which = which
        super().__init__(f"Order {order_id} has no {which} location")


class OrderNotPayable(ValidationError):

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}, only paid orders can be dispatched")


class NotFoundError(DispatchError, LookupError):
    pass


class AssignmentNotFound(NotFoundError):

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Delivery assignment {assignment_id} not found")


class InvalidTransition(DispatchError):

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid status transition from {current} to {requested}")


class MissingProof(DispatchError):

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Assignment {assignment_id} cannot be delivered without a proof of delivery URL")


class NotAssignedRider(DispatchError):

    def __init__(self, assignment_id: str, rider_session_id: str):
        self.assignment_id = assignment_id
        self.rider_session_id = rider_session_id
        super().__init__(f"Rider {rider_session_id} does not hold assignment {assignment_id}")


class ConcurrentTransition(DispatchError):
    """
    The persisted status moved between read and write.
    Callers should refetch and retry if the action still applies.
    """

    def __init__(self, assignment_id: str, expected: str, actual: str):
        self.assignment_id = assignment_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Assignment {assignment_id} changed concurrently: expected {expected}, found {actual}"
        )
