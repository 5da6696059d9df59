"""
Maps engine errors onto HTTP responses. Anything not listed falls through
to DRF's own handler (and a 500 if DRF does not know it either).
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from dispatch.errors import (
    ConcurrentTransition,
    InvalidTransition,
    MissingProof,
    NotAssignedRider,
    NotFoundError,
    ValidationError,
)
from orders.gateway import OrderNotFound
from riders.models import InvalidRiderDetails, RiderNotFound
from routing.geomath import InvalidCoordinates

logger = logging.getLogger(__name__)

# (exception type, status, code), first match wins
ERROR_MAP = [
    (MissingProof, status.HTTP_400_BAD_REQUEST, "missing_proof"),
    (InvalidTransition, status.HTTP_400_BAD_REQUEST, "invalid_transition"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (InvalidRiderDetails, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (InvalidCoordinates, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (NotAssignedRider, status.HTTP_403_FORBIDDEN, "not_assigned_rider"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (RiderNotFound, status.HTTP_404_NOT_FOUND, "not_found"),
    (OrderNotFound, status.HTTP_404_NOT_FOUND, "not_found"),
    (ConcurrentTransition, status.HTTP_409_CONFLICT, "concurrent_transition"),
]


def dispatch_exception_handler(exc, context):
    for error_type, http_status, code in ERROR_MAP:
        if isinstance(exc, error_type):
            if http_status == status.HTTP_409_CONFLICT:
                logger.warning(f"{context['view'].__class__.__name__}: {exc}")
            return Response({"error": str(exc), "code": code}, status=http_status)

    return exception_handler(exc, context)
