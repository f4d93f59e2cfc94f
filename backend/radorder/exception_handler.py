"""
Unified exception handler.

Wired into DRF via REST_FRAMEWORK['EXCEPTION_HANDLER'].
Every error body has the same shape, so the client only checks for `type`:

{
    "type":      "invalid_state" | "missing_required_data" | ...,
    "code":      "INVALID_TRANSITION",
    "message":   "Order 12 cannot move from pending_radiology to pending_radiology",
    "detail":    { ... },   // optional
    "retryable": true       // only present when the caller may retry
}
"""

import logging

from django.http import JsonResponse
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.views import exception_handler as drf_default_handler

from .exceptions import BaseAppException

logger = logging.getLogger(__name__)


def unified_exception_handler(exc, context):
    """
    DRF exception handler entry point.

    Precedence:
    1. BaseAppException and subclasses -> unified body
    2. DRF's own ValidationError (request parsing) -> unified body
    3. anything else -> DRF default handling
    """

    # --- 1. our own hierarchy ---
    if isinstance(exc, BaseAppException):
        body = {
            'type': exc.type,
            'code': exc.code,
            'message': exc.message,
        }
        if exc.detail is not None:
            body['detail'] = exc.detail
        if exc.retryable:
            body['retryable'] = True
        if exc.http_status >= 500:
            logger.error("[API] %s %s: %s", exc.type, exc.code, exc.message)
        return JsonResponse(body, status=exc.http_status)

    # --- 2. DRF's ValidationError ---
    if isinstance(exc, DRFValidationError):
        body = {
            'type': 'validation_error',
            'code': 'VALIDATION_ERROR',
            'message': 'Request validation failed',
            'detail': exc.detail,
        }
        return JsonResponse(body, status=400)

    # --- 3. everything else ---
    return drf_default_handler(exc, context)
