"""
Custom DRF exception handler for consistent portal error responses.

Every error response has the shape:
{
    "success": false,
    "error": "Human-readable error message",
    // optional field-level errors for validation
    "errors": { "field_name": ["..."] }
}

Pipeline errors (hotspot.exceptions) raised from a view are mapped to
their HTTP status here, so views can let them propagate.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from .exceptions import (
    ActivationError,
    HotspotError,
    InvalidPaymentRequest,
    PaymentDeclined,
    PaymentInProgress,
    PaymentProviderError,
    ProviderTimeout,
    RouterError,
)

logger = logging.getLogger(__name__)


def _hotspot_error_response(exc):
    data = {"success": False, "error": exc.message}

    if isinstance(exc, InvalidPaymentRequest):
        code = status.HTTP_400_BAD_REQUEST
        if exc.field:
            data["errors"] = {exc.field: [exc.message]}
    elif isinstance(exc, PaymentInProgress):
        code = status.HTTP_409_CONFLICT
        data["checkout_request_id"] = exc.checkout_request_id
    elif isinstance(exc, PaymentDeclined):
        code = status.HTTP_402_PAYMENT_REQUIRED
        if exc.response_code is not None:
            data["response_code"] = exc.response_code
    elif isinstance(exc, ProviderTimeout):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(exc, PaymentProviderError):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, ActivationError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, RouterError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR

    logger.info(f"{exc.__class__.__name__} -> HTTP {code}: {exc.message}")
    return Response(data, status=code)


def custom_exception_handler(exc, context):
    """
    Wrap the default DRF exception handler to produce consistent
    { success, error, errors? } responses.
    """
    if isinstance(exc, HotspotError):
        return _hotspot_error_response(exc)

    response = drf_exception_handler(exc, context)

    if response is None:
        # DRF didn't handle it (e.g. unhandled server error)
        return response

    data = response.data

    # DRF returns `{"detail": "..."}` for auth/permission/throttle errors
    if isinstance(data, dict) and "detail" in data:
        response.data = {
            "success": False,
            "error": str(data["detail"]),
        }

    # Serializer validation: `{"field": ["msg", ...], ...}`
    elif isinstance(data, dict) and "success" not in data:
        error_messages = []
        for field, msgs in data.items():
            if isinstance(msgs, list):
                for msg in msgs:
                    error_messages.append(f"{field}: {msg}")
            else:
                error_messages.append(f"{field}: {msgs}")

        response.data = {
            "success": False,
            "error": (
                "; ".join(error_messages) if error_messages else "Validation error"
            ),
            "errors": data,
        }

    elif isinstance(data, list):
        response.data = {
            "success": False,
            "error": "; ".join(str(e) for e in data),
        }

    # Our own payloads: make sure failed responses carry "error"
    elif isinstance(data, dict) and data.get("success") is False:
        if "error" not in data and "message" in data:
            data["error"] = data.pop("message")
        elif "error" not in data:
            data["error"] = "An error occurred"

    return response
