"""
Operation audit sink.

Append-only records of privileged router operations and payment state
transitions. Writing a record never fails the caller; errors are logged.
"""

import logging
import time

logger = logging.getLogger(__name__)


class Stopwatch:
    """Elapsed wall time in whole milliseconds"""

    def __init__(self):
        self.started = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


def record(
    *,
    category,
    operation,
    resource_type,
    resource_id="",
    success,
    actor="system",
    command="",
    parameters=None,
    error_message="",
    duration_ms=None,
):
    """Append one audit record; returns it, or None when the write failed"""
    from .models import OperationLog

    try:
        return OperationLog.objects.create(
            actor=str(actor or "system")[:150],
            category=category,
            operation=operation,
            resource_type=resource_type,
            resource_id=str(resource_id or ""),
            command=command,
            parameters=parameters or {},
            success=success,
            error_message=error_message or "",
            duration_ms=duration_ms,
        )
    except Exception as e:
        logger.error(
            f"Failed to write audit record {category}/{operation} "
            f"for {resource_type}:{resource_id}: {e}"
        )
        return None


def record_router_operation(
    router_id,
    operation,
    command,
    *,
    success,
    actor="system",
    parameters=None,
    error_message="",
    duration_ms=None,
):
    return record(
        category="router",
        operation=operation,
        resource_type="router",
        resource_id=router_id,
        success=success,
        actor=actor,
        command=command,
        parameters=parameters,
        error_message=error_message,
        duration_ms=duration_ms,
    )


def record_payment_transition(
    payment, operation, *, success=True, actor="system", parameters=None, error_message=""
):
    params = {
        "status": payment.status,
        "checkout_request_id": payment.checkout_request_id,
        "amount": str(payment.amount),
    }
    if parameters:
        params.update(parameters)
    return record(
        category="payment",
        operation=operation,
        resource_type="payment",
        resource_id=payment.pk,
        success=success,
        actor=actor,
        parameters=params,
        error_message=error_message,
    )
