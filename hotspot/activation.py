"""
Session activator: turn a confirmed payment into router-side access
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import audit
from .exceptions import ActivationError, ActivationWindowExpired
from .mikrotik import grant_access, revoke_access
from .pending import get_pending_store

logger = logging.getLogger(__name__)


def _provision(session, actor):
    """Grant access on the session's router and record the outcome"""
    from .models import Session

    if session.router_id is None:
        result = {"success": False, "message": "No router assigned to this session"}
    else:
        result = grant_access(
            session.router_id,
            session.device_identifier,
            session.package.profile_name,
            actor=actor,
            comment=f"payment {session.payment_id}",
        )

    if result["success"]:
        session.provisioning_status = "granted"
        session.provisioning_error = ""
        session.provisioned_at = timezone.now()
        # A session that already ended never becomes active again
        if not session.end_reason:
            session.active = True
        logger.info(
            f"Session {session.pk} granted for {session.device_identifier} "
            f"until {session.end_time or 'unlimited'}"
        )
    else:
        session.provisioning_status = "failed"
        session.provisioning_error = result.get("message", "")
        session.active = False
        logger.error(
            f"Provisioning failed for session {session.pk} "
            f"({session.device_identifier}): {session.provisioning_error}"
        )

    session.save(
        update_fields=[
            "provisioning_status",
            "provisioning_error",
            "provisioned_at",
            "active",
            "updated_at",
        ]
    )
    return session


def activate_session(payment, store=None, actor="system"):
    """
    Create the Session for a successful payment and grant router access.

    Raises ActivationError when the payment is not successful and
    ActivationWindowExpired when its pending activation is gone. A router
    failure does not raise: the session is returned with
    ``provisioning_status == "failed"`` and the payment is left untouched.
    Calling this again for the same payment returns the existing session.
    """
    from .models import Package, Payment, Session

    if payment.status != Payment.STATUS_SUCCESS:
        raise ActivationError(
            f"Payment {payment.pk} is {payment.status}, not {Payment.STATUS_SUCCESS}"
        )

    existing = Session.objects.filter(payment=payment).first()
    if existing is not None:
        return existing

    store = store or get_pending_store()
    pending = store.get(payment.checkout_request_id)
    if pending is None:
        logger.warning(
            f"Payment {payment.pk} ({payment.checkout_request_id}) confirmed "
            f"after its activation window expired"
        )
        audit.record_payment_transition(
            payment,
            "activation_expired",
            success=False,
            actor=actor,
            error_message="Pending activation not found or expired",
        )
        raise ActivationWindowExpired(payment.checkout_request_id)

    package = Package.objects.get(pk=pending.package_id)
    start_time = timezone.now()

    try:
        with transaction.atomic():
            session, created = Session.objects.get_or_create(
                payment=payment,
                defaults={
                    "device_identifier": pending.device_identifier,
                    "package": package,
                    "router_id": pending.router_id or payment.router_id,
                    "start_time": start_time,
                    "end_time": Session.compute_end_time(start_time, package),
                },
            )
    except IntegrityError:
        # Lost a race with a concurrent activation of the same payment
        session, created = Session.objects.get(payment=payment), False

    store.delete(payment.checkout_request_id)

    if not created:
        return session

    audit.record_payment_transition(
        payment,
        "session_created",
        actor=actor,
        parameters={"session_id": session.pk, "device": session.device_identifier},
    )
    return _provision(session, actor)


def retry_provisioning(session, actor="system"):
    """Operator retry of a session whose grant failed"""
    if session.end_reason:
        raise ActivationError(f"Session {session.pk} has already ended")
    if session.is_expired:
        raise ActivationError(f"Session {session.pk} has expired")
    if session.provisioning_status == "granted":
        raise ActivationError(f"Session {session.pk} is already provisioned")

    logger.info(f"Retrying provisioning of session {session.pk} (by {actor})")
    return _provision(session, actor)


def end_session(session, reason, actor="system"):
    """
    Revoke router access and close the session with ``reason``
    (``expired`` or ``disconnected``). Returns the revoke result.
    """
    if session.end_reason:
        return {"success": True, "count": 0, "message": "Session already ended"}

    if session.router_id is not None:
        result = revoke_access(session.router_id, session.device_identifier, actor=actor)
    else:
        result = {"success": True, "count": 0, "message": "No router assigned"}

    if not result["success"]:
        logger.warning(
            f"Revoke failed for session {session.pk} ({session.device_identifier}); "
            f"closing it locally: {result.get('message')}"
        )

    session.active = False
    session.end_reason = reason
    session.ended_at = timezone.now()
    session.save(update_fields=["active", "end_reason", "ended_at", "updated_at"])
    logger.info(f"Session {session.pk} ended ({reason})")
    return result
