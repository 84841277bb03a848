"""
Payment orchestration: STK push initiation, callback processing and the
status queries behind the captive portal
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from django.utils import timezone

from . import audit
from .activation import activate_session
from .exceptions import (
    ActivationWindowExpired,
    CallbackPayloadError,
    InvalidPaymentRequest,
    PaymentDeclined,
    PaymentInProgress,
    PaymentProviderError,
)
from .mpesa import MpesaAPI, parse_stk_callback
from .pending import PendingActivation, default_ttl, get_pending_store
from .utils import (
    mask_phone_number,
    normalize_mac_address,
    normalize_phone_number,
    to_stk_amount,
)

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_IGNORED = "ignored"
OUTCOME_INVALID = "invalid"
OUTCOME_ACTIVATION_EXPIRED = "activation_expired"
OUTCOME_ACTIVATION_FAILED = "activation_failed"


@dataclass
class CallbackOutcome:
    outcome: str
    checkout_request_id: Optional[str] = None
    payment_id: Optional[int] = None
    session_id: Optional[int] = None
    message: str = ""


def _generate_account_reference():
    return f"WIFI-{uuid.uuid4().hex[:8].upper()}"


def _validate_request(phone_number, package, device_identifier, router):
    """Returns (phone, device, amount) or raises InvalidPaymentRequest"""
    try:
        phone = normalize_phone_number(phone_number)
    except ValueError:
        raise InvalidPaymentRequest(
            "Invalid phone number. Please use a valid Safaricom number.",
            field="phone_number",
        )

    try:
        device = normalize_mac_address(device_identifier)
    except ValueError:
        raise InvalidPaymentRequest(
            "Invalid MAC address format", field="device_identifier"
        )

    if package is None or not package.is_active:
        raise InvalidPaymentRequest("Package not found or inactive", field="package_id")

    try:
        amount = to_stk_amount(package.price)
    except ValueError as e:
        raise InvalidPaymentRequest(str(e), field="amount")

    if router is not None and not router.is_active:
        raise InvalidPaymentRequest("Router is not active", field="router_id")

    return phone, device, amount


def _mark_failed(payment, reason, actor, result_desc=""):
    from .models import Payment

    now = timezone.now()
    updated = Payment.objects.filter(pk=payment.pk, status=Payment.STATUS_PENDING).update(
        status=Payment.STATUS_FAILED,
        failure_reason=reason[:255],
        result_desc=(result_desc or reason)[:255],
        completed_at=now,
        updated_at=now,
    )
    if updated:
        payment.refresh_from_db()
        audit.record_payment_transition(
            payment, "payment_failed", actor=actor, error_message=reason
        )


def initiate_payment(
    phone_number,
    package,
    device_identifier,
    router=None,
    store=None,
    client=None,
    actor="portal",
):
    """
    Start an STK push for ``package`` on behalf of a device.

    Returns the pending Payment carrying its checkout_request_id.
    Raises InvalidPaymentRequest, PaymentInProgress (no Payment created),
    PaymentDeclined or PaymentProviderError (Payment marked failed).

    The device slot is reserved in the store before anything is written,
    so concurrent requests for one device cannot both reach M-Pesa.
    """
    phone, device, amount = _validate_request(
        phone_number, package, device_identifier, router
    )

    store = store or get_pending_store()
    if not store.reserve(device):
        in_progress = store.pending_for(device)
        checkout_request_id = in_progress.checkout_request_id if in_progress else None
        logger.info(f"Payment already in progress for {device}: {checkout_request_id}")
        raise PaymentInProgress(checkout_request_id)

    try:
        payment = _request_push(
            phone, amount, package, device, router, store, client, actor
        )
    except Exception:
        store.release(device)
        raise

    logger.info(
        f"Payment {payment.pk} initiated for {mask_phone_number(phone)} "
        f"({package.name}, KES {amount}), CheckoutRequestID: {payment.checkout_request_id}"
    )
    return payment


def _request_push(phone, amount, package, device, router, store, client, actor):
    """Create the Payment, send the push and record the pending activation"""
    from .models import Payment

    payment = Payment.objects.create(
        phone_number=phone,
        amount=amount,
        package=package,
        router=router,
        device_identifier=device,
        account_reference=_generate_account_reference(),
    )
    audit.record_payment_transition(
        payment,
        "payment_created",
        actor=actor,
        parameters={"package_id": package.pk, "device": device},
    )

    client = client or MpesaAPI()
    try:
        result = client.stk_push(
            phone, amount, payment.account_reference, description="WiFi Access"
        )
    except PaymentProviderError as e:
        logger.error(f"STK push for payment {payment.pk} failed: {e.message}")
        _mark_failed(payment, e.message, actor)
        raise

    if not result.success:
        _mark_failed(payment, result.message, actor)
        raise PaymentDeclined(result.message, response_code=result.response_code)

    payment.checkout_request_id = result.checkout_request_id
    payment.merchant_request_id = result.merchant_request_id or ""
    payment.save(update_fields=["checkout_request_id", "merchant_request_id", "updated_at"])

    store.put(
        PendingActivation(
            checkout_request_id=result.checkout_request_id,
            device_identifier=device,
            package_id=package.pk,
            phone=phone,
            amount=amount,
            router_id=router.pk if router is not None else None,
        ),
        ttl=default_ttl(),
    )
    audit.record_payment_transition(payment, "stk_push_sent", actor=actor)
    return payment


def process_callback(payload, store=None, actor="mpesa"):
    """
    Apply a provider result notification. Never raises.

    Only the caller whose conditional update moves the payment out of
    ``pending`` goes on to activate; redeliveries are ``ignored``.
    """
    try:
        callback = parse_stk_callback(payload)
    except CallbackPayloadError as e:
        logger.warning(f"Rejected M-Pesa callback: {e.message}")
        return CallbackOutcome(outcome=OUTCOME_INVALID, message=e.message)

    try:
        return _apply_callback(callback, payload, store, actor)
    except Exception as e:
        logger.exception(
            f"Unexpected error processing callback {callback.checkout_request_id}: {e}"
        )
        return CallbackOutcome(
            outcome=OUTCOME_INVALID,
            checkout_request_id=callback.checkout_request_id,
            message="Callback could not be processed",
        )


def _apply_callback(callback, payload, store, actor):
    from .models import Payment

    checkout_request_id = callback.checkout_request_id
    payment = Payment.objects.filter(checkout_request_id=checkout_request_id).first()
    if payment is None:
        logger.error(f"No payment record found for CheckoutRequestID: {checkout_request_id}")
        return CallbackOutcome(
            outcome=OUTCOME_IGNORED,
            checkout_request_id=checkout_request_id,
            message="Unknown checkout request",
        )

    now = timezone.now()
    new_status = Payment.STATUS_SUCCESS if callback.is_success else Payment.STATUS_FAILED
    changes = {
        "status": new_status,
        "result_code": callback.result_code,
        "result_desc": callback.result_desc[:255],
        "raw_callback": payload,
        "completed_at": now,
        "updated_at": now,
    }
    if callback.is_success:
        changes["mpesa_receipt"] = str(callback.receipt_number or "")[:50]
        changes["paid_amount"] = callback.paid_amount
        changes["paid_phone_number"] = callback.phone_number[:15]
    else:
        changes["failure_reason"] = callback.result_desc[:255]

    won = Payment.objects.filter(
        pk=payment.pk, status=Payment.STATUS_PENDING
    ).update(**changes)

    if not won:
        logger.info(
            f"Payment {payment.pk} already processed with status: {payment.status}"
        )
        return CallbackOutcome(
            outcome=OUTCOME_IGNORED,
            checkout_request_id=checkout_request_id,
            payment_id=payment.pk,
            message="Payment already processed",
        )

    payment.refresh_from_db()
    if payment.paid_amount is not None and payment.paid_amount != payment.amount:
        logger.warning(
            f"Payment {payment.pk} confirmed KES {payment.paid_amount}, "
            f"requested KES {payment.amount}"
        )
    audit.record_payment_transition(
        payment,
        "payment_success" if callback.is_success else "payment_failed",
        actor=actor,
        parameters={
            "result_code": callback.result_code,
            "receipt": payment.mpesa_receipt,
        },
        error_message="" if callback.is_success else callback.result_desc,
    )
    logger.info(f"Payment {payment.pk} updated with status: {payment.status}")

    store = store or get_pending_store()

    if not callback.is_success:
        store.delete(checkout_request_id)
        return CallbackOutcome(
            outcome=OUTCOME_FAILED,
            checkout_request_id=checkout_request_id,
            payment_id=payment.pk,
            message=callback.result_desc,
        )

    try:
        session = activate_session(payment, store=store, actor=actor)
    except ActivationWindowExpired as e:
        return CallbackOutcome(
            outcome=OUTCOME_ACTIVATION_EXPIRED,
            checkout_request_id=checkout_request_id,
            payment_id=payment.pk,
            message=e.message,
        )
    except Exception as e:
        logger.exception(f"Activation failed for payment {payment.pk}: {e}")
        return CallbackOutcome(
            outcome=OUTCOME_ACTIVATION_FAILED,
            checkout_request_id=checkout_request_id,
            payment_id=payment.pk,
            message="Session activation failed",
        )

    if session.provisioning_status != "granted":
        return CallbackOutcome(
            outcome=OUTCOME_ACTIVATION_FAILED,
            checkout_request_id=checkout_request_id,
            payment_id=payment.pk,
            session_id=session.pk,
            message=session.provisioning_error or "Router provisioning failed",
        )

    return CallbackOutcome(
        outcome=OUTCOME_SUCCESS,
        checkout_request_id=checkout_request_id,
        payment_id=payment.pk,
        session_id=session.pk,
        message="Access granted",
    )


def _session_info(session):
    if session is None:
        return None
    return {
        "session_id": session.pk,
        "package_name": session.package.name,
        "active": session.active,
        "provisioning_status": session.provisioning_status,
        "expires_at": session.end_time.isoformat() if session.end_time else None,
        "remaining_seconds": session.remaining_seconds,
    }


def get_payment_status(checkout_request_id):
    """Payment status plus its session, or None when the id is unknown"""
    from .models import Payment, Session

    payment = (
        Payment.objects.select_related("package")
        .filter(checkout_request_id=checkout_request_id)
        .first()
    )
    if payment is None:
        return None

    session = None
    if payment.status == Payment.STATUS_SUCCESS:
        session = (
            Session.objects.select_related("package").filter(payment=payment).first()
        )

    return {
        "checkout_request_id": payment.checkout_request_id,
        "status": payment.status,
        "amount": str(payment.amount),
        "package_name": payment.package.name,
        "receipt": payment.mpesa_receipt or None,
        "paid_amount": str(payment.paid_amount) if payment.paid_amount is not None else None,
        "result_desc": payment.result_desc or None,
        "session": _session_info(session),
    }


def get_device_status(device_identifier):
    """
    Current access state of a device.
    Raises InvalidPaymentRequest for a malformed MAC address.
    """
    from .models import Session

    try:
        device = normalize_mac_address(device_identifier)
    except ValueError:
        raise InvalidPaymentRequest("Invalid MAC address format", field="mac_address")

    now = timezone.now()
    session = (
        Session.objects.select_related("package", "payment")
        .filter(device_identifier=device, active=True)
        .exclude(end_time__lte=now)
        .order_by("-created_at")
        .first()
    )

    pending = get_pending_store().pending_for(device)

    return {
        "device_identifier": device,
        "has_active_session": session is not None,
        "session": _session_info(session),
        "pending_checkout_request_id": pending.checkout_request_id if pending else None,
    }
