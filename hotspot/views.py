"""
API views for the WifiGate captive portal and router operations
"""

import logging

from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ParseError, ValidationError
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response

from .activation import end_session, retry_provisioning
from .credentials import (
    CredentialPatch,
    apply_credential_patch,
    store_router_credentials,
)
from .mikrotik import test_connection
from .models import Package, Router, RouterCredential, Session
from .payments import (
    get_device_status,
    get_payment_status,
    initiate_payment,
    process_callback,
)
from .serializers import (
    InitiatePaymentSerializer,
    PackageSerializer,
    RouterCredentialPatchSerializer,
    SessionSerializer,
)
from .sync import sync_packages

logger = logging.getLogger(__name__)


def _actor(request):
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user.get_username()
    return "api"


# =============================================================================
# CAPTIVE PORTAL
# =============================================================================


@api_view(["GET"])
@permission_classes([AllowAny])
def package_list(request):
    """Active packages offered on the captive portal"""
    packages = Package.objects.filter(is_active=True)
    return Response(
        {"success": True, "packages": PackageSerializer(packages, many=True).data}
    )


@api_view(["POST"])
@permission_classes([AllowAny])
def initiate_payment_view(request):
    """
    Start an M-Pesa STK push for a package.

    409 when the device already has a payment in progress (the original
    checkout_request_id is returned), 402 when M-Pesa declines the push,
    502/504 when M-Pesa cannot be reached.
    """
    serializer = InitiatePaymentSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    payment = initiate_payment(
        data["phone_number"],
        data["package_id"],
        data["mac_address"],
        router=data.get("router_id"),
    )

    return Response(
        {
            "success": True,
            "message": "Payment initiated. Check your phone to complete the payment.",
            "checkout_request_id": payment.checkout_request_id,
            "amount": int(payment.amount),
            "package_name": payment.package.name,
        },
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([AllowAny])
def payment_status(request, checkout_request_id):
    result = get_payment_status(checkout_request_id)
    if result is None:
        return Response(
            {"success": False, "error": "Payment not found"},
            status=status.HTTP_404_NOT_FOUND,
        )
    return Response({"success": True, **result})


@api_view(["GET"])
@permission_classes([AllowAny])
def device_status(request, mac_address):
    result = get_device_status(mac_address)
    return Response({"success": True, **result})


@csrf_exempt
@api_view(["POST"])
@permission_classes([AllowAny])
def mpesa_callback(request):
    """
    M-Pesa STK result notification.
    Always acknowledged with ResultCode 0 so Daraja does not redeliver;
    the outcome is recorded on the payment and in the logs.
    """
    try:
        payload = request.data
    except ParseError as e:
        logger.warning(f"Unreadable M-Pesa callback body: {e}")
        payload = None

    logger.info(f"Received M-Pesa callback: {payload}")

    outcome = process_callback(payload)
    logger.info(
        f"M-Pesa callback {outcome.checkout_request_id}: {outcome.outcome} "
        f"({outcome.message})"
    )

    return Response(
        {"ResultCode": 0, "ResultDesc": "Callback processed successfully"}
    )


# =============================================================================
# ROUTER OPERATIONS (staff only)
# =============================================================================


@api_view(["POST"])
@permission_classes([IsAdminUser])
def router_test_connection(request, router_id):
    get_object_or_404(Router, pk=router_id)
    result = test_connection(router_id, actor=_actor(request))
    return Response(
        result,
        status=status.HTTP_200_OK if result["success"] else status.HTTP_502_BAD_GATEWAY,
    )


@api_view(["POST"])
@permission_classes([IsAdminUser])
def router_sync_packages(request, router_id):
    get_object_or_404(Router, pk=router_id)
    result = sync_packages(router_id, actor=_actor(request))
    data = result.to_dict()
    if not result.success:
        data["error"] = "Package sync completed with errors"
    return Response(data)


@api_view(["PATCH"])
@permission_classes([IsAdminUser])
def router_credentials(request, router_id):
    """
    Partial update of a router's API credentials.
    Omitted fields keep their stored value; the password is never returned.
    """
    router = get_object_or_404(Router, pk=router_id)
    serializer = RouterCredentialPatchSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    patch = CredentialPatch(**serializer.validated_data)

    try:
        credential = router.credential
    except RouterCredential.DoesNotExist:
        if not (patch.api_username and patch.api_password):
            raise ValidationError(
                {
                    "api_password": [
                        "Username and password are required for a router "
                        "without credentials"
                    ]
                }
            )
        store_router_credentials(
            router,
            patch.api_username,
            patch.api_password,
            api_port=patch.api_port,
            connection_timeout=patch.connection_timeout,
            use_ssl=True if patch.use_ssl is None else patch.use_ssl,
        )
        changed = patch.changed_fields()
    else:
        changed = apply_credential_patch(credential, patch)

    logger.info(f"Credentials of router {router.pk} updated by {_actor(request)}")
    return Response({"success": True, "updated_fields": changed})


@api_view(["POST"])
@permission_classes([IsAdminUser])
def session_retry(request, session_id):
    session = get_object_or_404(Session.objects.select_related("package"), pk=session_id)
    session = retry_provisioning(session, actor=_actor(request))
    data = SessionSerializer(session).data
    if session.provisioning_status == "granted":
        return Response({"success": True, "session": data})
    return Response(
        {
            "success": False,
            "error": session.provisioning_error or "Router provisioning failed",
            "session": data,
        },
        status=status.HTTP_502_BAD_GATEWAY,
    )


@api_view(["POST"])
@permission_classes([IsAdminUser])
def session_disconnect(request, session_id):
    session = get_object_or_404(Session.objects.select_related("package"), pk=session_id)
    result = end_session(session, "disconnected", actor=_actor(request))
    return Response(
        {
            "success": True,
            "router_revoked": result["success"],
            "count": result.get("count", 0),
            "message": result.get("message", ""),
            "session": SessionSerializer(session).data,
        }
    )
