"""
API tests for the captive portal and staff router endpoints
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch

from django.contrib.auth.models import User
from django.core.cache import cache
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from hotspot.credentials import decrypt_secret
from hotspot.exceptions import ProviderTimeout
from hotspot.models import Payment, RouterCredential, Session
from hotspot.mpesa import StkPushResult
from hotspot.pending import reset_pending_store

from .helpers import DEVICE_MAC, PHONE, make_package, make_router

CHECKOUT_ID = "ws_CO_191220191020363925"


def stk_result(success=True, code="0", message="Success. Request accepted for processing"):
    return StkPushResult(
        success=success,
        checkout_request_id=CHECKOUT_ID if success else "",
        merchant_request_id="29115-34620561-1" if success else "",
        response_code=code,
        message=message,
    )


class ApiTestCase(TestCase):
    def setUp(self):
        cache.clear()
        reset_pending_store()
        self.addCleanup(reset_pending_store)
        self.client = APIClient()
        self.package = make_package()
        self.router = make_router()


class PortalApiTest(ApiTestCase):
    def setUp(self):
        super().setUp()
        patcher = patch("hotspot.payments.MpesaAPI")
        self.mpesa = patcher.start().return_value
        self.addCleanup(patcher.stop)
        self.mpesa.stk_push.return_value = stk_result()

    def initiate(self, **overrides):
        data = {
            "phone_number": "0712345678",
            "package_id": self.package.pk,
            "mac_address": "aa-bb-cc-dd-ee-01",
            "router_id": self.router.pk,
        }
        data.update(overrides)
        return self.client.post(reverse("initiate_payment"), data, format="json")

    def test_package_list(self):
        make_package(name="Retired", is_active=False)

        response = self.client.get(reverse("package_list"))

        self.assertEqual(response.status_code, 200)
        names = [p["name"] for p in response.data["packages"]]
        self.assertEqual(names, ["1 Hour"])
        self.assertEqual(response.data["packages"][0]["duration_display"], "1 hour")

    def test_initiate_payment(self):
        response = self.initiate()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["checkout_request_id"], CHECKOUT_ID)
        self.assertEqual(response.data["amount"], 20)
        payment = Payment.objects.get(checkout_request_id=CHECKOUT_ID)
        self.assertEqual(payment.phone_number, PHONE)
        self.assertEqual(payment.device_identifier, DEVICE_MAC)

    def test_second_request_for_same_device_conflicts(self):
        self.initiate()

        response = self.initiate()

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["checkout_request_id"], CHECKOUT_ID)
        self.assertEqual(self.mpesa.stk_push.call_count, 1)

    def test_invalid_phone_rejected(self):
        response = self.initiate(phone_number="12345")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.data["success"])
        self.assertIn("phone_number", response.data["errors"])
        self.assertFalse(Payment.objects.exists())

    def test_declined_push(self):
        self.mpesa.stk_push.return_value = stk_result(
            success=False, code="1", message="Insufficient balance"
        )

        response = self.initiate()

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.data["error"], "Insufficient balance")

    def test_provider_timeout(self):
        self.mpesa.stk_push.side_effect = ProviderTimeout()

        response = self.initiate()

        self.assertEqual(response.status_code, 504)
        self.assertEqual(Payment.objects.get().status, Payment.STATUS_FAILED)

    def test_unknown_payment_status(self):
        response = self.client.get(reverse("payment_status", args=["ws_CO_missing"]))
        self.assertEqual(response.status_code, 404)

    def test_payment_status(self):
        self.initiate()

        response = self.client.get(reverse("payment_status", args=[CHECKOUT_ID]))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], Payment.STATUS_PENDING)
        self.assertIsNone(response.data["session"])

    def test_device_status_reports_pending_payment(self):
        self.initiate()

        response = self.client.get(reverse("device_status", args=[DEVICE_MAC]))

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["has_active_session"])
        self.assertEqual(response.data["pending_checkout_request_id"], CHECKOUT_ID)

    def test_device_status_bad_mac(self):
        response = self.client.get(reverse("device_status", args=["not-a-mac"]))
        self.assertEqual(response.status_code, 400)


class CallbackApiTest(ApiTestCase):
    def test_unknown_callback_acknowledged(self):
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": "1",
                    "CheckoutRequestID": "ws_CO_unknown",
                    "ResultCode": 0,
                    "ResultDesc": "ok",
                }
            }
        }

        response = self.client.post(reverse("mpesa_callback"), payload, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["ResultCode"], 0)

    def test_wrongly_typed_metadata_acknowledged(self):
        payload = {
            "Body": {
                "stkCallback": {
                    "CheckoutRequestID": "ws_1",
                    "ResultCode": 0,
                    "CallbackMetadata": "junk",
                }
            }
        }

        response = self.client.post(reverse("mpesa_callback"), payload, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["ResultCode"], 0)

    def test_unreadable_body_acknowledged(self):
        response = self.client.post(
            reverse("mpesa_callback"), "{not json", content_type="application/json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["ResultCode"], 0)


class StaffApiTest(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.staff = User.objects.create_user("ops", password="pw", is_staff=True)

    def login(self):
        self.client.force_authenticate(self.staff)

    def make_session(self, provisioning_status="granted", active=True):
        payment = Payment.objects.create(
            phone_number=PHONE,
            amount=self.package.price,
            package=self.package,
            router=self.router,
            device_identifier=DEVICE_MAC,
            account_reference="WIFI-TEST",
            status=Payment.STATUS_SUCCESS,
            checkout_request_id=CHECKOUT_ID,
        )
        return Session.objects.create(
            device_identifier=DEVICE_MAC,
            package=self.package,
            payment=payment,
            router=self.router,
            end_time=timezone.now() + timedelta(minutes=30),
            active=active,
            provisioning_status=provisioning_status,
        )

    def test_anonymous_rejected(self):
        url = reverse("router_test_connection", args=[self.router.pk])

        response = self.client.post(url)

        self.assertEqual(response.status_code, 403)
        self.assertFalse(response.data["success"])

    @patch("hotspot.views.test_connection")
    def test_test_connection(self, mock_test):
        mock_test.return_value = {"success": True, "identity": "EstateA", "message": "Connected"}
        self.login()

        response = self.client.post(
            reverse("router_test_connection", args=[self.router.pk])
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["identity"], "EstateA")
        mock_test.assert_called_once_with(self.router.pk, actor="ops")

    @patch("hotspot.views.test_connection")
    def test_test_connection_failure(self, mock_test):
        mock_test.return_value = {
            "success": False,
            "identity": None,
            "message": "Router is unreachable",
        }
        self.login()

        response = self.client.post(
            reverse("router_test_connection", args=[self.router.pk])
        )

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data["message"], "Router is unreachable")

    def test_credentials_partial_update(self):
        self.login()

        response = self.client.patch(
            reverse("router_credentials", args=[self.router.pk]),
            {"api_port": 9729},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["updated_fields"], ["api_port"])
        credential = RouterCredential.objects.get(router=self.router)
        self.assertEqual(credential.api_port, 9729)
        self.assertEqual(decrypt_secret(credential.api_password_encrypted), "s3cret-pass")
        self.assertNotIn("api_password", response.data)

    def test_credentials_required_for_new_router(self):
        router = make_router(name="Estate B", host="10.0.0.2", with_credentials=False)
        self.login()

        response = self.client.patch(
            reverse("router_credentials", args=[router.pk]),
            {"api_port": 9729},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertFalse(RouterCredential.objects.filter(router=router).exists())

    @patch("hotspot.activation.grant_access")
    def test_retry_provisioning(self, mock_grant):
        mock_grant.return_value = {"success": True, "created": True, "message": "Access granted"}
        session = self.make_session(provisioning_status="failed", active=False)
        self.login()

        response = self.client.post(reverse("session_retry", args=[session.pk]))

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["session"]["active"])
        self.assertEqual(response.data["session"]["provisioning_status"], "granted")

    def test_retry_of_granted_session_conflicts(self):
        session = self.make_session()
        self.login()

        response = self.client.post(reverse("session_retry", args=[session.pk]))

        self.assertEqual(response.status_code, 409)

    @patch("hotspot.activation.revoke_access")
    def test_disconnect(self, mock_revoke):
        mock_revoke.return_value = {"success": True, "count": 1, "message": "Disconnected"}
        session = self.make_session()
        self.login()

        response = self.client.post(reverse("session_disconnect", args=[session.pk]))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 1)
        session.refresh_from_db()
        self.assertFalse(session.active)
        self.assertEqual(session.end_reason, "disconnected")

    @patch("hotspot.views.sync_packages")
    def test_sync_packages(self, mock_sync):
        mock_sync.return_value = MagicMock(
            success=True,
            to_dict=lambda: {
                "success": True,
                "synced_count": 1,
                "errors": [],
                "orphaned_profiles": [],
            },
        )
        self.login()

        response = self.client.post(
            reverse("router_sync_packages", args=[self.router.pk])
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["synced_count"], 1)
