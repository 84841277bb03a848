"""
Tests for the M-Pesa Daraja client
"""
import base64
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.core.cache import cache
from django.test import TestCase

from hotspot.exceptions import (
    CallbackPayloadError,
    ProviderAuthenticationError,
    ProviderTimeout,
    ProviderUnavailable,
)
from hotspot.mpesa import TOKEN_CACHE_KEY, MpesaAPI, parse_stk_callback

from .helpers import failed_callback, success_callback


def mock_response(status_code=200, json_data=None):
    response = MagicMock()
    response.status_code = status_code
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} error"
        )
    return response


ACCEPTED = {
    "MerchantRequestID": "29115-34620561-1",
    "CheckoutRequestID": "ws_CO_191220191020363925",
    "ResponseCode": "0",
    "ResponseDescription": "Success. Request accepted for processing",
    "CustomerMessage": "Success. Request accepted for processing",
}


class AccessTokenTest(TestCase):
    def setUp(self):
        cache.clear()
        self.api = MpesaAPI()

    @patch("hotspot.mpesa.requests.get")
    def test_token_cached(self, mock_get):
        mock_get.return_value = mock_response(json_data={"access_token": "tok-1"})

        self.assertEqual(self.api.get_access_token(), "tok-1")
        self.assertEqual(self.api.get_access_token(), "tok-1")

        mock_get.assert_called_once()
        _, kwargs = mock_get.call_args
        self.assertEqual(kwargs["auth"], ("test-consumer-key", "test-consumer-secret"))
        self.assertEqual(cache.get(TOKEN_CACHE_KEY), "tok-1")

    @patch("hotspot.mpesa.requests.get")
    def test_rejected_credentials(self, mock_get):
        mock_get.return_value = mock_response(400, {"errorMessage": "Invalid"})
        with self.assertRaises(ProviderAuthenticationError):
            self.api.get_access_token()

    @patch("hotspot.mpesa.requests.get")
    def test_timeout(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout()
        with self.assertRaises(ProviderTimeout):
            self.api.get_access_token()


class StkPushTest(TestCase):
    def setUp(self):
        cache.clear()
        cache.set(TOKEN_CACHE_KEY, "cached-token", 60)
        self.api = MpesaAPI()

    def test_password_is_base64_of_shortcode_passkey_timestamp(self):
        password = self.api.generate_password("20240101120000")
        self.assertEqual(
            base64.b64decode(password).decode(), "174379test-passkey20240101120000"
        )

    @patch("hotspot.mpesa.requests.post")
    def test_accepted_push(self, mock_post):
        mock_post.return_value = mock_response(json_data=ACCEPTED)

        result = self.api.stk_push("0712345678", "20.00", "WIFI-ABC12345")

        self.assertTrue(result.success)
        self.assertEqual(result.checkout_request_id, "ws_CO_191220191020363925")
        self.assertEqual(result.merchant_request_id, "29115-34620561-1")

        _, kwargs = mock_post.call_args
        body = kwargs["json"]
        self.assertEqual(body["TransactionType"], "CustomerPayBillOnline")
        self.assertEqual(body["Amount"], 20)
        self.assertEqual(body["PartyA"], "254712345678")
        self.assertEqual(body["PhoneNumber"], "254712345678")
        self.assertEqual(body["PartyB"], "174379")
        self.assertEqual(body["BusinessShortCode"], "174379")
        self.assertEqual(body["AccountReference"], "WIFI-ABC12345")
        self.assertEqual(
            body["CallBackURL"],
            "https://portal.example.com/api/payments/mpesa/callback/",
        )
        self.assertEqual(len(body["Timestamp"]), 14)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer cached-token")
        self.assertIn("timeout", kwargs)

    @patch("hotspot.mpesa.requests.post")
    def test_declined_push_returns_description(self, mock_post):
        mock_post.return_value = mock_response(
            400,
            {
                "requestId": "1234-5678",
                "errorCode": "400.002.02",
                "errorMessage": "Bad Request - Invalid PhoneNumber",
            },
        )

        result = self.api.stk_push("254712345678", 20, "WIFI-1")

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Bad Request - Invalid PhoneNumber")
        self.assertEqual(result.response_code, "400.002.02")

    @patch("hotspot.mpesa.requests.post")
    def test_nonzero_response_code(self, mock_post):
        mock_post.return_value = mock_response(
            json_data={"ResponseCode": "1", "ResponseDescription": "Insufficient balance"}
        )

        result = self.api.stk_push("254712345678", 20, "WIFI-1")

        self.assertFalse(result.success)
        self.assertEqual(result.response_code, "1")
        self.assertEqual(result.message, "Insufficient balance")

    @patch("hotspot.mpesa.requests.post")
    def test_timeout_raises(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout()
        with self.assertRaises(ProviderTimeout):
            self.api.stk_push("254712345678", 20, "WIFI-1")

    @patch("hotspot.mpesa.requests.post")
    def test_connection_error_raises(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError()
        with self.assertRaises(ProviderUnavailable):
            self.api.stk_push("254712345678", 20, "WIFI-1")

    @patch("hotspot.mpesa.requests.post")
    def test_server_error_raises(self, mock_post):
        mock_post.return_value = mock_response(503, ValueError("not json"))
        with self.assertRaises(ProviderUnavailable):
            self.api.stk_push("254712345678", 20, "WIFI-1")

    @patch("hotspot.mpesa.requests.post")
    def test_invalid_inputs_rejected_before_any_request(self, mock_post):
        with self.assertRaises(ValueError):
            self.api.stk_push("254812345678", 20, "WIFI-1")
        with self.assertRaises(ValueError):
            self.api.stk_push("254712345678", "20.50", "WIFI-1")
        with self.assertRaises(ValueError):
            self.api.stk_push("254712345678", 0, "WIFI-1")
        mock_post.assert_not_called()


class CallbackParsingTest(TestCase):
    def test_success_callback(self):
        callback = parse_stk_callback(success_callback())

        self.assertTrue(callback.is_success)
        self.assertEqual(callback.checkout_request_id, "ws_CO_191220191020363925")
        self.assertEqual(callback.receipt_number, "NLJ7RT61SV")
        self.assertEqual(callback.amount, 20)
        self.assertEqual(callback.phone_number, "254712345678")
        self.assertEqual(callback.transaction_date, 20191219102115)

    def test_failed_callback_has_no_metadata(self):
        callback = parse_stk_callback(failed_callback())

        self.assertFalse(callback.is_success)
        self.assertEqual(callback.result_code, 1032)
        self.assertEqual(callback.result_desc, "Request cancelled by user")
        self.assertEqual(callback.receipt_number, "")

    def test_malformed_payloads(self):
        accepted = {"CheckoutRequestID": "ws_1", "ResultCode": 0}
        for payload in (
            None,
            {},
            {"Body": {}},
            {"Body": {"stkCallback": {"ResultCode": 0}}},
            {"Body": {"stkCallback": {"CheckoutRequestID": "ws_1"}}},
            {"Body": {"stkCallback": {"CheckoutRequestID": "ws_1", "ResultCode": "x"}}},
            {"Body": {"stkCallback": dict(accepted, CallbackMetadata="junk")}},
            {"Body": {"stkCallback": dict(accepted, CallbackMetadata={"Item": 5})}},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(CallbackPayloadError):
                    parse_stk_callback(payload)

    def test_paid_amount(self):
        cases = [
            (20, Decimal("20.00")),
            ("10.5", Decimal("10.50")),
            ("abc", None),
            (True, None),
            (None, None),
            (-1, None),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                payload = success_callback(amount=value)
                self.assertEqual(parse_stk_callback(payload).paid_amount, expected)
