"""
M-Pesa Daraja API integration (STK push / Lipa na M-Pesa Online)

  - OAuth client-credentials token, cached in the Django cache
  - STK push request
  - Parsing of the asynchronous STK callback
"""

import base64
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from .exceptions import (
    CallbackPayloadError,
    ProviderAuthenticationError,
    ProviderTimeout,
    ProviderUnavailable,
)
from .utils import mask_phone_number, normalize_phone_number, to_stk_amount

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "mpesa:access_token"
TRANSACTION_TYPE = "CustomerPayBillOnline"
ACCEPTED_RESPONSE_CODE = "0"
# Upper bound of Payment.paid_amount (10 digits, 2 decimal places)
MAX_CALLBACK_AMOUNT = Decimal("100000000")


@dataclass
class StkPushResult:
    success: bool
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    response_code: Optional[str] = None
    message: str = ""


@dataclass
class StkCallback:
    """Decoded ``Body.stkCallback`` of a Daraja result notification"""

    checkout_request_id: str
    merchant_request_id: str
    result_code: int
    result_desc: str
    items: dict = field(default_factory=dict)

    @property
    def is_success(self):
        return self.result_code == 0

    @property
    def receipt_number(self):
        return self.items.get("MpesaReceiptNumber", "")

    @property
    def amount(self):
        return self.items.get("Amount")

    @property
    def paid_amount(self):
        """Confirmed amount as a Decimal, None when absent or unreadable"""
        value = self.amount
        if value is None or isinstance(value, bool):
            return None
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
        if not amount.is_finite() or not 0 <= amount < MAX_CALLBACK_AMOUNT:
            return None
        return amount.quantize(Decimal("0.01"))

    @property
    def phone_number(self):
        value = self.items.get("PhoneNumber")
        return str(value) if value is not None else ""

    @property
    def transaction_date(self):
        return self.items.get("TransactionDate")


def parse_stk_callback(payload) -> StkCallback:
    """
    Decode a callback payload.
    Raises CallbackPayloadError when the envelope, the checkout id or the
    result code is missing, or when the metadata is not an item list.
    """
    try:
        callback = payload["Body"]["stkCallback"]
    except (KeyError, TypeError):
        raise CallbackPayloadError("Callback payload has no Body.stkCallback")

    if not isinstance(callback, dict):
        raise CallbackPayloadError("Body.stkCallback is not an object")

    checkout_request_id = callback.get("CheckoutRequestID")
    if not checkout_request_id:
        raise CallbackPayloadError("Callback is missing CheckoutRequestID")

    try:
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError):
        raise CallbackPayloadError("Callback is missing a numeric ResultCode")

    items = {}
    metadata = callback.get("CallbackMetadata") or {}
    if not isinstance(metadata, dict):
        raise CallbackPayloadError("CallbackMetadata is not an object")
    item_list = metadata.get("Item") or []
    if not isinstance(item_list, list):
        raise CallbackPayloadError("CallbackMetadata.Item is not a list")
    for item in item_list:
        if isinstance(item, dict) and item.get("Name"):
            items[item["Name"]] = item.get("Value")

    return StkCallback(
        checkout_request_id=str(checkout_request_id),
        merchant_request_id=str(callback.get("MerchantRequestID") or ""),
        result_code=result_code,
        result_desc=str(callback.get("ResultDesc") or ""),
        items=items,
    )


class MpesaAPI:
    """
    Daraja client.

    Credentials default to Django settings. Provider declines come back as
    an unsuccessful StkPushResult; transport and authentication failures
    raise PaymentProviderError subclasses.
    """

    def __init__(
        self,
        consumer_key: Optional[str] = None,
        consumer_secret: Optional[str] = None,
        shortcode: Optional[str] = None,
        passkey: Optional[str] = None,
        callback_url: Optional[str] = None,
    ):
        self.consumer_key = consumer_key or settings.MPESA_CONSUMER_KEY
        self.consumer_secret = consumer_secret or settings.MPESA_CONSUMER_SECRET
        self.shortcode = str(shortcode or settings.MPESA_SHORTCODE)
        self.passkey = passkey or settings.MPESA_PASSKEY
        self.callback_url = callback_url or settings.MPESA_CALLBACK_URL
        self.base_url = settings.MPESA_BASE_URL.rstrip("/")
        self.timeout = getattr(settings, "MPESA_TIMEOUT", 30)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def get_access_token(self) -> str:
        """OAuth token, reused from the cache until shortly before it expires"""
        token = cache.get(TOKEN_CACHE_KEY)
        if token:
            return token

        url = f"{self.base_url}/oauth/v1/generate?grant_type=client_credentials"
        try:
            response = requests.get(
                url,
                auth=(self.consumer_key, self.consumer_secret),
                timeout=self.timeout,
            )
            response.raise_for_status()
            token = response.json().get("access_token")
        except requests.exceptions.Timeout:
            logger.error("M-Pesa OAuth request timed out")
            raise ProviderTimeout()
        except requests.exceptions.ConnectionError:
            logger.error("M-Pesa OAuth connection error")
            raise ProviderUnavailable()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Failed to get M-Pesa access token: {e}")
            raise ProviderAuthenticationError()

        if not token:
            logger.error("M-Pesa OAuth response carried no access_token")
            raise ProviderAuthenticationError()

        cache.set(TOKEN_CACHE_KEY, token, settings.MPESA_TOKEN_CACHE_SECONDS)
        return token

    def generate_password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    @staticmethod
    def generate_timestamp() -> str:
        return timezone.localtime().strftime("%Y%m%d%H%M%S")

    # ======================================================================
    # STK PUSH
    # ======================================================================

    def stk_push(
        self,
        phone_number,
        amount,
        account_reference: str,
        description: str = "WiFi Access",
    ) -> StkPushResult:
        """
        Ask the subscriber's handset to confirm a payment.

        Args:
            phone_number:      Any Kenyan format, normalised to 254XXXXXXXXX
            amount:            Whole shillings, 1 to 250,000
            account_reference: Shown to the payer (max 12 chars on Daraja)
            description:       TransactionDesc

        Raises ValueError for an invalid phone number or amount.
        """
        phone = normalize_phone_number(phone_number)
        amount = to_stk_amount(amount)

        access_token = self.get_access_token()
        timestamp = self.generate_timestamp()

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self.generate_password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.post(
                f"{self.base_url}/mpesa/stkpush/v1/processrequest",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error(f"STK push timed out for {mask_phone_number(phone)}")
            raise ProviderTimeout()
        except requests.exceptions.ConnectionError:
            logger.error(f"STK push connection error for {mask_phone_number(phone)}")
            raise ProviderUnavailable()
        except requests.exceptions.RequestException as e:
            logger.error(f"STK push request error: {e}")
            raise ProviderUnavailable()

        try:
            body = response.json()
        except ValueError:
            logger.error(
                f"M-Pesa returned non-JSON response (HTTP {response.status_code})"
            )
            if response.status_code >= 500:
                raise ProviderUnavailable("Invalid response from payment provider")
            return StkPushResult(
                success=False, message="Invalid response from payment provider"
            )

        if response.status_code >= 500:
            logger.error(f"M-Pesa server error {response.status_code}: {body}")
            raise ProviderUnavailable()

        response_code = body.get("ResponseCode")
        if response.status_code == 200 and str(response_code) == ACCEPTED_RESPONSE_CODE:
            logger.info(
                f"STK push accepted for {mask_phone_number(phone)}, "
                f"CheckoutRequestID: {body.get('CheckoutRequestID')}"
            )
            return StkPushResult(
                success=True,
                checkout_request_id=body.get("CheckoutRequestID"),
                merchant_request_id=body.get("MerchantRequestID"),
                response_code=str(response_code),
                message=body.get("CustomerMessage")
                or body.get("ResponseDescription", ""),
            )

        # Declined: ResponseCode != 0 or a Daraja error body {errorCode, errorMessage}
        message = (
            body.get("ResponseDescription")
            or body.get("errorMessage")
            or "Payment request was declined"
        )
        code = response_code if response_code is not None else body.get("errorCode")
        logger.warning(f"STK push declined ({code}): {message}")
        return StkPushResult(
            success=False,
            response_code=str(code) if code is not None else None,
            message=message,
        )
