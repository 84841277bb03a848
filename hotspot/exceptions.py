"""
Error taxonomy for the payment-to-access pipeline
"""


class HotspotError(Exception):
    """Base class for pipeline errors"""

    default_message = "Hotspot operation failed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Payment request errors
# ---------------------------------------------------------------------------


class InvalidPaymentRequest(HotspotError):
    """Malformed phone, device identifier, amount or package"""

    default_message = "Invalid payment request"

    def __init__(self, message=None, field=None):
        self.field = field
        super().__init__(message)


class PaymentInProgress(HotspotError):
    """A pending activation already exists for the device"""

    default_message = "Payment already in progress for this device"

    def __init__(self, checkout_request_id, message=None):
        self.checkout_request_id = checkout_request_id
        super().__init__(message)


class PaymentDeclined(HotspotError):
    """The provider answered but refused the push request"""

    default_message = "Payment request was declined"

    def __init__(self, message=None, response_code=None):
        self.response_code = response_code
        super().__init__(message)


class PaymentProviderError(HotspotError):
    """Transport or authentication failure talking to the provider"""

    default_message = "Payment provider unavailable"


class ProviderAuthenticationError(PaymentProviderError):
    default_message = "Failed to authenticate with M-Pesa API"


class ProviderTimeout(PaymentProviderError):
    default_message = "Payment provider timed out"


class ProviderUnavailable(PaymentProviderError):
    default_message = "Could not connect to payment provider"


class CallbackPayloadError(HotspotError):
    default_message = "Malformed payment callback"


# ---------------------------------------------------------------------------
# Activation errors
# ---------------------------------------------------------------------------


class ActivationError(HotspotError):
    default_message = "Session activation failed"


class ActivationWindowExpired(ActivationError):
    """
    Payment confirmed after the pending activation expired.
    The payment stays recorded as successful but no access is granted.
    """

    default_message = "Activation window expired"

    def __init__(self, checkout_request_id, message=None):
        self.checkout_request_id = checkout_request_id
        super().__init__(message)


# ---------------------------------------------------------------------------
# Router control-plane errors
# ---------------------------------------------------------------------------


class RouterError(HotspotError):
    default_message = "Router operation failed"


class RouterCredentialsMissing(RouterError):
    default_message = "Router credentials not configured"


class RouterCredentialsInvalid(RouterError):
    """Stored secret cannot be decrypted (key rotated or row corrupted)"""

    default_message = "Router credentials are invalid"


class RouterUnreachable(RouterError):
    default_message = "Router is unreachable"


class RouterCommandError(RouterError):
    default_message = "Router rejected the command"
