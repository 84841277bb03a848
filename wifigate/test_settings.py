"""
Settings used by the test suite: SQLite, local-memory cache, fixed secrets
"""

from .settings import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "wifigate-tests",
    }
}

SECURE_SSL_REDIRECT = False

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

ENCRYPTION_KEY = "test-encryption-key-0123456789abcdef0123456789"

MPESA_BASE_URL = "https://sandbox.safaricom.co.ke"
MPESA_CONSUMER_KEY = "test-consumer-key"
MPESA_CONSUMER_SECRET = "test-consumer-secret"
MPESA_SHORTCODE = "174379"
MPESA_PASSKEY = "test-passkey"
MPESA_CALLBACK_URL = "https://portal.example.com/api/payments/mpesa/callback/"

ROUTER_API_RETRIES = 1

PENDING_ACTIVATION_STORE = "hotspot.pending.CachePendingActivationStore"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {"null": {"class": "logging.NullHandler"}},
    "root": {"handlers": ["null"]},
}
