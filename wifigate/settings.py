"""
Django settings for the WifiGate hotspot billing platform
"""

from pathlib import Path
from decouple import config, Csv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = config(
    "SECRET_KEY", default="django-insecure-wifigate-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = config("DEBUG", default=False, cast=bool)

ALLOWED_HOSTS = config(
    "ALLOWED_HOSTS",
    default="localhost,127.0.0.1,testserver",
    cast=Csv(),
)

# Application definition
INSTALLED_APPS = [
    "jazzmin",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "corsheaders",
    "django_crontab",  # For scheduled tasks
    "hotspot",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "wifigate.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "wifigate.wsgi.application"

# Database
# MySQL in production (pip install wifigate[mysql]), SQLite for local runs
DB_ENGINE = config("DB_ENGINE", default="django.db.backends.sqlite3")

if DB_ENGINE == "django.db.backends.sqlite3":
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": config("DB_NAME", default=str(BASE_DIR / "db.sqlite3")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": config("DB_NAME", default="wifigate"),
            "USER": config("DB_USER", default="root"),
            "PASSWORD": config("DB_PASSWORD", default=""),
            "HOST": config("DB_HOST", default="localhost"),
            "PORT": config("DB_PORT", default="3306"),
            "OPTIONS": {
                "charset": "utf8mb4",
                "init_command": "SET sql_mode='STRICT_TRANS_TABLES'",
            },
        }
    }

# Cache backs the pending-activation store and the M-Pesa token.
# Use Redis when more than one application instance serves the portal.
REDIS_URL = config("REDIS_URL", default="")

if REDIS_URL:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": REDIS_URL,
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "wifigate",
        }
    }


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "Africa/Nairobi"
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# WhiteNoise settings
WHITENOISE_USE_FINDERS = DEBUG  # Only use finders in development
WHITENOISE_AUTOREFRESH = DEBUG  # Only in development
WHITENOISE_MAX_AGE = 31536000 if not DEBUG else 0  # 1 year cache in production

# Security Settings - Environment Aware Configuration
if not DEBUG:
    SECURE_CONTENT_TYPE_NOSNIFF = True
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_SSL_REDIRECT = config("SECURE_SSL_REDIRECT", default=True, cast=bool)
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    X_FRAME_OPTIONS = "DENY"
    SECURE_REFERRER_POLICY = "same-origin"

# Logging
LOG_DIR = BASE_DIR / "logs"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO" if DEBUG else "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "hotspot": {
            "handlers": ["console"],
            "level": config("HOTSPOT_LOG_LEVEL", default="INFO"),
            "propagate": False,
        },
    },
}

# File logging only when the logs directory has been provisioned
if not DEBUG and LOG_DIR.is_dir():
    LOGGING["handlers"]["file"] = {
        "class": "logging.FileHandler",
        "filename": LOG_DIR / "django.log",
        "formatter": "verbose",
    }
    LOGGING["loggers"]["django"]["handlers"].append("file")
    LOGGING["loggers"]["hotspot"]["handlers"].append("file")

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# REST Framework Configuration
REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
    ],
    "EXCEPTION_HANDLER": "hotspot.exception_handler.custom_exception_handler",
}

# CORS settings - Environment Aware
if DEBUG:
    CORS_ALLOW_ALL_ORIGINS = True
else:
    CORS_ALLOW_ALL_ORIGINS = False
    CORS_ALLOWED_ORIGINS = config(
        "CORS_ALLOWED_ORIGINS", default="http://localhost:3000", cast=Csv()
    )

CORS_PREFLIGHT_MAX_AGE = 86400  # 24 hours

# M-Pesa Daraja Configuration
MPESA_ENVIRONMENT = config("MPESA_ENVIRONMENT", default="sandbox")
MPESA_BASE_URL = config(
    "MPESA_BASE_URL",
    default=(
        "https://api.safaricom.co.ke"
        if MPESA_ENVIRONMENT == "production"
        else "https://sandbox.safaricom.co.ke"
    ),
)
MPESA_CONSUMER_KEY = config("MPESA_CONSUMER_KEY", default="")
MPESA_CONSUMER_SECRET = config("MPESA_CONSUMER_SECRET", default="")
MPESA_SHORTCODE = config("MPESA_SHORTCODE", default="174379")
MPESA_PASSKEY = config("MPESA_PASSKEY", default="")
MPESA_CALLBACK_URL = config("MPESA_CALLBACK_URL", default="")
MPESA_TIMEOUT = config("MPESA_TIMEOUT", default=30, cast=int)
# Daraja tokens live for 3600s, refresh a few minutes early
MPESA_TOKEN_CACHE_SECONDS = config("MPESA_TOKEN_CACHE_SECONDS", default=3300, cast=int)

# Router control plane (RouterOS API over TLS)
ROUTER_API_DEFAULT_PORT = config("ROUTER_API_DEFAULT_PORT", default=8729, cast=int)
ROUTER_API_TIMEOUT = config("ROUTER_API_TIMEOUT", default=10, cast=int)
ROUTER_API_RETRIES = config("ROUTER_API_RETRIES", default=2, cast=int)
# Control SSL certificate verification for self-signed certs (default: disabled)
ROUTER_API_SSL_VERIFY = config("ROUTER_API_SSL_VERIFY", default=False, cast=bool)
ROUTER_PROFILE_PREFIX = config("ROUTER_PROFILE_PREFIX", default="pkg_")
ROUTER_PROFILE_SHARED_USERS = config("ROUTER_PROFILE_SHARED_USERS", default=1, cast=int)

# Router secrets are encrypted at rest with a key derived from this value
ENCRYPTION_KEY = config("ENCRYPTION_KEY", default="")

# Pending activations bridge the STK push and its callback
PENDING_ACTIVATION_TTL = config("PENDING_ACTIVATION_TTL", default=600, cast=int)
PENDING_ACTIVATION_STORE = config(
    "PENDING_ACTIVATION_STORE",
    default="hotspot.pending.CachePendingActivationStore",
)

# Jazzmin Configuration
JAZZMIN_SETTINGS = {
    "site_title": "WifiGate Admin",
    "site_header": "WifiGate",
    "site_brand": "WifiGate",
    "welcome_sign": "WifiGate hotspot operations",
    "copyright": "WifiGate",
    "search_model": [
        "hotspot.Payment",
        "hotspot.Session",
        "hotspot.Router",
    ],
    "show_sidebar": True,
    "navigation_expanded": True,
    "order_with_respect_to": ["hotspot", "auth"],
    "icons": {
        "auth": "fas fa-users-cog",
        "auth.user": "fas fa-user",
        "hotspot.Package": "fas fa-boxes",
        "hotspot.Router": "fas fa-network-wired",
        "hotspot.Payment": "fas fa-credit-card",
        "hotspot.Session": "fas fa-wifi",
        "hotspot.OperationLog": "fas fa-history",
    },
    "changeform_format": "horizontal_tabs",
}

# CRONTAB CONFIGURATION FOR SCHEDULED TASKS
# ============================================
# Run 'python manage.py crontab add' to install cron jobs
CRONJOBS = [
    # End sessions whose package time has run out and revoke router access
    (
        "*/1 * * * *",
        "hotspot.tasks.expire_sessions",
        ">> /var/log/wifigate_cron.log 2>&1",
    ),
    # Drop expired pending activations (no-op for cache-backed stores)
    (
        "*/5 * * * *",
        "hotspot.tasks.sweep_pending_activations",
        ">> /var/log/wifigate_cron.log 2>&1",
    ),
]
