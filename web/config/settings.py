"""Django settings for the checkout and order service.

Every tunable is read from the environment; defaults suit local runs and
the test suite (SQLite, logging notification sink, durable sessions).
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "insecure-dev-key")
DEBUG = _bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.orders",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

# ---------------- Database ---------------- #
DB_ENGINE = os.getenv("DB_ENGINE", "sqlite")
if DB_ENGINE == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME", "orders"),
            "USER": os.getenv("DB_USER", "orders"),
            "PASSWORD": os.getenv("DB_PASSWORD", ""),
            "HOST": os.getenv("DB_HOST", "db"),
            "PORT": os.getenv("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
            # writers queue on BEGIN IMMEDIATE instead of failing a lock upgrade
            "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
            # file-backed so threaded tests share one database
            "TEST": {"NAME": str(BASE_DIR / "test_db.sqlite3")},
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"}}

# ---------------- DRF ---------------- #
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "DEFAULT_AUTHENTICATION_CLASSES": ["gateway.authentication.GatewayHeaderAuthentication"],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_THROTTLE_RATES": {
        "checkout_create": os.getenv("THROTTLE_CHECKOUT_CREATE", "120/min"),
        "checkout_complete": os.getenv("THROTTLE_CHECKOUT_COMPLETE", "60/min"),
        "payment_proofs": os.getenv("THROTTLE_PAYMENT_PROOFS", "30/min"),
    },
}

API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

# ---------------- Checkout ---------------- #
CHECKOUT_SESSION_TTL_MINUTES = int(os.getenv("CHECKOUT_SESSION_TTL_MINUTES", "30"))
CHECKOUT_SESSION_BACKEND = os.getenv("CHECKOUT_SESSION_BACKEND", "db")  # db | memory
MINIMUM_ORDER_BASE = os.getenv("MINIMUM_ORDER_BASE", "subtotal")  # subtotal | total
DELIVERY_SURCHARGE_TIERS = os.getenv("DELIVERY_SURCHARGE_TIERS", "10:3,5:2,2:1")
DELIVERY_BASE_MINUTES = int(os.getenv("DELIVERY_BASE_MINUTES", "30"))
DELIVERY_MINUTES_PER_ZONE = int(os.getenv("DELIVERY_MINUTES_PER_ZONE", "2"))
CURRENCY = os.getenv("CURRENCY", "SGD")

# ---------------- Payments ---------------- #
MAX_PAYMENT_PROOFS = int(os.getenv("MAX_PAYMENT_PROOFS", "3"))
PAYMENT_PROOF_MAX_BYTES = int(os.getenv("PAYMENT_PROOF_MAX_BYTES", str(5 * 1024 * 1024)))
PAYMENT_PROOF_MIME_TYPES = tuple(
    m.strip() for m in os.getenv("PAYMENT_PROOF_MIME_TYPES", "image/jpeg,image/png,image/webp").split(",") if m.strip()
)
PAYMENT_REJECTION_CANCELS_ORDER = _bool("PAYMENT_REJECTION_CANCELS_ORDER", False)
PAYNOW_QR_VALID_DAYS = int(os.getenv("PAYNOW_QR_VALID_DAYS", "7"))

# ---------------- Outbound HTTP ---------------- #
USE_HTTP_ADAPTERS = _bool("USE_HTTP_ADAPTERS", False)
NOTIFICATIONS_BASE_URL = os.getenv("NOTIFICATIONS_BASE_URL", "http://notifications:9003")
HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "2.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30"))

# ---------------- Logging ---------------- #
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "loggers": {
        "orders": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": True},
        "django.request": {"handlers": ["console"], "level": "WARNING", "propagate": False},
    },
}
