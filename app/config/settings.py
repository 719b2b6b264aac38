"""
Django settings for the payments service.

One settings module for every environment. Values come from environment
variables through django-environ; ENV_FILE (default ../.env.development)
is loaded first when it exists.

Gateway credentials are read from PAYMENT_<GATEWAY>_* variables and
collected into PAYMENT_GATEWAYS below. A gateway is only offered to
clients when PAYMENT_<GATEWAY>_ENABLED is true.
"""

import os
from datetime import timedelta
from pathlib import Path

import environ

# app/ directory
BASE_DIR = Path(__file__).resolve().parent.parent

# =============================================================================
# Environment Configuration
# =============================================================================
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    CORS_ALLOWED_ORIGINS=(list, []),
    LOG_LEVEL=(str, "INFO"),
)

# Containers pass variables directly; the file only matters locally
env_file = os.environ.get("ENV_FILE", BASE_DIR.parent / ".env.development")
if Path(env_file).exists():
    environ.Env.read_env(env_file)

# =============================================================================
# Core Settings
# =============================================================================
SECRET_KEY = env("SECRET_KEY")
DEBUG = env("DEBUG")

ALLOWED_HOSTS = env("ALLOWED_HOSTS")
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# =============================================================================
# Application Definition
# =============================================================================
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "corsheaders",
    "django_filters",
    "django_celery_beat",
    "drf_spectacular",
    "core",
    "payments",
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

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
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

WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

# =============================================================================
# Database Configuration
# =============================================================================
DATABASES = {
    "default": env.db(
        "DATABASE_URL",
        default="postgres://postgres:postgres@db:5432/payments_dev",
    ),
}

if DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
    DATABASES["default"]["OPTIONS"] = {
        "connect_timeout": 10,
    }

# =============================================================================
# Cache Configuration
# =============================================================================
# Redis backs OAuth token caching and the refund / recurring billing locks.
CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": env("REDIS_URL", default="redis://redis:6379/0"),
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
            # A Redis outage must not fail callbacks; token caching degrades to
            # a fetch per request. Locks use the raw client and still raise.
            "IGNORE_EXCEPTIONS": True,
        },
    }
}

# =============================================================================
# Django REST Framework Configuration
# =============================================================================
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        # Merchant backends call the API with JWTs
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        # Staff using the browsable API in DEBUG
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": env("API_THROTTLE_ANON", default="100/hour"),
        "user": env("API_THROTTLE_USER", default="1000/hour"),
    },
}

if DEBUG:
    REST_FRAMEWORK["DEFAULT_RENDERER_CLASSES"].append(
        "rest_framework.renderers.BrowsableAPIRenderer"
    )

# =============================================================================
# drf-spectacular (OpenAPI) Configuration
# =============================================================================
SPECTACULAR_SETTINGS = {
    "TITLE": "Payments API",
    "DESCRIPTION": "Multi-gateway payment processing",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SCHEMA_PATH_PREFIX": r"/api/v[0-9]+",
    "SECURITY": [{"Bearer": []}],
    "APPEND_COMPONENTS": {
        "securitySchemes": {
            "Bearer": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
            }
        }
    },
    "COMPONENT_SPLIT_REQUEST": True,
    "SORT_OPERATIONS": False,
}

# =============================================================================
# Simple JWT Configuration
# =============================================================================
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=60),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "ALGORITHM": "HS256",
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
    "AUTH_HEADER_NAME": "HTTP_AUTHORIZATION",
    "USER_ID_FIELD": "id",
    "USER_ID_CLAIM": "user_id",
}

# =============================================================================
# CORS Configuration
# =============================================================================
CORS_ALLOWED_ORIGINS = env("CORS_ALLOWED_ORIGINS")
CORS_ALLOW_CREDENTIALS = True

# =============================================================================
# Celery Configuration
# =============================================================================
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://redis:6379/1")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"
CELERY_TASK_ALWAYS_EAGER = env.bool("CELERY_TASK_ALWAYS_EAGER", default=False)

# =============================================================================
# Payment Configuration
# =============================================================================
# Applied to every gateway before its own defaults and PAYMENT_GATEWAYS entry
PAYMENT_TRANSACTION_DEFAULTS = {
    "currency": env("PAYMENT_DEFAULT_CURRENCY", default="ZAR"),
    "minimum_amount": env("PAYMENT_MINIMUM_AMOUNT", default="1.00"),
    "maximum_amount": env("PAYMENT_MAXIMUM_AMOUNT", default="1000000.00"),
    "default_description": env("PAYMENT_DEFAULT_DESCRIPTION", default="Payment"),
    "max_attempts": env.int("PAYMENT_MAX_ATTEMPTS", default=3),
}

# Gateway used when a request names none
PAYMENT_DEFAULT_GATEWAY = env("PAYMENT_DEFAULT_GATEWAY", default="payfast")

# Reject callbacks whose provider signature is missing (not just wrong)
PAYMENT_STRICT_SIGNATURES = env.bool("PAYMENT_STRICT_SIGNATURES", default=True)

# Outbound HTTP client used by the REST adapters
PAYMENT_HTTP_TIMEOUT = env.float("PAYMENT_HTTP_TIMEOUT", default=30.0)
PAYMENT_HTTP_RETRY_ATTEMPTS = env.int("PAYMENT_HTTP_RETRY_ATTEMPTS", default=3)
PAYMENT_HTTP_RETRY_DELAY_MS = env.int("PAYMENT_HTTP_RETRY_DELAY_MS", default=100)
PAYMENT_USER_AGENT_NAME = env("PAYMENT_USER_AGENT_NAME", default="Payment-Gateway")
PAYMENT_VERSION = env("PAYMENT_VERSION", default="1.0.0")

# OAuth tokens are cached until this many seconds before they expire
PAYMENT_TOKEN_CACHE_BUFFER_SECONDS = env.int("PAYMENT_TOKEN_CACHE_BUFFER_SECONDS", default=60)

# Lock lifetimes (seconds)
PAYMENT_REFUND_LOCK_TTL = env.int("PAYMENT_REFUND_LOCK_TTL", default=60)
PAYMENT_RECURRING_LOCK_TTL = env.int("PAYMENT_RECURRING_LOCK_TTL", default=900)

# Subscriptions billed per recurring run
PAYMENT_RECURRING_BATCH_LIMIT = env.int("PAYMENT_RECURRING_BATCH_LIMIT", default=100)

# PaymentCompleted / PaymentFailed events are POSTed here when set
PAYMENT_EVENT_WEBHOOK_URL = env("PAYMENT_EVENT_WEBHOOK_URL", default="")


def gateway_settings(name, *credential_keys, **options):
    """
    Read PAYMENT_<NAME>_* variables into a PAYMENT_GATEWAYS entry.

    Usage:
        gateway_settings("paystack", "secret_key", "public_key")
        # reads PAYMENT_PAYSTACK_ENABLED, PAYMENT_PAYSTACK_TEST_MODE,
        # PAYMENT_PAYSTACK_SECRET_KEY, PAYMENT_PAYSTACK_PUBLIC_KEY
    """
    prefix = f"PAYMENT_{name.upper()}_"
    entry = {
        "enabled": env.bool(f"{prefix}ENABLED", default=False),
        "test_mode": env.bool(f"{prefix}TEST_MODE", default=True),
    }
    for key in ("return_url", "cancel_url", "notify_url"):
        value = env(f"{prefix}{key.upper()}", default="")
        if value:
            entry[key] = value
    for key in credential_keys:
        entry[key] = env(f"{prefix}{key.upper()}", default="")
    entry.update(options)
    return entry


PAYMENT_GATEWAYS = {
    "payfast": gateway_settings("payfast", "merchant_id", "merchant_key", "passphrase"),
    "paystack": gateway_settings("paystack", "secret_key", "public_key"),
    "paypal": gateway_settings("paypal", "client_id", "client_secret", "webhook_id"),
    "stripe": gateway_settings("stripe", "secret_key", "publishable_key", "webhook_secret"),
    "ozow": gateway_settings("ozow", "site_code", "private_key", "api_key"),
    "snapscan": gateway_settings("snapscan", "merchant_id", "api_key", "webhook_secret"),
    "zapper": gateway_settings("zapper", "merchant_id", "site_id", "api_key", "api_secret"),
    "vodapay": gateway_settings("vodapay", "merchant_id", "api_key", "api_secret"),
    "crypto": gateway_settings("crypto", "api_key", "webhook_secret"),
    "eft": gateway_settings(
        "eft",
        bank_name=env("PAYMENT_EFT_BANK_NAME", default=""),
        account_name=env("PAYMENT_EFT_ACCOUNT_NAME", default=""),
        account_number=env("PAYMENT_EFT_ACCOUNT_NUMBER", default=""),
        branch_code=env("PAYMENT_EFT_BRANCH_CODE", default=""),
        swift_code=env("PAYMENT_EFT_SWIFT_CODE", default=""),
        payment_window_hours=env.int("PAYMENT_EFT_PAYMENT_WINDOW_HOURS", default=24),
    ),
}

# =============================================================================
# Internationalization
# =============================================================================
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# =============================================================================
# Static Files (admin assets, served by WhiteNoise)
# =============================================================================
STATIC_URL = env("STATIC_URL", default="/static/")
STATIC_ROOT = BASE_DIR / "staticfiles"
STATICFILES_DIRS = [BASE_DIR / "static"] if (BASE_DIR / "static").exists() else []

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL = env("LOG_LEVEL")

# One file per process: django.log, celery-worker.log, celery-beat.log
LOG_FILE_NAME = env("LOG_FILE_NAME", default="django.log")
LOG_DIR = BASE_DIR / "logs"

LOG_DIR.mkdir(parents=True, exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "file": {
            "format": "[{asctime}] {levelname} {name} {module}:{lineno} - {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
        "file": {
            "level": "DEBUG",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": LOG_DIR / LOG_FILE_NAME,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "file",
            "encoding": "utf-8",
        },
    },
    "root": {
        "handlers": ["console", "file"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "django.request": {
            "handlers": ["console", "file"],
            "level": "ERROR",
            "propagate": False,
        },
        "celery": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        # Gateway, webhook and billing logs; provider payloads at DEBUG
        "payments": {
            "level": env("PAYMENT_LOG_LEVEL", default=LOG_LEVEL),
        },
    },
}

# =============================================================================
# Security Settings (Production Only)
# =============================================================================
if not DEBUG:
    SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=True)
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

    SESSION_COOKIE_SECURE = env.bool("SESSION_COOKIE_SECURE", default=True)
    CSRF_COOKIE_SECURE = env.bool("CSRF_COOKIE_SECURE", default=True)

    SECURE_HSTS_SECONDS = env.int("SECURE_HSTS_SECONDS", default=31536000)
    SECURE_HSTS_INCLUDE_SUBDOMAINS = env.bool(
        "SECURE_HSTS_INCLUDE_SUBDOMAINS", default=True
    )
    SECURE_HSTS_PRELOAD = env.bool("SECURE_HSTS_PRELOAD", default=True)

    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
