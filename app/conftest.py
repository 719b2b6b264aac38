"""
Pytest configuration shared by all apps.

This module adjusts settings for tests, auto-marks tests by filename and
provides fixtures used across apps.
"""

import pytest


def pytest_configure():
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # No Redis in unit tests; locks patch get_redis_connection instead
    settings.CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "payments-tests",
        }
    }
    settings.STORAGES = {
        "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
        "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
    }

    # Run Celery tasks inline
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True
    settings.CELERY_BROKER_URL = "memory://"
    settings.CELERY_RESULT_BACKEND = "cache+memory://"

    settings.PAYMENT_EVENT_WEBHOOK_URL = ""


# Test module -> marker. Modules not listed are integration tests.
UNIT_TEST_MODULES = {
    "test_adapters.py",
    "test_billing.py",
    "test_config.py",
    "test_exceptions.py",
    "test_http.py",
    "test_locks.py",
    "test_models.py",
    "test_registry.py",
    "test_serializers.py",
    "test_signatures.py",
    "test_state_transitions.py",
    "test_tokens.py",
    "test_types.py",
}


def pytest_collection_modifyitems(items):
    """Mark each test unit or integration by module unless it is marked already."""
    for item in items:
        if any(item.iter_markers(name="unit")) or any(item.iter_markers(name="integration")):
            continue
        marker = pytest.mark.unit if item.path.name in UNIT_TEST_MODULES else pytest.mark.integration
        item.add_marker(marker)


@pytest.fixture(autouse=True)
def clear_cache():
    """Token cache entries must not leak between tests."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def reset_gateway_registry():
    """Each test builds the gateway registry from its own settings."""
    from payments.gateways.registry import reset_registry

    reset_registry()
    yield
    reset_registry()
