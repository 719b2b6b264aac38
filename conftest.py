"""
Root pytest configuration for the Django project.

Sets environment defaults so settings load without an env file, then
configures Django. App fixtures live in payments/conftest.py and the
conftest.py beside each test package.
"""

import os

import django

# Settings read these via django-environ; tests run against SQLite and
# the local-memory cache unless the environment says otherwise.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("ENV_FILE", os.devnull)
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DEBUG", "True")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
