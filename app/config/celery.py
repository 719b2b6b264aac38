"""
Celery configuration for the payments service.

Celery runs the background side of payment processing:
- Stored provider webhooks (payments.tasks.process_webhook_event)
- Hourly recurring billing and webhook retries, scheduled by celery-beat
  from the DatabaseScheduler (see payments migration 0002)
- Outbound delivery of payment events

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

Usage:
    # Worker
    celery -A config worker -l info

    # Scheduler
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
