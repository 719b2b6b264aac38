"""
Add celery-beat schedules for recurring billing and webhook retries.

Creates two periodic tasks:
- process_recurring_payments every hour
- retry_failed_webhook_events every 15 minutes
"""

from django.db import migrations


RECURRING_TASK_NAME = "Process Recurring Payments"
WEBHOOK_RETRY_TASK_NAME = "Retry Failed Webhook Events"


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    hourly, _ = IntervalSchedule.objects.get_or_create(every=1, period="hours")
    quarter_hourly, _ = IntervalSchedule.objects.get_or_create(every=15, period="minutes")

    PeriodicTask.objects.get_or_create(
        name=RECURRING_TASK_NAME,
        defaults={
            "task": "payments.tasks.process_recurring_payments",
            "interval": hourly,
            "enabled": True,
            "description": (
                "Charges subscriptions whose next billing date has passed "
                "and schedules retries with exponential backoff."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name=WEBHOOK_RETRY_TASK_NAME,
        defaults={
            "task": "payments.tasks.retry_failed_webhook_events",
            "interval": quarter_hourly,
            "enabled": True,
            "description": "Requeues failed provider webhook events with retries left.",
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[RECURRING_TASK_NAME, WEBHOOK_RETRY_TASK_NAME],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
