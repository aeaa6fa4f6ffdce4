"""
Add celery-beat schedules for the escrow background jobs.

The release sweep runs every 15 minutes and settles orders whose
confirmation window has closed. Transfer and webhook retries share the
same interval and stuck webhook cleanup runs hourly.
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Escrow Release Sweep",
        "task": "escrow.workers.release_scheduler.run_release_sweep",
        "every": 15,
        "description": (
            "Captures authorized orders and cancels on-hold orders whose "
            "confirmation deadline has passed."
        ),
    },
    {
        "name": "Retry Failed Seller Transfers",
        "task": "escrow.workers.transfer_retry.retry_failed_transfers",
        "every": 15,
        "description": "Re-attempts seller payout transfers for captured orders.",
    },
    {
        "name": "Retry Failed Escrow Webhooks",
        "task": "escrow.tasks.retry_failed_webhooks",
        "every": 15,
        "description": "Re-queues failed Stripe webhook events under the retry limit.",
    },
    {
        "name": "Cleanup Stuck Escrow Webhooks",
        "task": "escrow.tasks.cleanup_stuck_webhooks",
        "every": 60,
        "description": "Marks webhook events stuck in processing as failed.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for escrow background jobs."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=entry["every"],
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "interval": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
