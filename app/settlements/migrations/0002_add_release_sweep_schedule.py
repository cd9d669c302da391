"""
Add celery-beat schedule for the escrow release sweep.

This migration creates the periodic task schedule for the
run_release_sweep task, which runs every SETTLEMENTS_RELEASE_SWEEP_MINUTES
(default 5) to release escrow whose hold period has ended.
"""

from django.conf import settings
from django.db import migrations

TASK_NAME = "Release Due Escrow"


def create_periodic_task(apps, schema_editor):
    """Create the periodic task for the release sweep."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=getattr(settings, "SETTLEMENTS_RELEASE_SWEEP_MINUTES", 5),
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "settlements.workers.release_sweeper.run_release_sweep",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Releases escrowed funds to sellers once the hold period "
                "has ended and no dispute is open."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlements", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
