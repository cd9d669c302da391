"""
Celery configuration for the settlement service.

Workers run the escrow release sweep and single-transaction releases
(settlements.workers). Beat schedules the sweep from the database
(django_celery_beat); the schedule row is created by a settlements
data migration.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Finds settlements.tasks, which re-exports the worker tasks
app.autodiscover_tasks()
