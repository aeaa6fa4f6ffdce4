"""
Celery configuration for the ticket escrow service.

Background work handled by Celery:
- Processing stored Stripe webhook events
- The periodic escrow release sweep (auto-release / auto-cancel)
- Retrying failed seller transfers and failed webhook events

Periodic schedules live in the database (django-celery-beat) and are
created by data migrations in the escrow app.

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
