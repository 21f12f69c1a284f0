"""
Celery configuration for the order-to-cash project.

DJANGO_SETTINGS_MODULE is set before the app is instantiated so that
Celery reads the Django settings (``CELERY_`` prefix), including the beat
schedule that expires overdue offers.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("order_to_cash")

app.config_from_object("django.conf:settings", namespace="CELERY")

# Discover tasks.py in every installed app
app.autodiscover_tasks()
