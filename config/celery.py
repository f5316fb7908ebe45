"""
Celery configuration for the payment gateway service.

This module initializes the Celery application and configures it to work with Django.
"""
import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

# Create the Celery app
app = Celery('config')

# Load configuration from Django settings, using the CELERY namespace
# This means all celery-related configuration keys should have a `CELERY_` prefix.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Discover tasks.py in installed apps (payments.tasks)
app.autodiscover_tasks()
