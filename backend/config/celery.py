import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('radorder')

# Read every CELERY_* setting from Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

# Pick up radorder/tasks.py
app.autodiscover_tasks()
