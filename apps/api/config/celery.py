"""
Celery application.

Workers and beat share the Django settings (``CELERY_*`` keys). The archival
sweep runs on a cron schedule from ARCHIVAL_SCHEDULE_CRON.
"""
import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('dental_imaging')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()


def parse_cron(expression: str) -> crontab:
    """Parse "minute hour day month day_of_week"; daily at 02:30 if malformed."""
    parts = (expression or '').split()
    if len(parts) != 5:
        return crontab(hour=2, minute=30)
    return crontab(
        minute=parts[0],
        hour=parts[1],
        day_of_month=parts[2],
        month_of_year=parts[3],
        day_of_week=parts[4],
    )


def _bool(val, default=False):
    if val is None:
        return default
    return str(val).lower() in {"1", "true", "yes", "on"}


# Read from the environment so importing this module never configures Django
beat_schedule = {}
if _bool(os.environ.get("ARCHIVAL_ENABLED"), True):
    beat_schedule["archive-old-procedures"] = {
        "task": "apps.archival.tasks.archive_old_procedures",
        "schedule": parse_cron(os.environ.get("ARCHIVAL_SCHEDULE_CRON", "30 2 * * *")),
    }

app.conf.beat_schedule = beat_schedule
