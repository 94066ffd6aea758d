import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("talent_bookings")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Resume stuck payouts and refunds - every 5 minutes
    "retry-pending-settlements": {
        "task": "finances.retry_pending_settlements",
        "schedule": 300.0,
        "options": {"expires": 280},
    },
}

app.conf.timezone = "Africa/Nairobi"
