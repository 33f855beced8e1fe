"""Celery application instance for the reminder worker.

Start a worker and the beat scheduler with:
    celery -A app.celery_app worker -Q reminder -l info --concurrency=1
    celery -A app.celery_app beat -l info
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("eventprompt_reminders", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_time_limit = settings.REMINDER_TASK_TIME_LIMIT
celery_app.conf.result_expires = 3600

celery_app.conf.task_routes = {
    "app.workers.reminder.dispatch_due": {"queue": "reminder"},
}

# Beat schedule: dispatch one bounded batch of due reminders per tick.
# Beat only enqueues; the batch itself runs on a worker.
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "app.workers.reminder.dispatch_due",
        "schedule": settings.REMINDER_DISPATCH_INTERVAL,
        "options": {"expires": settings.REMINDER_DISPATCH_INTERVAL},
    }
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
