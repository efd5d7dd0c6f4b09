"""
Celery app for background SMS sends and periodic housekeeping.

Start a worker with ``celery -A sms_bot.workers.celery_app worker`` and the
scheduler with ``celery -A sms_bot.workers.celery_app beat``.
"""
from celery import Celery

from sms_bot.core.config import settings

TASKS_MODULE = "sms_bot.workers.tasks"

celery_app = Celery(
    "iticket_sms",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[TASKS_MODULE],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Trip days are Ethiopian local days
    timezone="Africa/Addis_Ababa",
    enable_utc=True,
    task_track_started=True,
    # An SMS send or a sweep that runs past two minutes is stuck on a dead socket
    task_time_limit=120,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    "expire-idle-sms-sessions": {
        "task": f"{TASKS_MODULE}.cleanup_expired_sessions",
        "schedule": 300.0,
    },
    # Releases seats held by bookings whose payment stayed PENDING too long
    "expire-pending-payments": {
        "task": f"{TASKS_MODULE}.expire_pending_payments",
        "schedule": 60.0,
    },
}
