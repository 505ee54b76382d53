"""
Celery application for guest notifications.

Run a worker with:
    celery -A experience_booking_platform.tasks.celery_app worker -Q notifications
"""

from celery import Celery

from ..config import get_settings

settings = get_settings()

celery_app = Celery(
    "experience_booking_platform",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["experience_booking_platform.tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    timezone="UTC",
    task_track_started=True,
    task_routes={"send_booking_*": {"queue": "notifications"}},
    # SMTP round trips only; a stuck task is killed well before the retry delay
    task_soft_time_limit=45,
    task_time_limit=60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    result_expires=24 * 3600,
    # A request queueing an email must not hang while the broker is down
    broker_connection_timeout=2,
    task_publish_retry=False,
)
