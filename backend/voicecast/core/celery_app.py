"""Celery application configuration."""

from celery import Celery

from voicecast.core.config import settings

celery_app = Celery(
    "voicecast",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    worker_prefetch_multiplier=1,
    # Fan-out is idempotent, so redelivery after a worker crash is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={"voicecast.modules.broadcast.tasks.*": {"queue": "broadcasts"}},
)

celery_app.autodiscover_tasks(["voicecast.modules.broadcast"])
