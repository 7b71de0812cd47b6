"""Celery application configuration."""

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from videohost.core.config import settings
from videohost.core.logging import setup_logging
from videohost.core.metrics import set_app_info
from videohost.core.tracing import setup_tracing, shutdown_tracing

celery_app = Celery(
    "videohost_uploader",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.autodiscover_tasks(["videohost.modules.upload"])


@worker_process_init.connect
def init_worker_process(**kwargs) -> None:
    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    setup_tracing(settings)
    set_app_info(settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT)


@worker_process_shutdown.connect
def shutdown_worker_process(**kwargs) -> None:
    shutdown_tracing()
