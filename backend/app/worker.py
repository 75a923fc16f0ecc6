"""
MoGallery Celery Worker
Background task processing for bulk photo operations and storage scans.
"""

from celery.signals import setup_logging
from celery import Celery
from app.config import settings
from app.logging_config import setup_logging as configure_logging

@setup_logging.connect
def on_setup_logging(**kwargs):
    configure_logging(log_dir=settings.log_dir, log_level=settings.log_level)

# Create Celery app
celery_app = Celery(
    "MoGallery",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.tasks.bulk",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3000,
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Result settings
    result_expires=86400,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,

    broker_connection_retry_on_startup=True,
)

celery_app.conf.task_routes = {
    "app.tasks.bulk.*": {"queue": "bulk"},
}


if __name__ == "__main__":
    celery_app.start()
