"""
Celery application configuration
"""
from celery import Celery
from app.core.config import settings

# Create Celery app
celery_app = Celery(
    "rate_limit_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.retention_worker"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=86400,  # Results expire after 24 hours
)

# Task routes
celery_app.conf.task_routes = {
    "run_retention_sweep": {"queue": "maintenance"},
    "purge_expired_demo_sessions": {"queue": "maintenance"},
}

# Periodic sweeps (celery beat)
celery_app.conf.beat_schedule = {
    "retention-sweep": {
        "task": "run_retention_sweep",
        "schedule": float(settings.RETENTION_SWEEP_INTERVAL_SECONDS),
    },
}
