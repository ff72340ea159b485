"""
Background workers for retention sweeps
"""
from app.workers.celery_app import celery_app
from app.workers.retention_worker import run_retention_sweep

__all__ = ["celery_app", "run_retention_sweep"]
