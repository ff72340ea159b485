"""
Celery tasks for retention sweeps
"""
from celery import Task
import asyncio
import logging

from app.workers.celery_app import celery_app
from app.db.session import async_session_maker
from app.services.retention_service import RetentionService

logger = logging.getLogger(__name__)


class RetentionTask(Task):
    """Base task for retention operations"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure"""
        logger.error(f"Retention task {task_id} failed: {exc}")
        super().on_failure(exc, task_id, args, kwargs, einfo)


@celery_app.task(base=RetentionTask, name="run_retention_sweep")
def run_retention_sweep():
    """
    Purge old usage windows, violation events and expired demo sessions

    Scheduled by celery beat every RETENTION_SWEEP_INTERVAL_SECONDS.

    Returns:
        Dict of sweep name to rows deleted
    """
    async def _sweep():
        async with async_session_maker() as db:
            try:
                return await RetentionService.run_all(db)
            except Exception as e:
                logger.error(f"Error in retention sweep: {e}")
                raise

    return asyncio.run(_sweep())


@celery_app.task(base=RetentionTask, name="purge_expired_demo_sessions")
def purge_expired_demo_sessions():
    """
    Delete expired demo sessions only

    Returns:
        Number of demo sessions deleted
    """
    async def _purge():
        async with async_session_maker() as db:
            try:
                return await RetentionService.purge_expired_sessions(db)
            except Exception as e:
                logger.error(f"Error purging demo sessions: {e}")
                raise

    return asyncio.run(_purge())
