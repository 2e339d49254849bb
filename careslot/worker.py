"""
Celery worker entry point

    celery -A careslot.worker.celery_app worker --beat --loglevel=info
"""
import logging

from celery.signals import worker_ready

from careslot.core.celery_app import celery_app
from careslot.core.logger import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

__all__ = ["celery_app"]


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    logger.info(f"Celery worker ready. Registered tasks: {sorted(celery_app.tasks.keys())}")
