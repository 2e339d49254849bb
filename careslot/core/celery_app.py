"""
Celery application shared by the API process and the worker.

Tasks register on this app explicitly, so `.delay()` from a web request goes to
the configured broker whether or not `careslot.worker` was imported.
"""
from celery import Celery

from careslot.core.config import settings

celery_app = Celery(
    "careslot",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
    include=[
        "careslot.tasks.notification_tasks",
        "careslot.tasks.appointment_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    beat_schedule={
        "provision-missing-rooms": {
            "task": "careslot.tasks.appointment_tasks.provision_missing_rooms",
            "schedule": float(settings.ROOM_RETRY_INTERVAL_SECONDS),
        },
    },
)
