# careslot/tasks/appointment_tasks.py
import asyncio
import logging

from careslot.core.celery_app import celery_app

from careslot.core.clients import build_collaborators
from careslot.core.constants import AppointmentStatus, PaymentStatus
from careslot.core.database import SessionLocal
from careslot.models.appointment import Appointment
from careslot.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


async def provision_pending_rooms(db, state_machine) -> int:
    """Create rooms for settled, upcoming appointments that still have none."""
    appts = (
        db.query(Appointment)
        .filter(
            Appointment.status == AppointmentStatus.CONFIRMED.value,
            Appointment.payment_status.in_([PaymentStatus.PAID.value, PaymentStatus.WAIVED.value]),
            Appointment.room_reference.is_(None),
            Appointment.scheduled_at >= utcnow(),
        )
        .order_by(Appointment.scheduled_at.asc())
        .all()
    )
    logger.info(f"Found {len(appts)} confirmed appointments without a video room")

    created = 0
    for appt in appts:
        if await state_machine.ensure_room(db, appt):
            created += 1
    return created


@celery_app.task(bind=True, max_retries=3)
def provision_missing_rooms(self):
    """
    Retry video room provisioning that failed after payment confirmation.
    Scheduled every ROOM_RETRY_INTERVAL_SECONDS via Celery Beat.
    """
    db = SessionLocal()
    try:
        state_machine = build_collaborators().state_machine
        return asyncio.run(provision_pending_rooms(db, state_machine))
    except Exception as e:
        logger.error(f"Error in provision_missing_rooms: {e}")
        raise self.retry(exc=e, countdown=60)
    finally:
        db.close()
