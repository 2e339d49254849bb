# careslot/tasks/notification_tasks.py
from careslot.core.celery_app import celery_app
from typing import Optional, List

from careslot.core.database import SessionLocal
from careslot.models.notification import Notification
from careslot.models.user import User
from careslot.services.email_service import send_notification_email
from careslot.services.identity_service import IdentityService
from careslot.services.sms_service import send_sms_message
from careslot.utils.timeutils import utcnow
import logging

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = ["in_app", "email"]


@celery_app.task(bind=True, max_retries=3)
def send_notification_task(
    self,
    user_id: int,
    notification_type: str,
    title: str,
    body: str,
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[int] = None,
    channels: Optional[List[str]] = None,  # ["in_app", "email", "sms"]
):
    """
    Central task to deliver a notification.
    - Creates the in-app Notification record.
    - Dispatches to the email / SMS channels requested.
    - Records which channels were delivered.
    """
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            logger.error(f"User {user_id} not found for notification.")
            return

        channels = channels or DEFAULT_CHANNELS

        notification = Notification(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            body=body,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            is_in_app=True,
            is_read=False,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)

        # Channel failures are recorded on the notification, never retried
        if "email" in channels and user.email:
            try:
                send_notification_email(user.email, user.full_name, title, body)
                notification.is_email_sent = True
                notification.email_sent_at = utcnow()
            except Exception as e:
                logger.error(f"Failed to send email to {user.email}: {e}")

        if "sms" in channels and user.phone:
            if send_sms_message(to_number=user.phone, body=f"{title}: {body}"):
                notification.is_sms_sent = True
                notification.sms_sent_at = utcnow()

        db.commit()
        return notification.id

    except Exception as e:
        logger.error(f"Error in send_notification_task: {e}")
        raise self.retry(exc=e, countdown=60)
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def notify_admins_task(
    self,
    notification_type: str,
    title: str,
    body: str,
    related_entity_id: Optional[int] = None,
):
    """Fan an operational message out to every administrator."""
    db = SessionLocal()
    try:
        admin_ids = IdentityService.admin_ids(db)
    except Exception as e:
        logger.error(f"Error loading administrators: {e}")
        raise self.retry(exc=e, countdown=60)
    finally:
        db.close()

    if not admin_ids:
        logger.warning(f"No administrators to notify about: {title}")
        return 0

    for admin_id in admin_ids:
        send_notification_task.delay(
            user_id=admin_id,
            notification_type=notification_type,
            title=title,
            body=body,
            related_entity_type="appointment" if related_entity_id else None,
            related_entity_id=related_entity_id,
            channels=["in_app", "email"],
        )
    return len(admin_ids)
