"""Fire-and-forget notification dispatch.

Notifications are queued as Celery tasks. Enqueue failures are logged and
swallowed: a notification must never undo the operation that triggered it.
"""
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class Notifier:

    def notify(self, user_id: int, kind: str, payload: Dict[str, Any]) -> None:
        from careslot.tasks.notification_tasks import send_notification_task

        try:
            send_notification_task.delay(
                user_id=user_id,
                notification_type=kind,
                title=payload.get("title", kind.replace("_", " ").title()),
                body=payload.get("body", ""),
                related_entity_type="appointment" if payload.get("appointment_id") else None,
                related_entity_id=payload.get("appointment_id"),
                channels=payload.get("channels"),
            )
        except Exception as e:
            logger.error(f"Failed to enqueue {kind} notification for user {user_id}: {e}")

    def notify_admins(self, kind: str, payload: Dict[str, Any]) -> None:
        from careslot.tasks.notification_tasks import notify_admins_task

        try:
            notify_admins_task.delay(
                notification_type=kind,
                title=payload.get("title", kind.replace("_", " ").title()),
                body=payload.get("body", ""),
                related_entity_id=payload.get("appointment_id"),
            )
        except Exception as e:
            logger.error(f"Failed to enqueue {kind} admin notification: {e}")


def appointment_payload(appointment_id: int, title: str, body: str, channels: Optional[list] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"appointment_id": appointment_id, "title": title, "body": body}
    if channels:
        payload["channels"] = channels
    return payload
