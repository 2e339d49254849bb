import pytest
from unittest.mock import MagicMock, patch

from careslot.core.constants import NotificationKind
from careslot.models.notification import Notification
from careslot.services.notification_service import Notifier, appointment_payload
from careslot.tasks.notification_tasks import notify_admins_task, send_notification_task


# ============================================================================
# NOTIFIER
# ============================================================================

def test_notify_enqueues_task():
    with patch("careslot.tasks.notification_tasks.send_notification_task.delay") as delay:
        Notifier().notify(
            5,
            NotificationKind.APPOINTMENT_CONFIRMED.value,
            appointment_payload(9, "Appointment Confirmed", "See you soon", channels=["in_app", "sms"]),
        )

    delay.assert_called_once_with(
        user_id=5,
        notification_type="appointment_confirmed",
        title="Appointment Confirmed",
        body="See you soon",
        related_entity_type="appointment",
        related_entity_id=9,
        channels=["in_app", "sms"],
    )


def test_notify_swallows_broker_errors():
    with patch(
        "careslot.tasks.notification_tasks.send_notification_task.delay",
        side_effect=ConnectionError("broker down"),
    ):
        Notifier().notify(5, NotificationKind.SYSTEM.value, {"body": "x"})

    with patch(
        "careslot.tasks.notification_tasks.notify_admins_task.delay",
        side_effect=ConnectionError("broker down"),
    ):
        Notifier().notify_admins(NotificationKind.SYSTEM.value, {"body": "x"})


# ============================================================================
# TASKS
# ============================================================================

def test_send_notification_task_records_channels(people, db_session):
    patient = people["patient"]

    notification_id = send_notification_task(
        user_id=patient.id,
        notification_type=NotificationKind.APPOINTMENT_CONFIRMED.value,
        title="Appointment Confirmed",
        body="Your appointment is confirmed.",
        related_entity_type="appointment",
        related_entity_id=1,
        channels=["in_app", "email", "sms"],
    )

    db_session.expire_all()
    notification = db_session.get(Notification, notification_id)
    assert notification.user_id == patient.id
    assert notification.is_in_app is True
    assert notification.is_email_sent is True
    assert notification.is_sms_sent is True
    assert notification.email_sent_at is not None


def test_send_notification_task_unknown_user(db_session, prepare_database):
    assert send_notification_task(user_id=999999, notification_type="system", title="x", body="y") is None


def test_email_failure_is_recorded_not_raised(people, db_session):
    with patch("careslot.tasks.notification_tasks.send_notification_email", side_effect=OSError("smtp down")):
        notification_id = send_notification_task(
            user_id=people["patient"].id,
            notification_type="system",
            title="Hello",
            body="World",
            channels=["email"],
        )

    db_session.expire_all()
    assert db_session.get(Notification, notification_id).is_email_sent is False


def test_notify_admins_fans_out(people, db_session):
    with patch.object(send_notification_task, "delay", MagicMock()) as delay:
        count = notify_admins_task(
            notification_type="system",
            title="Appointment cancelled",
            body="Refund issued.",
            related_entity_id=3,
        )

    assert count == 1
    assert delay.call_args.kwargs["user_id"] == people["admin"].id
    assert delay.call_args.kwargs["related_entity_type"] == "appointment"


def test_tasks_are_bound_to_the_configured_broker():
    import careslot.main  # noqa: F401
    from careslot.core.celery_app import celery_app
    from careslot.core.config import settings
    from careslot.tasks.appointment_tasks import provision_missing_rooms

    for task in (send_notification_task, notify_admins_task, provision_missing_rooms):
        assert task.app is celery_app
        assert task.app.conf.broker_url == settings.CELERY_BROKER_URL
    assert celery_app.conf.beat_schedule["provision-missing-rooms"]["task"] == provision_missing_rooms.name
