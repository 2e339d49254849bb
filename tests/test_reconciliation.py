import hashlib
import hmac
import json
import pytest
from datetime import datetime, timezone

from careslot.core.config import settings
from careslot.core.constants import AppointmentStatus, NotificationKind, PaymentStatus
from careslot.utils.errors import ActorMismatchError, ConflictError, GatewayError, ValidationError

from conftest import actor_for, make_appointment

START = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)
REF = "appt_1_1700000000000"


@pytest.fixture
def pending(people, db_session):
    return make_appointment(
        db_session, people["patient"], people["provider"], START, payment_reference=REF,
    )


def reload(db, appt):
    db.expire_all()
    return db.get(type(appt), appt.id)


def sign(body: bytes) -> str:
    return hmac.new(settings.PAYSTACK_SECRET_KEY.encode(), body, hashlib.sha512).hexdigest()


# ============================================================================
# RECONCILE
# ============================================================================

@pytest.mark.asyncio
async def test_verified_payment_confirms_and_provisions_room(db_session, pending, payments, rooms, notifier):
    result = await payments.reconcile(db_session, REF)

    assert result.success is True
    assert result.already_processed is False
    assert "/payment/success" in result.redirect_url
    appt = reload(db_session, pending)
    assert appt.status == AppointmentStatus.CONFIRMED.value
    assert appt.payment_status == PaymentStatus.PAID.value
    assert appt.confirmed_at is not None
    assert appt.room_reference == f"appointment-{pending.id}"
    assert rooms.rooms == [pending.id]
    kinds = sorted(kind for _, kind, _ in notifier.sent)
    assert kinds == [NotificationKind.APPOINTMENT_BOOKED.value, NotificationKind.APPOINTMENT_CONFIRMED.value]


@pytest.mark.asyncio
async def test_failed_verification_changes_nothing(db_session, pending, payments, gateway, rooms, notifier):
    gateway.verify_success = False

    result = await payments.reconcile(db_session, REF)

    assert result.success is False
    assert result.error_code == "payment_not_successful"
    assert "/payment/failed" in result.redirect_url
    appt = reload(db_session, pending)
    assert appt.status == AppointmentStatus.SCHEDULED.value
    assert appt.payment_status == PaymentStatus.PENDING.value
    assert rooms.rooms == []
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_gateway_unreachable_is_a_failure_code(db_session, pending, payments, gateway):
    gateway.verify_error = True

    result = await payments.reconcile(db_session, REF)

    assert result.success is False
    assert result.error_code == "verification_failed"
    assert reload(db_session, pending).payment_status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_second_reconcile_has_no_side_effects(db_session, pending, payments, rooms, notifier):
    await payments.reconcile(db_session, REF)
    sent_before = list(notifier.sent)
    confirmed_at = reload(db_session, pending).confirmed_at

    result = await payments.reconcile(db_session, REF)

    assert result.success is True
    assert result.already_processed is True
    assert rooms.rooms == [pending.id]
    assert notifier.sent == sent_before
    assert reload(db_session, pending).confirmed_at == confirmed_at


@pytest.mark.asyncio
async def test_unknown_reference_is_a_noop(db_session, pending, payments):
    result = await payments.reconcile(db_session, "appt_999_123")

    assert result.success is False
    assert result.error_code == "appointment_not_found"
    assert reload(db_session, pending).payment_status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_amount_mismatch_is_not_confirmed(db_session, pending, payments, gateway):
    gateway.verify_amount = 100

    result = await payments.reconcile(db_session, REF)

    assert result.success is False
    assert result.error_code == "amount_mismatch"
    assert reload(db_session, pending).status == AppointmentStatus.SCHEDULED.value


@pytest.mark.asyncio
async def test_late_payment_for_cancelled_appointment(db_session, pending, payments, rooms, notifier):
    pending.status = AppointmentStatus.CANCELLED.value
    db_session.commit()

    result = await payments.reconcile(db_session, REF)

    assert result.success is False
    assert result.error_code == "appointment_cancelled"
    appt = reload(db_session, pending)
    assert appt.status == AppointmentStatus.CANCELLED.value
    assert appt.payment_status == PaymentStatus.PENDING.value
    assert rooms.rooms == []
    assert len(notifier.admin_sent) == 1


@pytest.mark.asyncio
async def test_room_failure_keeps_payment_confirmed(db_session, pending, payments, rooms, state_machine):
    rooms.fail = True

    result = await payments.reconcile(db_session, REF)

    assert result.success is True
    appt = reload(db_session, pending)
    assert appt.payment_status == PaymentStatus.PAID.value
    assert appt.room_reference is None

    # A later retry provisions it exactly once
    rooms.fail = False
    assert await state_machine.ensure_room(db_session, appt) is True
    assert await state_machine.ensure_room(db_session, appt) is True
    assert rooms.rooms == [pending.id]


@pytest.mark.asyncio
async def test_missing_reference(db_session, payments, gateway):
    result = await payments.reconcile(db_session, "")

    assert result.error_code == "missing_reference"
    assert gateway.calls == []


# ============================================================================
# INITIALIZE
# ============================================================================

@pytest.mark.asyncio
async def test_initialize_payment_persists_reference(people, db_session, payments, gateway):
    appt = make_appointment(db_session, people["patient"], people["provider"], START)

    result = await payments.initialize_payment(db_session, actor_for(people["patient"]), appt.id)

    assert result["reference"].startswith(f"appt_{appt.id}_")
    assert result["authorization_url"].endswith(result["reference"])
    assert gateway.calls[0][2] == 1500000
    assert reload(db_session, appt).payment_reference == result["reference"]


@pytest.mark.asyncio
async def test_initialize_payment_guards(people, db_session, payments, gateway):
    appt = make_appointment(db_session, people["patient"], people["provider"], START)
    free = make_appointment(
        db_session, people["patient"], people["provider"],
        datetime(2030, 1, 7, 14, 0, tzinfo=timezone.utc), amount=0,
    )
    paid = make_appointment(
        db_session, people["patient"], people["provider"],
        datetime(2030, 1, 7, 12, 0, tzinfo=timezone.utc),
        status=AppointmentStatus.CONFIRMED.value,
        payment_status=PaymentStatus.PAID.value,
    )

    with pytest.raises(ActorMismatchError):
        await payments.initialize_payment(db_session, actor_for(people["other_patient"]), appt.id)
    with pytest.raises(ConflictError):
        await payments.initialize_payment(db_session, actor_for(people["patient"]), paid.id)
    with pytest.raises(ValidationError):
        await payments.initialize_payment(db_session, actor_for(people["patient"]), free.id)

    gateway.initialize_error = True
    with pytest.raises(GatewayError):
        await payments.initialize_payment(db_session, actor_for(people["patient"]), appt.id)
    assert reload(db_session, appt).payment_reference is None


# ============================================================================
# WEBHOOK
# ============================================================================

@pytest.mark.asyncio
async def test_signed_webhook_confirms(db_session, pending, payments, gateway):
    body = json.dumps({"event": "charge.success", "data": {"reference": REF}}).encode()

    response = await payments.handle_webhook(db_session, body, sign(body))

    assert response["received"] is True
    # Still verified server-to-server
    assert gateway.count("verify") == 1
    assert reload(db_session, pending).payment_status == PaymentStatus.PAID.value


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_rejected(db_session, pending, payments, gateway):
    body = json.dumps({"event": "charge.success", "data": {"reference": REF}}).encode()

    with pytest.raises(ValidationError):
        await payments.handle_webhook(db_session, body, "0" * 128)
    with pytest.raises(ValidationError):
        await payments.handle_webhook(db_session, body, None)

    assert gateway.calls == []
    assert reload(db_session, pending).payment_status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_other_webhook_events_are_acknowledged(db_session, payments, gateway):
    body = json.dumps({"event": "transfer.success", "data": {}}).encode()

    response = await payments.handle_webhook(db_session, body, sign(body))

    assert response == {"received": True, "message": "Event acknowledged"}
    assert gateway.calls == []


# ============================================================================
# MULTIPLE CHECKOUT LINKS
# ============================================================================

@pytest.mark.asyncio
async def test_payment_through_an_earlier_checkout_link(people, db_session, payments, rooms):
    appt = make_appointment(db_session, people["patient"], people["provider"], START)
    first = f"appt_{appt.id}_1000"
    appt.payment_reference = f"appt_{appt.id}_2000"
    db_session.commit()

    result = await payments.reconcile(db_session, first)

    assert result.success is True
    assert result.appointment_id == appt.id
    appt = reload(db_session, appt)
    assert appt.payment_status == PaymentStatus.PAID.value
    assert appt.payment_reference == first
    assert rooms.rooms == [appt.id]


@pytest.mark.asyncio
async def test_unmatched_verified_payment_alerts_admins(db_session, pending, payments, notifier):
    result = await payments.reconcile(db_session, "manual_ref_42")

    assert result.error_code == "appointment_not_found"
    assert len(notifier.admin_sent) == 1
    assert "manual_ref_42" in notifier.admin_sent[0][1]["body"]


@pytest.mark.asyncio
async def test_second_payment_for_paid_appointment_alerts_admins(db_session, pending, payments, notifier):
    await payments.reconcile(db_session, REF)

    result = await payments.reconcile(db_session, f"appt_{pending.id}_1800000000000")

    assert result.success is False
    assert result.error_code == "duplicate_payment"
    assert len(notifier.admin_sent) == 1
    assert reload(db_session, pending).payment_reference == REF
