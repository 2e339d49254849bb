"""
Appointment lifecycle.

Two orthogonal axes live on an appointment:

    status:          scheduled -> confirmed -> in_progress -> completed
                     (cancelled from scheduled, confirmed or in_progress; terminal)
    payment_status:  pending -> paid -> refunding -> refunded, plus an admin-only
                     `waived` that counts as paid for access to the consultation

`paid` is only ever set by `confirm_payment`, which the reconciliation flow calls
after verifying the reference with the gateway itself.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from careslot.cache.cache_service import redis_cache
from careslot.core.config import settings
from careslot.core.constants import AppointmentStatus, NotificationKind, PaymentStatus
from careslot.models.appointment import Appointment
from careslot.services.identity_service import Actor
from careslot.services.notification_service import Notifier, appointment_payload
from careslot.services.payment_gateway import PaymentGateway, to_minor_units
from careslot.services.video_service import RoomProvisioner
from careslot.utils.errors import (
    ActorMismatchError,
    ConflictError,
    GatewayError,
    NotFoundError,
    PaymentRequiredError,
    PersistenceError,
    RefundFailedError,
)
from careslot.utils.timeutils import as_utc, provider_zone, to_local, utcnow

logger = logging.getLogger(__name__)

S = AppointmentStatus

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    S.SCHEDULED.value: frozenset({S.CONFIRMED.value, S.CANCELLED.value}),
    S.CONFIRMED.value: frozenset({S.IN_PROGRESS.value, S.CANCELLED.value}),
    S.IN_PROGRESS.value: frozenset({S.COMPLETED.value, S.CANCELLED.value}),
    S.COMPLETED.value: frozenset(),
    S.CANCELLED.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


CANCELLABLE_STATUSES = tuple(s for s, targets in TRANSITIONS.items() if S.CANCELLED.value in targets)


@dataclass
class ConfirmationOutcome:
    appointment: Appointment
    changed: bool
    reason: Optional[str] = None


@dataclass
class CancellationResult:
    appointment: Appointment
    refunded: bool


class AppointmentStateMachine:
    """Owns every status / payment_status write after the booking is created."""

    def __init__(
        self,
        payment_gateway: PaymentGateway,
        room_provisioner: RoomProvisioner,
        notifier: Notifier,
    ):
        self.payment_gateway = payment_gateway
        self.room_provisioner = room_provisioner
        self.notifier = notifier

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    @staticmethod
    def load(db: Session, appointment_id: int, for_update: bool = False) -> Appointment:
        """Authoritative read; overwrites anything cached in the session."""
        q = db.query(Appointment).filter(Appointment.id == appointment_id).populate_existing()
        if for_update:
            q = q.with_for_update()
        try:
            appt = q.first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load appointment") from e
        if not appt:
            raise NotFoundError("Appointment not found")
        return appt

    @staticmethod
    def _transition(appt: Appointment, target: str) -> None:
        if not can_transition(appt.status, target):
            raise ConflictError(f"Cannot move appointment from {appt.status} to {target}")
        appt.status = target

    @staticmethod
    def _commit(db: Session, message: str) -> None:
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(message) from e

    async def ensure_room(self, db: Session, appt: Appointment) -> bool:
        """Provision the video room once. Failures are logged, never raised."""
        if appt.room_reference:
            return True

        expires_at = as_utc(appt.scheduled_at) + timedelta(minutes=appt.duration_minutes + 60)
        try:
            room = await self.room_provisioner.create_room(appt.id, appt.duration_minutes, expires_at=expires_at)
        except Exception as e:
            logger.error(f"Error creating video room for appointment {appt.id}: {e}")
            return False

        appt.room_reference = room.room_id
        appt.room_url = room.join_url
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Video room {room.room_id} created but not saved for appointment {appt.id}: {e}")
            return False

        logger.info(f"Video room created for appointment {appt.id}")
        return True

    # -------------------------------------------------------------------------
    # Payment confirmation
    # -------------------------------------------------------------------------
    async def confirm_payment(
        self,
        db: Session,
        appointment_id: int,
        gateway_reference: str,
    ) -> ConfirmationOutcome:
        """
        Mark a verified payment. Only the reconciliation flow calls this.

        Idempotent: an already paid appointment is returned unchanged. A cancelled
        appointment is left alone even if a late payment arrives for it.
        """
        appt = self.load(db, appointment_id, for_update=True)

        if appt.is_cancelled:
            logger.warning(f"Payment {gateway_reference} arrived for cancelled appointment {appt.id}")
            return ConfirmationOutcome(appt, changed=False, reason="cancelled")
        if appt.payment_status == PaymentStatus.PAID.value:
            return ConfirmationOutcome(appt, changed=False, reason="already_paid")
        if appt.payment_status != PaymentStatus.PENDING.value:
            return ConfirmationOutcome(appt, changed=False, reason=appt.payment_status)

        appt.payment_status = PaymentStatus.PAID.value
        if appt.status == S.SCHEDULED.value:
            self._transition(appt, S.CONFIRMED.value)
            appt.confirmed_at = utcnow()
        # Record the reference that actually settled; it may be an older checkout link
        appt.payment_reference = gateway_reference
        self._commit(db, "Failed to confirm payment")
        logger.info(f"Appointment {appt.id} confirmed by payment {gateway_reference}")

        # Second step of a dual write: a failure here keeps the payment confirmed
        await self.ensure_room(db, appt)
        return ConfirmationOutcome(appt, changed=True)

    async def waive_payment(self, db: Session, appointment_id: int, actor: Actor) -> Appointment:
        if not actor.is_admin:
            raise ActorMismatchError("Only administrators can waive payment")

        appt = self.load(db, appointment_id, for_update=True)
        if appt.is_cancelled:
            raise ConflictError("Appointment is already cancelled")
        if appt.payment_status != PaymentStatus.PENDING.value:
            raise ConflictError(f"Payment is already {appt.payment_status}")

        appt.payment_status = PaymentStatus.WAIVED.value
        if appt.status == S.SCHEDULED.value:
            self._transition(appt, S.CONFIRMED.value)
            appt.confirmed_at = utcnow()
        self._commit(db, "Failed to waive payment")
        logger.info(f"Payment waived for appointment {appt.id} by admin {actor.id}")

        await self.ensure_room(db, appt)
        return appt

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------
    async def cancel(
        self,
        db: Session,
        appointment_id: int,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Patient-initiated cancellation with refund eligibility.

        A paid appointment cancelled at least REFUND_WINDOW_HOURS before its start
        is refunded in full. The refund is claimed first by moving payment_status
        to `refunding` with a conditional UPDATE, so only one caller ever reaches
        the gateway. If the refund fails the claim is released and nothing else
        is written.
        """
        appt = self.load(db, appointment_id, for_update=True)

        if appt.patient_id != actor.id:
            raise ActorMismatchError("Only the patient can cancel this appointment")
        if appt.is_cancelled:
            raise ConflictError("Appointment is already cancelled")
        if appt.payment_status == PaymentStatus.REFUNDING.value:
            raise ConflictError("Appointment is already being cancelled")
        if not can_transition(appt.status, S.CANCELLED.value):
            raise ConflictError(f"A {appt.status} appointment cannot be cancelled")

        now = now or utcnow()
        hours_until_start = (as_utc(appt.scheduled_at) - now).total_seconds() / 3600
        should_refund = (
            hours_until_start >= settings.REFUND_WINDOW_HOURS
            and appt.payment_status == PaymentStatus.PAID.value
            and bool(appt.payment_reference)
        )
        expected_payment_status = appt.payment_status

        if should_refund:
            self._claim_payment_status(
                db, appt.id, PaymentStatus.PAID.value, PaymentStatus.REFUNDING.value,
            )
            expected_payment_status = PaymentStatus.REFUNDING.value

            amount_minor = to_minor_units(appt.amount)
            try:
                result = await self.payment_gateway.refund(appt.payment_reference, amount_minor)
            except GatewayError as e:
                logger.error(f"Refund failed for appointment {appt.id}: {e}")
                self._release_refund_claim(db, appt.id)
                raise RefundFailedError() from e
            if not result.success:
                logger.error(f"Refund rejected for appointment {appt.id}")
                self._release_refund_claim(db, appt.id)
                raise RefundFailedError()
            logger.info(f"Refunded {amount_minor} minor units for appointment {appt.id}")

        # Conditional write; a concurrent cancel or payment change makes it miss
        values = {
            Appointment.status: S.CANCELLED.value,
            Appointment.cancelled_at: now,
            Appointment.cancelled_by: actor.id,
        }
        if should_refund:
            values[Appointment.payment_status] = PaymentStatus.REFUNDED.value
        try:
            updated = (
                db.query(Appointment)
                .filter(
                    Appointment.id == appointment_id,
                    Appointment.status.in_(CANCELLABLE_STATUSES),
                    Appointment.payment_status == expected_payment_status,
                )
                .update(values, synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            if should_refund:
                logger.critical(f"Appointment {appointment_id} refunded but cancellation not saved: {e}")
            raise PersistenceError("Failed to cancel appointment") from e

        if not updated:
            if should_refund:
                logger.critical(f"Appointment {appointment_id} refunded but changed concurrently before cancellation")
            raise ConflictError("Appointment is already cancelled")

        appt = self.load(db, appointment_id)
        logger.info(f"Appointment {appt.id} cancelled by patient {actor.id} (refund={should_refund})")

        zone = provider_zone(appt.provider.timezone if appt.provider else None)
        await redis_cache.invalidate_slots(appt.provider_id, to_local(appt.scheduled_at, zone).date())
        self._notify_cancelled(appt, should_refund)
        return CancellationResult(appointment=appt, refunded=should_refund)

    @staticmethod
    def _claim_payment_status(db: Session, appointment_id: int, current: str, target: str) -> None:
        """Move payment_status from `current` to `target` only if nobody else has."""
        try:
            claimed = (
                db.query(Appointment)
                .filter(
                    Appointment.id == appointment_id,
                    Appointment.status != S.CANCELLED.value,
                    Appointment.payment_status == current,
                )
                .update({Appointment.payment_status: target}, synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("Failed to cancel appointment") from e
        if not claimed:
            raise ConflictError("Appointment is already being cancelled")

    @staticmethod
    def _release_refund_claim(db: Session, appointment_id: int) -> None:
        try:
            db.query(Appointment).filter(
                Appointment.id == appointment_id,
                Appointment.payment_status == PaymentStatus.REFUNDING.value,
            ).update({Appointment.payment_status: PaymentStatus.PAID.value}, synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.critical(f"Appointment {appointment_id} left in refunding state: {e}")

    def _notify_cancelled(self, appt: Appointment, refunded: bool) -> None:
        kind = NotificationKind.APPOINTMENT_CANCELLED.value
        try:
            self.notifier.notify(
                appt.provider_id,
                kind,
                appointment_payload(appt.id, "Appointment Cancelled", "A patient has cancelled their appointment"),
            )
            self.notifier.notify(
                appt.patient_id,
                kind,
                appointment_payload(
                    appt.id,
                    "Appointment Cancelled",
                    "Your appointment has been cancelled."
                    + (" A full refund has been issued." if refunded else ""),
                ),
            )
            admin_body = (
                "A patient cancelled an appointment. Refund issued."
                if refunded
                else f"A patient cancelled an appointment. No refund (within {settings.REFUND_WINDOW_HOURS}h of start or unpaid)."
            )
            self.notifier.notify_admins(
                NotificationKind.SYSTEM.value,
                appointment_payload(appt.id, "Appointment cancelled", admin_body),
            )
        except Exception as e:
            logger.error(f"Cancellation notifications failed for appointment {appt.id}: {e}")

    # -------------------------------------------------------------------------
    # Video session hooks
    # -------------------------------------------------------------------------
    @staticmethod
    def _check_participant(appt: Appointment, actor: Actor) -> None:
        if actor.id not in (appt.patient_id, appt.provider_id) and not actor.is_admin:
            raise ActorMismatchError("You are not a participant in this appointment")

    async def join_session(self, db: Session, appointment_id: int, actor: Actor) -> Dict[str, str]:
        """Room URL and meeting token; creates the room lazily if provisioning failed earlier."""
        appt = self.load(db, appointment_id)
        self._check_participant(appt, actor)
        if appt.status in (S.CANCELLED.value, S.COMPLETED.value):
            raise ConflictError(f"Appointment is {appt.status}")
        if not appt.is_settled:
            raise PaymentRequiredError()

        if not await self.ensure_room(db, appt):
            raise GatewayError("Video room is not available yet. Please try again shortly.")

        token = await self.room_provisioner.create_meeting_token(
            appt.room_reference,
            actor.id,
            is_owner=actor.id == appt.provider_id,
        )
        return {"room_url": appt.room_url, "token": token}

    async def start_session(self, db: Session, appointment_id: int, actor: Actor) -> Appointment:
        appt = self.load(db, appointment_id, for_update=True)
        self._check_participant(appt, actor)
        if appt.status == S.IN_PROGRESS.value:
            return appt
        if not appt.is_settled:
            raise PaymentRequiredError()

        self._transition(appt, S.IN_PROGRESS.value)
        appt.started_at = utcnow()
        self._commit(db, "Failed to start session")
        logger.info(f"Appointment {appt.id} in progress")
        return appt

    async def complete_session(self, db: Session, appointment_id: int, actor: Actor) -> Appointment:
        appt = self.load(db, appointment_id, for_update=True)
        if actor.id != appt.provider_id and not actor.is_admin:
            raise ActorMismatchError("Only the provider can complete this appointment")
        if appt.status == S.COMPLETED.value:
            return appt

        self._transition(appt, S.COMPLETED.value)
        appt.completed_at = utcnow()
        self._commit(db, "Failed to complete session")
        logger.info(f"Appointment {appt.id} completed")
        return appt
