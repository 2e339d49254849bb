"""
Payment initialization and reconciliation.

The gateway callback is replayable and unauthenticated, so it is never trusted
on its own: every reconciliation asks the gateway whether the reference was
settled before touching the appointment. Reconciliation never raises; it
reports an error code that the HTTP layer turns into a failure redirect.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode
import json
import logging
import re
import time

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from careslot.core.config import settings
from careslot.core.constants import AppointmentStatus, NotificationKind, PaymentStatus
from careslot.core.security import verify_webhook_signature
from careslot.models.appointment import Appointment
from careslot.services.appointment_state import AppointmentStateMachine
from careslot.services.identity_service import Actor, IdentityService
from careslot.services.notification_service import appointment_payload
from careslot.services.payment_gateway import to_minor_units
from careslot.utils.errors import (
    ActorMismatchError,
    ConflictError,
    GatewayError,
    PersistenceError,
    SchedulingError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Every reference issued by initialize_payment: appt_<appointment id>_<epoch ms>
REFERENCE_PATTERN = re.compile(r"^appt_(\d+)_\d+$")


@dataclass
class ReconciliationResult:
    success: bool
    reference: str
    appointment_id: Optional[int] = None
    error_code: Optional[str] = None
    already_processed: bool = False

    @property
    def redirect_url(self) -> str:
        base = settings.APP_URL.rstrip("/")
        if self.success:
            return f"{base}/payment/success?" + urlencode({"appointment": self.appointment_id, "reference": self.reference})
        return f"{base}/payment/failed?" + urlencode({"error": self.error_code, "reference": self.reference})


class PaymentService:

    def __init__(self, state_machine: AppointmentStateMachine):
        self.state_machine = state_machine
        self.payment_gateway = state_machine.payment_gateway
        self.notifier = state_machine.notifier

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------
    async def initialize_payment(self, db: Session, actor: Actor, appointment_id: int) -> Dict[str, str]:
        """Create a gateway transaction for a booked appointment and return its redirect URL."""
        appt = self.state_machine.load(db, appointment_id)

        if appt.patient_id != actor.id:
            raise ActorMismatchError("Only the patient can pay for this appointment")
        if appt.status != AppointmentStatus.SCHEDULED.value or appt.payment_status != PaymentStatus.PENDING.value:
            raise ConflictError("This appointment is not awaiting payment")
        amount_minor = to_minor_units(appt.amount)
        if amount_minor < 1:
            raise ValidationError("Invalid or missing amount")

        payer = IdentityService.get_user(db, actor.id)
        if not payer or not payer.email:
            raise ValidationError("No email on file. Please complete your profile before paying.")

        reference = f"appt_{appt.id}_{int(time.time() * 1000)}"
        # Gateway failures surface immediately; nothing has been written yet
        payment = await self.payment_gateway.initialize(amount_minor, payer.email, reference)

        appt.payment_reference = reference
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Payment link {reference} created but not linked to appointment {appt.id}: {e}")
            raise PersistenceError(
                "Payment link was created but could not be linked to your appointment. Please contact support."
            ) from e

        logger.info(f"Payment {reference} initialized for appointment {appt.id}")
        return {"authorization_url": payment.redirect_url, "reference": reference}

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------
    async def reconcile(self, db: Session, reference: str) -> ReconciliationResult:
        if not reference:
            return ReconciliationResult(False, reference or "", error_code="missing_reference")

        # 1. Ask the gateway, never the caller
        try:
            verification = await self.payment_gateway.verify(reference)
        except GatewayError as e:
            logger.warning(f"Verification of {reference} failed: {e}")
            return ReconciliationResult(False, reference, error_code="verification_failed")

        if not verification.success:
            logger.info(f"Payment {reference} not successful (gateway status {verification.status})")
            return ReconciliationResult(False, reference, error_code="payment_not_successful")

        # 2. Find the appointment; never create one
        try:
            appt = self._find_appointment(db, reference)
        except SQLAlchemyError as e:
            logger.error(f"Lookup of payment {reference} failed: {e}")
            return ReconciliationResult(False, reference, error_code="lookup_failed")

        if not appt:
            logger.error(f"Appointment not found for reference: {reference}")
            self._alert_admins(
                None,
                "Unmatched payment",
                f"Payment {reference} was verified but matches no appointment. Manual review required.",
            )
            return ReconciliationResult(False, reference, error_code="appointment_not_found")

        # 3. Idempotency: a second callback performs no side effects
        if appt.payment_status == PaymentStatus.PAID.value:
            if appt.payment_reference != reference:
                logger.error(f"Second payment {reference} settled for already paid appointment {appt.id}")
                self._alert_admins(
                    appt.id,
                    "Duplicate payment",
                    f"Payment {reference} settled for an appointment already paid by "
                    f"{appt.payment_reference}. Manual refund required.",
                )
                return ReconciliationResult(False, reference, appointment_id=appt.id, error_code="duplicate_payment")
            logger.info(f"Appointment {appt.id} already confirmed, skipping")
            return ReconciliationResult(True, reference, appointment_id=appt.id, already_processed=True)

        expected = to_minor_units(appt.amount)
        if verification.amount_minor_units != expected:
            logger.error(
                f"Payment amount mismatch for appointment {appt.id}: "
                f"expected {expected}, got {verification.amount_minor_units}"
            )
            return ReconciliationResult(False, reference, appointment_id=appt.id, error_code="amount_mismatch")

        # 4. Confirm (room provisioning is best effort inside)
        try:
            outcome = await self.state_machine.confirm_payment(db, appt.id, reference)
        except SchedulingError as e:
            logger.error(f"Confirming payment {reference} failed: {e.detail}")
            return ReconciliationResult(False, reference, appointment_id=appt.id, error_code=e.code)

        if not outcome.changed:
            if outcome.reason == "cancelled":
                self._alert_admins(
                    appt.id,
                    "Payment for cancelled appointment",
                    f"Payment {reference} settled after the appointment was cancelled. Manual refund required.",
                )
                return ReconciliationResult(False, reference, appointment_id=appt.id, error_code="appointment_cancelled")
            return ReconciliationResult(True, reference, appointment_id=appt.id, already_processed=True)

        # 5. Tell both parties
        self._notify_confirmed(outcome.appointment)
        return ReconciliationResult(True, reference, appointment_id=appt.id)

    @staticmethod
    def _find_appointment(db: Session, reference: str) -> Optional[Appointment]:
        """
        Match by the stored reference first. A patient who opened checkout more
        than once may pay through an older link, so fall back to the appointment
        id that every reference we issue embeds.
        """
        appt = (
            db.query(Appointment)
            .filter(Appointment.payment_reference == reference)
            .populate_existing()
            .first()
        )
        if appt:
            return appt
        match = REFERENCE_PATTERN.match(reference)
        if not match:
            return None
        appt = (
            db.query(Appointment)
            .filter(Appointment.id == int(match.group(1)))
            .populate_existing()
            .first()
        )
        if appt:
            logger.info(f"Payment {reference} matched appointment {appt.id} by an earlier checkout link")
        return appt

    def _alert_admins(self, appointment_id: Optional[int], title: str, body: str) -> None:
        try:
            self.notifier.notify_admins(
                NotificationKind.SYSTEM.value,
                appointment_payload(appointment_id, title, body),
            )
        except Exception as e:
            logger.error(f"Admin alert '{title}' failed: {e}")

    def _notify_confirmed(self, appt: Appointment) -> None:
        when = appt.scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
        try:
            self.notifier.notify(
                appt.patient_id,
                NotificationKind.APPOINTMENT_CONFIRMED.value,
                appointment_payload(
                    appt.id,
                    "Appointment Confirmed",
                    f"Your payment was received and your appointment on {when} is confirmed.",
                    channels=["in_app", "email", "sms"],
                ),
            )
            self.notifier.notify(
                appt.provider_id,
                NotificationKind.APPOINTMENT_BOOKED.value,
                appointment_payload(
                    appt.id,
                    "New Appointment Booked",
                    f"A patient booked a consultation on {when}.",
                    channels=["in_app", "email"],
                ),
            )
        except Exception as e:
            logger.error(f"Error creating notifications for appointment {appt.id}: {e}")

    # -------------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------------
    async def handle_webhook(self, db: Session, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Signed gateway webhook. Raises ValidationError for a bad signature or body;
        everything after that is acknowledged so the gateway stops retrying.
        """
        if not verify_webhook_signature(raw_body, signature):
            logger.error("Invalid Paystack webhook signature")
            raise ValidationError("Invalid signature")

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise ValidationError("Invalid JSON") from e

        event = payload.get("event")
        reference = (payload.get("data") or {}).get("reference")
        logger.info(f"Paystack webhook received: {event}")

        if event != "charge.success":
            return {"received": True, "message": "Event acknowledged"}
        if not reference:
            raise ValidationError("Missing reference")

        result = await self.reconcile(db, reference)
        if not result.success:
            return {"received": True, "error": result.error_code}
        if result.already_processed:
            return {"received": True, "message": "Already processed"}
        return {"received": True, "message": "Webhook processed successfully"}
