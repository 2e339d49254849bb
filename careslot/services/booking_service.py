from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from careslot.cache.cache_service import redis_cache
from careslot.core.config import settings
from careslot.core.constants import AppointmentStatus, PaymentStatus, UserRole
from careslot.models.appointment import Appointment
from careslot.models.user import User
from careslot.services.availability_service import AvailabilityService, BOOKING_LOOKAROUND
from careslot.services.consultation_settings import ConsultationSettingsService
from careslot.services.identity_service import Actor, IdentityService
from careslot.services.slot_calculator import Booking, find_conflict, fits_availability
from careslot.utils.errors import (
    ActorMismatchError,
    AvailabilityError,
    ConflictError,
    PersistenceError,
    ValidationError,
)
from careslot.utils.timeutils import as_utc, provider_zone, to_local, utcnow

logger = logging.getLogger(__name__)


class BookingService:
    """
    Booking authority:
    - Validates the request and the acting identity
    - Checks the provider's weekly availability
    - Re-checks conflicts against a fresh read under a per-provider lock
    - Commits in scheduled/pending; the unique index on (provider, instant)
      settles races the pre-check cannot see
    """

    @staticmethod
    def _validate_request(
        patient_id: Optional[int],
        provider_id: Optional[int],
        requested_start: Optional[datetime],
        duration_minutes: Optional[int],
        now: datetime,
    ) -> datetime:
        if not patient_id or not provider_id or requested_start is None or not duration_minutes:
            raise ValidationError("Missing required fields")
        if requested_start.tzinfo is None:
            raise ValidationError("scheduled_at must include a timezone offset")
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive")
        start = as_utc(requested_start)
        if start <= now:
            raise ValidationError("Cannot book a time in the past")
        return start

    @staticmethod
    def _lock_provider_calendar(db: Session, provider_id: int) -> None:
        """
        Serialise bookings for one provider until the transaction ends.

        Row locks on existing appointments cannot stop two writers inserting
        overlapping, non-identical starts, so the provider row is locked instead.
        SQLite has no row locks; it takes the database write lock up front.
        """
        if db.get_bind().dialect.name == "sqlite":
            raw = db.connection().connection.dbapi_connection
            if not raw.in_transaction:
                db.execute(text("BEGIN IMMEDIATE"))
            return
        db.query(User.id).filter(User.id == provider_id).with_for_update().first()

    @staticmethod
    async def _commit_booking(
        db: Session,
        patient_id: int,
        provider_id: int,
        start: datetime,
        duration_minutes: int,
        details: Dict[str, Any],
        status: str = AppointmentStatus.SCHEDULED.value,
        payment_status: str = PaymentStatus.PENDING.value,
    ) -> Appointment:
        patient = IdentityService.get_user(db, patient_id)
        if not patient or patient.user_type != UserRole.PATIENT.value:
            raise ValidationError("Patient not found")
        provider = IdentityService.get_provider(db, provider_id)
        zone = provider_zone(provider.timezone)
        local_start = to_local(start, zone)

        try:
            rules = AvailabilityService.list_rules(db, provider_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to check availability") from e

        if rules:
            if not fits_availability(rules, local_start, duration_minutes):
                raise AvailabilityError("Selected time is not available. Please choose another time.")
        elif not settings.ALLOW_UNRESTRICTED_AVAILABILITY:
            raise AvailabilityError("This provider has no availability configured")

        try:
            BookingService._lock_provider_calendar(db, provider_id)
            # Fresh, locked read of the surrounding window; never the client's snapshot
            existing = AvailabilityService.bookings_between(
                db,
                provider_id,
                start - BOOKING_LOOKAROUND,
                start + BOOKING_LOOKAROUND,
                for_update=True,
            )
            conflict = find_conflict(
                start,
                duration_minutes,
                settings.BOOKING_BUFFER_MINUTES,
                [Booking(as_utc(a.scheduled_at), a.duration_minutes) for a in existing],
            )
            if conflict:
                db.rollback()
                raise ConflictError("This time slot is already booked. Please choose another time.")

            appointment = Appointment(
                patient_id=patient_id,
                provider_id=provider_id,
                scheduled_at=start,
                duration_minutes=duration_minutes,
                status=status,
                payment_status=payment_status,
                amount=Decimal(str(details.get("amount") or 0)),
                currency=details.get("currency") or settings.DEFAULT_CURRENCY,
                chief_complaint=details.get("chief_complaint"),
                symptoms_description=details.get("symptoms_description"),
                confirmed_at=utcnow() if status == AppointmentStatus.CONFIRMED.value else None,
            )
            db.add(appointment)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.info(f"Concurrent booking for provider {provider_id} at {start.isoformat()} lost the race")
            raise ConflictError(
                "This time slot was just booked by another user. Please choose another time."
            ) from e
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("Failed to create appointment") from e

        db.refresh(appointment)
        await redis_cache.invalidate_slots(provider_id, local_start.date())
        logger.info(f"Appointment {appointment.id} booked with provider {provider_id} at {start.isoformat()}")
        return appointment

    @staticmethod
    async def create_booking(
        db: Session,
        actor: Actor,
        patient_id: int,
        provider_id: int,
        requested_start: datetime,
        duration_minutes: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """
        Book a consultation for the acting patient.

        The fee, currency and consultation length come from the admin-managed
        consultation terms; any amount or currency in `details` is ignored.
        Raises ValidationError (ActorMismatchError when the actor is not the
        patient), AvailabilityError or ConflictError. Payment initiation and
        notifications are left to the caller.
        """
        terms = ConsultationSettingsService.get_terms(db)
        duration_minutes = duration_minutes or terms.duration_minutes
        start = BookingService._validate_request(
            patient_id, provider_id, requested_start, duration_minutes, now or utcnow()
        )
        if actor.id != patient_id:
            raise ActorMismatchError("Cannot create appointment for another user")
        if duration_minutes != terms.duration_minutes:
            raise ValidationError(f"Consultations are {terms.duration_minutes} minutes long")

        details = dict(details or {})
        if not details.get("chief_complaint"):
            raise ValidationError("Missing required fields: chief_complaint")
        details["amount"] = terms.price
        details["currency"] = terms.currency

        return await BookingService._commit_booking(
            db, patient_id, provider_id, start, duration_minutes, details
        )

    @staticmethod
    async def create_admin_booking(
        db: Session,
        actor: Actor,
        patient_id: int,
        provider_id: int,
        requested_start: datetime,
        duration_minutes: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        waive_payment: bool = True,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Administrator books on a patient's behalf, optionally waiving payment."""
        if not actor.is_admin:
            raise ActorMismatchError("Forbidden: admin only")

        terms = ConsultationSettingsService.get_terms(db)
        duration_minutes = duration_minutes or terms.duration_minutes
        start = BookingService._validate_request(
            patient_id, provider_id, requested_start, duration_minutes, now or utcnow()
        )
        details = dict(details or {})
        details["chief_complaint"] = details.get("chief_complaint") or "Admin booking"
        details["currency"] = terms.currency
        if details.get("amount") is None:
            details["amount"] = terms.price

        # A waived booking is settled on creation, so it starts out confirmed
        status = AppointmentStatus.SCHEDULED.value
        payment_status = PaymentStatus.PENDING.value
        if waive_payment:
            status = AppointmentStatus.CONFIRMED.value
            payment_status = PaymentStatus.WAIVED.value
            details["amount"] = 0
        return await BookingService._commit_booking(
            db,
            patient_id,
            provider_id,
            start,
            duration_minutes,
            details,
            status=status,
            payment_status=payment_status,
        )

    # -------------------------------------------------------------------------
    # Listing helpers
    # -------------------------------------------------------------------------
    @staticmethod
    def list_patient_appointments(db: Session, patient_id: int, skip: int = 0, limit: int = 20):
        return (
            db.query(Appointment)
            .filter(Appointment.patient_id == patient_id)
            .order_by(Appointment.scheduled_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_provider_appointments(
        db: Session,
        provider_id: int,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ):
        q = db.query(Appointment).filter(Appointment.provider_id == provider_id)
        if status:
            q = q.filter(Appointment.status == status)
        return q.order_by(Appointment.scheduled_at.asc()).offset(skip).limit(limit).all()
