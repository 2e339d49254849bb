"""Consultation price and length, editable by administrators."""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from careslot.core.config import settings
from careslot.models.system_setting import SystemSettings
from careslot.services.identity_service import Actor
from careslot.utils.errors import ActorMismatchError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

MAX_CONSULTATION_MINUTES = 480


@dataclass(frozen=True)
class ConsultationTerms:
    price: Decimal
    duration_minutes: int
    currency: str


class ConsultationSettingsService:

    @staticmethod
    def defaults() -> ConsultationTerms:
        return ConsultationTerms(
            price=Decimal(settings.CONSULTATION_PRICE).quantize(Decimal("0.01")),
            duration_minutes=settings.DEFAULT_CONSULTATION_MINUTES,
            currency=settings.DEFAULT_CURRENCY,
        )

    @staticmethod
    def _row(db: Session) -> Optional[SystemSettings]:
        return db.query(SystemSettings).order_by(SystemSettings.id.asc()).first()

    @staticmethod
    def get_terms(db: Session) -> ConsultationTerms:
        """Stored terms, or the configured defaults when none were saved."""
        try:
            row = ConsultationSettingsService._row(db)
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load consultation settings") from e
        if not row:
            return ConsultationSettingsService.defaults()
        return ConsultationTerms(
            price=Decimal(row.consultation_price),
            duration_minutes=row.consultation_duration,
            currency=row.currency,
        )

    @staticmethod
    def update_terms(
        db: Session,
        actor: Actor,
        price: Optional[Decimal] = None,
        duration_minutes: Optional[int] = None,
    ) -> ConsultationTerms:
        if not actor.is_admin:
            raise ActorMismatchError("Forbidden: admin only")

        if price is not None:
            try:
                price = Decimal(str(price)).quantize(Decimal("0.01"))
            except InvalidOperation as e:
                raise ValidationError("consultation_price must be a number") from e
            if price < 0:
                raise ValidationError("consultation_price cannot be negative")
        if duration_minutes is not None and not 0 < duration_minutes <= MAX_CONSULTATION_MINUTES:
            raise ValidationError(f"consultation_duration must be between 1 and {MAX_CONSULTATION_MINUTES} minutes")

        current = ConsultationSettingsService.get_terms(db)
        try:
            row = ConsultationSettingsService._row(db)
            if not row:
                row = SystemSettings(currency=current.currency)
                db.add(row)
            row.consultation_price = price if price is not None else current.price
            row.consultation_duration = duration_minutes or current.duration_minutes
            row.updated_by = actor.id
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("Failed to update consultation settings") from e

        logger.info(
            f"Consultation terms set to {row.consultation_price} {row.currency} / "
            f"{row.consultation_duration} min by admin {actor.id}"
        )
        return ConsultationSettingsService.get_terms(db)
