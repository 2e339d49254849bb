from datetime import date, datetime, time, timedelta
from typing import List, Optional
import json
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from careslot.cache.cache_service import redis_cache, slot_cache_key
from careslot.core.config import settings
from careslot.core.constants import ACTIVE_STATUSES
from careslot.models.appointment import Appointment
from careslot.models.availability import AvailabilityRule
from careslot.services.identity_service import Actor, IdentityService
from careslot.services.slot_calculator import Booking, compute_slots, format_slots
from careslot.utils.errors import ActorMismatchError, NotFoundError, PersistenceError, ValidationError
from careslot.utils.timeutils import local_day_bounds, provider_zone, to_local, utcnow

logger = logging.getLogger(__name__)

# Bookings this far either side of the target day can still reach it through
# their duration plus buffer.
BOOKING_LOOKAROUND = timedelta(hours=24)


class AvailabilityService:
    """
    Availability store and slot listing:
    - Create / edit / deactivate weekly rules (never deleted)
    - Read the active rules used by the slot calculator
    - List bookable start times for a provider and date
    """

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------
    @staticmethod
    def _check_can_manage(actor: Actor, provider_id: int) -> None:
        if actor.is_admin:
            return
        if not (actor.is_provider and actor.id == provider_id):
            raise ActorMismatchError("Only the provider or an administrator can manage availability")

    @staticmethod
    def _check_rule_fields(day_of_week: int, start_time: time, end_time: time) -> None:
        if day_of_week < 0 or day_of_week > 6:
            raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if start_time.second or end_time.second:
            raise ValidationError("Availability times have minute precision")
        # Rules are scoped to a single day; midnight-spanning rules are unsupported
        if start_time >= end_time:
            raise ValidationError("start_time must be before end_time")

    @staticmethod
    async def create_rule(
        db: Session,
        actor: Actor,
        provider_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
        active: bool = True,
    ) -> AvailabilityRule:
        AvailabilityService._check_can_manage(actor, provider_id)
        IdentityService.get_provider(db, provider_id)
        AvailabilityService._check_rule_fields(day_of_week, start_time, end_time)

        rule = AvailabilityRule(
            provider_id=provider_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            active=active,
        )
        try:
            db.add(rule)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("Failed to save availability") from e
        db.refresh(rule)

        await redis_cache.invalidate_provider(provider_id)
        return rule

    @staticmethod
    def _get_rule(db: Session, rule_id: int) -> AvailabilityRule:
        rule = db.query(AvailabilityRule).filter(AvailabilityRule.id == rule_id).first()
        if not rule:
            raise NotFoundError("Availability rule not found")
        return rule

    @staticmethod
    async def update_rule(
        db: Session,
        actor: Actor,
        rule_id: int,
        day_of_week: Optional[int] = None,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        active: Optional[bool] = None,
    ) -> AvailabilityRule:
        rule = AvailabilityService._get_rule(db, rule_id)
        AvailabilityService._check_can_manage(actor, rule.provider_id)

        new_day = rule.day_of_week if day_of_week is None else day_of_week
        new_start = rule.start_time if start_time is None else start_time
        new_end = rule.end_time if end_time is None else end_time
        AvailabilityService._check_rule_fields(new_day, new_start, new_end)

        rule.day_of_week = new_day
        rule.start_time = new_start
        rule.end_time = new_end
        if active is not None:
            rule.active = active

        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("Failed to update availability") from e

        await redis_cache.invalidate_provider(rule.provider_id)
        return rule

    @staticmethod
    async def set_rule_active(db: Session, actor: Actor, rule_id: int, active: bool) -> AvailabilityRule:
        return await AvailabilityService.update_rule(db, actor, rule_id, active=active)

    @staticmethod
    def list_rules(db: Session, provider_id: int, include_inactive: bool = False) -> List[AvailabilityRule]:
        q = db.query(AvailabilityRule).filter(AvailabilityRule.provider_id == provider_id)
        if not include_inactive:
            q = q.filter(AvailabilityRule.active == True)  # noqa: E712
        return q.order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()

    # -------------------------------------------------------------------------
    # Bookings window
    # -------------------------------------------------------------------------
    @staticmethod
    def bookings_between(
        db: Session,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
        for_update: bool = False,
    ) -> List[Appointment]:
        """Non-cancelled appointments of a provider starting inside the window."""
        q = db.query(Appointment).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.scheduled_at >= window_start,
            Appointment.scheduled_at < window_end,
        )
        if for_update:
            q = q.with_for_update()
        return q.order_by(Appointment.scheduled_at.asc()).all()

    # -------------------------------------------------------------------------
    # Slot listing
    # -------------------------------------------------------------------------
    @staticmethod
    async def list_available_slots(
        db: Session,
        provider_id: int,
        query_date: date,
        duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """
        Bookable start times ("HH:MM", provider local time) for a date.

        The calculator output is cached briefly in Redis; past start times are
        filtered after the cache so a cached list never offers a time that has gone by.
        """
        duration = duration_minutes or settings.DEFAULT_CONSULTATION_MINUTES
        if duration <= 0:
            raise ValidationError("duration_minutes must be positive")

        provider = IdentityService.get_provider(db, provider_id)
        zone = provider_zone(provider.timezone)

        cache_key = slot_cache_key(provider_id, query_date, duration)
        cached = await redis_cache.get(cache_key)
        if cached:
            slots = json.loads(cached)
        else:
            try:
                rules = AvailabilityService.list_rules(db, provider_id)
                day_start, day_end = local_day_bounds(query_date, zone)
                appointments = AvailabilityService.bookings_between(
                    db,
                    provider_id,
                    day_start - BOOKING_LOOKAROUND,
                    day_end + BOOKING_LOOKAROUND,
                )
            except SQLAlchemyError as e:
                raise PersistenceError("Failed to load availability") from e

            bookings = [Booking(to_local(a.scheduled_at, zone), a.duration_minutes) for a in appointments]
            slots = format_slots(
                compute_slots(
                    query_date,
                    rules,
                    duration,
                    settings.BOOKING_BUFFER_MINUTES,
                    bookings,
                )
            )
            await redis_cache.set(cache_key, json.dumps(slots), ttl=settings.SLOT_CACHE_TTL_SECONDS)

        now = now or utcnow()
        return [
            s for s in slots
            if datetime.combine(query_date, time.fromisoformat(s), tzinfo=zone) > now
        ]
