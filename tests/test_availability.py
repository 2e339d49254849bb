import pytest
from datetime import datetime, time, timezone

from careslot.cache.cache_service import slot_cache_key
from careslot.core.constants import AppointmentStatus, UserRole
from careslot.models.availability import AvailabilityRule
from careslot.services.availability_service import AvailabilityService
from careslot.utils.errors import ActorMismatchError, NotFoundError, ValidationError

from conftest import BEFORE_MONDAY, MONDAY, actor_for, make_appointment, make_user

FULL_MONDAY = [
    "09:00", "09:45", "10:30", "11:15", "12:00",
    "12:45", "13:30", "14:15", "15:00", "15:45",
]


# ============================================================================
# SLOT LISTING
# ============================================================================

@pytest.mark.asyncio
async def test_list_slots_full_day(people, db_session):
    slots = await AvailabilityService.list_available_slots(
        db_session, people["provider"].id, MONDAY, now=BEFORE_MONDAY
    )
    assert slots == FULL_MONDAY


@pytest.mark.asyncio
async def test_list_slots_excludes_booked_and_padded(people, db_session):
    make_appointment(
        db_session, people["patient"], people["provider"],
        datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc),
    )

    slots = await AvailabilityService.list_available_slots(
        db_session, people["provider"].id, MONDAY, now=BEFORE_MONDAY
    )

    assert "09:00" in slots
    assert "09:45" not in slots
    assert "10:30" not in slots
    assert "11:15" in slots


@pytest.mark.asyncio
async def test_cancelled_booking_does_not_block(people, db_session):
    make_appointment(
        db_session, people["patient"], people["provider"],
        datetime(2030, 1, 7, 10, 30, tzinfo=timezone.utc),
        status=AppointmentStatus.CANCELLED.value,
    )

    slots = await AvailabilityService.list_available_slots(
        db_session, people["provider"].id, MONDAY, now=BEFORE_MONDAY
    )
    assert slots == FULL_MONDAY


@pytest.mark.asyncio
async def test_list_slots_uses_provider_timezone(db_session):
    provider = make_user(db_session, UserRole.PROVIDER.value, tz="Africa/Lagos")
    patient = make_user(db_session, UserRole.PATIENT.value)
    db_session.add(AvailabilityRule(
        provider_id=provider.id, day_of_week=1,
        start_time=time(9, 0), end_time=time(17, 0), active=True,
    ))
    db_session.commit()
    # 09:00 UTC is 10:00 in Lagos
    make_appointment(db_session, patient, provider, datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc))

    slots = await AvailabilityService.list_available_slots(db_session, provider.id, MONDAY, now=BEFORE_MONDAY)

    assert "09:00" in slots
    assert "09:45" not in slots
    assert "10:30" not in slots
    assert "11:15" in slots


@pytest.mark.asyncio
async def test_past_slots_are_filtered(people, db_session):
    now = datetime(2030, 1, 7, 12, 10, tzinfo=timezone.utc)

    slots = await AvailabilityService.list_available_slots(db_session, people["provider"].id, MONDAY, now=now)

    assert slots[0] == "12:45"


@pytest.mark.asyncio
async def test_slot_listing_is_cached_and_invalidated(people, db_session, mock_redis):
    provider = people["provider"]
    key = slot_cache_key(provider.id, MONDAY, 45)

    await AvailabilityService.list_available_slots(db_session, provider.id, MONDAY, now=BEFORE_MONDAY)
    assert key in mock_redis.store

    await AvailabilityService.create_rule(
        db_session, actor_for(provider), provider.id, 1, time(18, 0), time(19, 0)
    )
    assert key not in mock_redis.store

    slots = await AvailabilityService.list_available_slots(db_session, provider.id, MONDAY, now=BEFORE_MONDAY)
    assert slots[-1] == "18:00"


@pytest.mark.asyncio
async def test_unknown_provider(db_session, people):
    with pytest.raises(NotFoundError):
        await AvailabilityService.list_available_slots(db_session, people["patient"].id, MONDAY)


# ============================================================================
# RULES
# ============================================================================

@pytest.mark.asyncio
async def test_provider_manages_own_rules(people, db_session):
    provider = people["provider"]

    rule = await AvailabilityService.create_rule(
        db_session, actor_for(provider), provider.id, 3, time(8, 0), time(12, 0)
    )
    assert rule.id is not None
    assert rule.active is True

    rule = await AvailabilityService.update_rule(db_session, actor_for(provider), rule.id, end_time=time(13, 0))
    assert rule.end_time == time(13, 0)

    rule = await AvailabilityService.set_rule_active(db_session, actor_for(provider), rule.id, active=False)
    assert rule.active is False

    active = AvailabilityService.list_rules(db_session, provider.id)
    everything = AvailabilityService.list_rules(db_session, provider.id, include_inactive=True)
    assert rule.id not in [r.id for r in active]
    assert rule.id in [r.id for r in everything]


@pytest.mark.asyncio
async def test_admin_can_manage_any_provider(people, db_session):
    rule = await AvailabilityService.create_rule(
        db_session, actor_for(people["admin"]), people["provider"].id, 2, time(9, 0), time(10, 0)
    )
    assert rule.provider_id == people["provider"].id


@pytest.mark.asyncio
async def test_others_cannot_manage_rules(people, db_session):
    other_provider = make_user(db_session, UserRole.PROVIDER.value)

    with pytest.raises(ActorMismatchError):
        await AvailabilityService.create_rule(
            db_session, actor_for(people["patient"]), people["provider"].id, 2, time(9, 0), time(10, 0)
        )
    with pytest.raises(ActorMismatchError):
        await AvailabilityService.create_rule(
            db_session, actor_for(other_provider), people["provider"].id, 2, time(9, 0), time(10, 0)
        )


@pytest.mark.asyncio
async def test_invalid_rule_fields(people, db_session):
    provider = people["provider"]

    with pytest.raises(ValidationError):
        await AvailabilityService.create_rule(db_session, actor_for(provider), provider.id, 7, time(9, 0), time(10, 0))
    with pytest.raises(ValidationError):
        await AvailabilityService.create_rule(db_session, actor_for(provider), provider.id, 1, time(10, 0), time(9, 0))
    with pytest.raises(ValidationError):
        await AvailabilityService.create_rule(db_session, actor_for(provider), provider.id, 1, time(10, 0), time(10, 0))


@pytest.mark.asyncio
async def test_deactivated_rule_stops_producing_slots(people, db_session):
    provider = people["provider"]
    rule = AvailabilityService.list_rules(db_session, provider.id)[0]

    await AvailabilityService.set_rule_active(db_session, actor_for(provider), rule.id, active=False)

    slots = await AvailabilityService.list_available_slots(db_session, provider.id, MONDAY, now=BEFORE_MONDAY)
    assert slots == []
