# careslot/routers/availability.py
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from careslot.core.database import get_db
from careslot.dependencies.auth import get_current_actor
from careslot.schemas.availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleOut,
    AvailabilityRuleUpdate,
    AvailableSlotsResponse,
)
from careslot.services.availability_service import AvailabilityService
from careslot.services.consultation_settings import ConsultationSettingsService
from careslot.services.identity_service import Actor

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/providers/{provider_id}/slots")
async def get_available_slots(
    provider_id: int,
    query_date: date = Query(..., alias="date"),
    duration_minutes: Optional[int] = Query(default=None, gt=0, le=480),
    db: Session = Depends(get_db),
):
    """
    Bookable start times ("HH:MM", provider local time) for a provider on a date.
    Cached briefly via Redis.
    """
    duration = duration_minutes or ConsultationSettingsService.get_terms(db).duration_minutes
    slots = await AvailabilityService.list_available_slots(
        db=db,
        provider_id=provider_id,
        query_date=query_date,
        duration_minutes=duration,
    )
    return {
        "success": True,
        "data": AvailableSlotsResponse(
            provider_id=provider_id,
            date=query_date,
            duration_minutes=duration,
            slots=slots,
            total_available=len(slots),
        ),
    }


@router.get("/providers/{provider_id}/rules", response_model=List[AvailabilityRuleOut])
async def list_rules(
    provider_id: int,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    return AvailabilityService.list_rules(db, provider_id, include_inactive=include_inactive)


@router.post("/rules", response_model=AvailabilityRuleOut, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: AvailabilityRuleCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Add a weekly window. Only the provider themself or an administrator."""
    return await AvailabilityService.create_rule(
        db,
        actor,
        provider_id=payload.provider_id,
        day_of_week=payload.day_of_week,
        start_time=payload.start_time,
        end_time=payload.end_time,
        active=payload.active,
    )


@router.patch("/rules/{rule_id}", response_model=AvailabilityRuleOut)
async def update_rule(
    rule_id: int,
    payload: AvailabilityRuleUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return await AvailabilityService.update_rule(
        db,
        actor,
        rule_id,
        day_of_week=payload.day_of_week,
        start_time=payload.start_time,
        end_time=payload.end_time,
        active=payload.active,
    )


@router.post("/rules/{rule_id}/deactivate", response_model=AvailabilityRuleOut)
async def deactivate_rule(
    rule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Rules are never deleted; deactivated rules stop producing slots."""
    return await AvailabilityService.set_rule_active(db, actor, rule_id, active=False)
