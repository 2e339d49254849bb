from datetime import date, time
from typing import Optional, List

from pydantic import BaseModel, Field


class AvailabilityRuleCreate(BaseModel):
    provider_id: int
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: time
    end_time: time
    active: bool = True


class AvailabilityRuleUpdate(BaseModel):
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    active: Optional[bool] = None


class AvailabilityRuleOut(BaseModel):
    id: int
    provider_id: int
    day_of_week: int
    start_time: time
    end_time: time
    active: bool

    class Config:
        from_attributes = True


class AvailableSlotsResponse(BaseModel):
    provider_id: int
    date: date
    duration_minutes: int
    slots: List[str]
    total_available: int
