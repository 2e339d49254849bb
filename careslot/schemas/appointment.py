from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field


class AppointmentCreateRequest(BaseModel):
    patient_id: Optional[int] = Field(default=None, description="Defaults to the caller")
    provider_id: int
    scheduled_at: datetime = Field(..., description="Start instant with a timezone offset")
    chief_complaint: str = Field(..., min_length=1, max_length=2000)
    symptoms_description: Optional[str] = Field(default=None, max_length=4000)


class AdminAppointmentCreateRequest(BaseModel):
    patient_id: int
    provider_id: int
    scheduled_at: datetime
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=480)
    chief_complaint: Optional[str] = Field(default=None, max_length=2000)
    symptoms_description: Optional[str] = Field(default=None, max_length=4000)
    amount: Optional[Decimal] = Field(default=None, ge=0, description="Defaults to the consultation price")
    waive_payment: bool = True


class AppointmentDetail(BaseModel):
    id: int
    patient_id: int
    provider_id: int
    scheduled_at: datetime
    duration_minutes: int
    status: str
    payment_status: str
    amount: Decimal
    currency: str
    payment_reference: Optional[str] = None
    room_url: Optional[str] = None
    chief_complaint: Optional[str] = None
    symptoms_description: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    items: List[AppointmentDetail]
    total: int


class AppointmentCancelResponse(BaseModel):
    success: bool = True
    refunded: bool
    message: str
    appointment: AppointmentDetail


class SessionJoinResponse(BaseModel):
    room_url: str
    token: str
