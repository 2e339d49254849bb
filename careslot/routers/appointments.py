# careslot/routers/appointments.py
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from careslot.core.clients import Collaborators
from careslot.core.constants import NotificationKind
from careslot.core.database import get_db
from careslot.dependencies.auth import get_collaborators, get_current_actor, get_current_admin
from careslot.schemas.appointment import (
    AdminAppointmentCreateRequest,
    AppointmentCancelResponse,
    AppointmentCreateRequest,
    AppointmentDetail,
    AppointmentListResponse,
    SessionJoinResponse,
)
from careslot.services.booking_service import BookingService
from careslot.services.identity_service import Actor
from careslot.services.notification_service import appointment_payload

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.post(
    "",
    response_model=AppointmentDetail,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment(
    payload: AppointmentCreateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    Book a consultation.
    - Only the patient themself can book.
    - The appointment starts scheduled / pending; pay via /payments/initialize.
    - Price and length are the current consultation terms.
    """
    appointment = await BookingService.create_booking(
        db,
        actor,
        patient_id=payload.patient_id or actor.id,
        provider_id=payload.provider_id,
        requested_start=payload.scheduled_at,
        details={
            "chief_complaint": payload.chief_complaint,
            "symptoms_description": payload.symptoms_description,
        },
    )
    return appointment


@router.post(
    "/admin",
    response_model=AppointmentDetail,
    status_code=status.HTTP_201_CREATED,
)
async def create_admin_appointment(
    payload: AdminAppointmentCreateRequest,
    admin: Actor = Depends(get_current_admin),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    """Administrator books on behalf of a patient, by default with payment waived."""
    appointment = await BookingService.create_admin_booking(
        db,
        admin,
        patient_id=payload.patient_id,
        provider_id=payload.provider_id,
        requested_start=payload.scheduled_at,
        duration_minutes=payload.duration_minutes,
        details={
            "chief_complaint": payload.chief_complaint,
            "symptoms_description": payload.symptoms_description,
            "amount": payload.amount,
        },
        waive_payment=payload.waive_payment,
    )

    if appointment.is_settled:
        await collaborators.state_machine.ensure_room(db, appointment)

    when = appointment.scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
    collaborators.notifier.notify(
        appointment.patient_id,
        NotificationKind.APPOINTMENT_BOOKED.value,
        appointment_payload(appointment.id, "Appointment Booked", f"An appointment was booked for you on {when}."),
    )
    collaborators.notifier.notify(
        appointment.provider_id,
        NotificationKind.APPOINTMENT_BOOKED.value,
        appointment_payload(appointment.id, "New Appointment Booked", f"A consultation was booked on {when}."),
    )
    return appointment


@router.get("/mine", response_model=AppointmentListResponse)
async def list_my_appointments(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    if actor.is_provider:
        items = BookingService.list_provider_appointments(db, actor.id, skip=skip, limit=limit)
    else:
        items = BookingService.list_patient_appointments(db, actor.id, skip=skip, limit=limit)
    return {"items": items, "total": len(items)}


@router.post("/{appointment_id}/cancel", response_model=AppointmentCancelResponse)
async def cancel_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    """
    Patient cancels. A paid appointment cancelled early enough is refunded in
    full; a failed refund aborts the cancellation (502).
    """
    result = await collaborators.state_machine.cancel(db, appointment_id, actor)
    message = (
        "Appointment cancelled and refund initiated"
        if result.refunded
        else "Appointment cancelled"
    )
    return {
        "success": True,
        "refunded": result.refunded,
        "message": message,
        "appointment": result.appointment,
    }


@router.post("/{appointment_id}/waive", response_model=AppointmentDetail)
async def waive_payment(
    appointment_id: int,
    admin: Actor = Depends(get_current_admin),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    return await collaborators.state_machine.waive_payment(db, appointment_id, admin)


@router.post("/{appointment_id}/join", response_model=SessionJoinResponse)
async def join_session(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    """Room URL and a meeting token for a settled appointment (402 until paid)."""
    return await collaborators.state_machine.join_session(db, appointment_id, actor)


@router.post("/{appointment_id}/start", response_model=AppointmentDetail)
async def start_session(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    return await collaborators.state_machine.start_session(db, appointment_id, actor)


@router.post("/{appointment_id}/complete", response_model=AppointmentDetail)
async def complete_session(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    return await collaborators.state_machine.complete_session(db, appointment_id, actor)
