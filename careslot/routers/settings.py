# careslot/routers/settings.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from careslot.core.database import get_db
from careslot.dependencies.auth import get_current_admin
from careslot.schemas.settings import ConsultationTermsOut, ConsultationTermsUpdate
from careslot.services.consultation_settings import ConsultationSettingsService, ConsultationTerms
from careslot.services.identity_service import Actor

router = APIRouter(prefix="/settings", tags=["settings"])


def _out(terms: ConsultationTerms) -> ConsultationTermsOut:
    return ConsultationTermsOut(
        consultation_price=terms.price,
        consultation_duration=terms.duration_minutes,
        currency=terms.currency,
    )


@router.get("/consultation", response_model=ConsultationTermsOut)
async def get_consultation_terms(db: Session = Depends(get_db)):
    """Current consultation fee and length; every patient booking uses these."""
    return _out(ConsultationSettingsService.get_terms(db))


@router.put("/consultation", response_model=ConsultationTermsOut)
async def update_consultation_terms(
    payload: ConsultationTermsUpdate,
    admin: Actor = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    terms = ConsultationSettingsService.update_terms(
        db,
        admin,
        price=payload.consultation_price,
        duration_minutes=payload.consultation_duration,
    )
    return _out(terms)
