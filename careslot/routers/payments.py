# careslot/routers/payments.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from careslot.core.clients import Collaborators
from careslot.core.database import get_db
from careslot.dependencies.auth import get_collaborators, get_current_actor
from careslot.schemas.payment import PaymentInitializeRequest, PaymentInitializeResponse
from careslot.services.identity_service import Actor

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/initialize", response_model=PaymentInitializeResponse)
async def initialize_payment(
    payload: PaymentInitializeRequest,
    actor: Actor = Depends(get_current_actor),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    return await collaborators.payments.initialize_payment(db, actor, payload.appointment_id)


@router.get("/callback")
async def payment_callback(
    reference: Optional[str] = Query(default=None),
    trxref: Optional[str] = Query(default=None),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    """
    Browser return from the gateway. The query string is never trusted; the
    reference is verified server-to-server before anything is written.
    """
    result = await collaborators.payments.reconcile(db, reference or trxref or "")
    return RedirectResponse(url=result.redirect_url, status_code=302)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(default=None),
    collaborators: Collaborators = Depends(get_collaborators),
    db: Session = Depends(get_db),
):
    raw_body = await request.body()
    return await collaborators.payments.handle_webhook(db, raw_body, x_paystack_signature)
