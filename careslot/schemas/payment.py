from pydantic import BaseModel


class PaymentInitializeRequest(BaseModel):
    appointment_id: int


class PaymentInitializeResponse(BaseModel):
    authorization_url: str
    reference: str
