from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ConsultationTermsOut(BaseModel):
    consultation_price: Decimal
    consultation_duration: int
    currency: str


class ConsultationTermsUpdate(BaseModel):
    consultation_price: Optional[Decimal] = Field(default=None, ge=0, description="Major currency units")
    consultation_duration: Optional[int] = Field(default=None, gt=0, le=480)
