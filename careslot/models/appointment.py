from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from careslot.core.database import Base
from careslot.core.constants import AppointmentStatus, PaymentStatus, SETTLED_PAYMENT_STATUSES
from careslot.models.base import TimestampMixin


class Appointment(TimestampMixin, Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Two concurrent bookings for the same provider/instant are serialized here,
        # not in application code. Cancelled rows release the instant.
        Index(
            "uq_appointments_provider_slot_active",
            "provider_id",
            "scheduled_at",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
        Index("ix_appointments_provider_scheduled", "provider_id", "scheduled_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(50), default=AppointmentStatus.SCHEDULED.value, nullable=False, index=True)
    payment_status = Column(String(50), default=PaymentStatus.PENDING.value, nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="NGN")
    payment_reference = Column(String(255), unique=True, nullable=True, index=True)

    room_reference = Column(String(255), nullable=True)
    room_url = Column(Text, nullable=True)

    chief_complaint = Column(Text, nullable=True)
    symptoms_description = Column(Text, nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    patient = relationship("User", foreign_keys=[patient_id])
    provider = relationship("User", foreign_keys=[provider_id])

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED.value

    @property
    def is_settled(self) -> bool:
        """Paid or waived; either grants access to the consultation."""
        return self.payment_status in SETTLED_PAYMENT_STATUSES

    def __repr__(self):
        return f"<Appointment {self.id} {self.status}/{self.payment_status}>"
