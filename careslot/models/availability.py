from sqlalchemy import Column, Integer, Time, Boolean, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship
from careslot.core.database import Base
from careslot.models.base import TimestampMixin


class AvailabilityRule(TimestampMixin, Base):
    """Recurring weekly open hours for one provider on one day of the week.

    Rules are never deleted; `active` is toggled off instead so past slot
    calculations stay reproducible.
    """
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
        Index("ix_availability_provider_day", "provider_id", "day_of_week"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # 0 = Sunday ... 6 = Saturday
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    active = Column(Boolean, default=True, nullable=False)

    provider = relationship("User")
