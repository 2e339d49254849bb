from sqlalchemy import Column, Integer, Numeric, String, ForeignKey, CheckConstraint
from careslot.core.database import Base
from careslot.models.base import TimestampMixin


class SystemSettings(TimestampMixin, Base):
    """Admin-managed consultation terms. A single row; absent until first edited."""
    __tablename__ = "system_settings"
    __table_args__ = (
        CheckConstraint("consultation_price >= 0", name="ck_system_settings_price"),
        CheckConstraint("consultation_duration > 0", name="ck_system_settings_duration"),
    )

    id = Column(Integer, primary_key=True)
    consultation_price = Column(Numeric(12, 2), nullable=False)
    consultation_duration = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
