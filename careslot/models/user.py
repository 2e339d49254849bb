from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import validates
from careslot.core.database import Base
from careslot.models.base import TimestampMixin


class User(TimestampMixin, Base):
    """Identity/profile record. The only trusted source of a user's role."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=True)
    full_name = Column(String(200), nullable=True)

    user_type = Column(String(50), index=True, nullable=False)
    status = Column(String(50), default="active", index=True)

    # IANA zone used to interpret a provider's weekly availability rules
    timezone = Column(String(64), nullable=True)

    is_deleted = Column(Boolean, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<User {self.email}>"

    @validates("phone")
    def normalize_phone(self, key, value):
        return value or None
