"""Identity/profile lookups. Roles are only ever taken from the user store."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from careslot.core.constants import UserRole, UserStatus
from careslot.models.user import User
from careslot.utils.errors import NotFoundError


@dataclass(frozen=True)
class Actor:
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_provider(self) -> bool:
        return self.role == UserRole.PROVIDER.value

    @property
    def is_patient(self) -> bool:
        return self.role == UserRole.PATIENT.value


class IdentityService:

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.id == user_id, User.is_deleted == False)  # noqa: E712
            .first()
        )

    @staticmethod
    def get_actor(db: Session, user_id: int) -> Actor:
        user = IdentityService.get_user(db, user_id)
        if not user or user.status == UserStatus.SUSPENDED.value:
            raise NotFoundError("User not found")
        return Actor(id=user.id, role=user.user_type)

    @staticmethod
    def get_provider(db: Session, provider_id: int) -> User:
        user = IdentityService.get_user(db, provider_id)
        if not user or user.user_type != UserRole.PROVIDER.value:
            raise NotFoundError("Provider not found")
        return user

    @staticmethod
    def admin_ids(db: Session) -> list[int]:
        rows = (
            db.query(User.id)
            .filter(
                User.user_type == UserRole.ADMIN.value,
                User.is_deleted == False,  # noqa: E712
            )
            .all()
        )
        return [r[0] for r in rows]
