"""Role directory: answers "may this user act in this role?".

The tracker only depends on ``RoleDirectory``; ``UserTableDirectory`` backs
it with the local users table. Deployments that resolve roles elsewhere
(an HR system, an identity provider) plug in their own implementation.
"""
import uuid
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_service.models.user import User


class RoleDirectory(ABC):

    @abstractmethod
    def has_role(self, user_id: uuid.UUID, role: str) -> bool:
        """True when the user is an active holder of ``role``."""

    @abstractmethod
    def is_active_user(self, user_id: uuid.UUID) -> bool:
        """True when the user exists and may act at all."""


class UserTableDirectory(RoleDirectory):
    def __init__(self, db: Session):
        self.db = db

    def _active_user(self, user_id: uuid.UUID) -> User | None:
        return self.db.execute(
            select(User).where(
                User.id == user_id,
                User.is_active.is_(True),
                User.deleted_at.is_(None),
            )
        ).scalars().first()

    def has_role(self, user_id: uuid.UUID, role: str) -> bool:
        user = self._active_user(user_id)
        return user is not None and user.role == role

    def is_active_user(self, user_id: uuid.UUID) -> bool:
        return self._active_user(user_id) is not None
