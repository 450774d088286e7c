from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_service.db.base import Base, TimestampMixin, UUIDMixin

ROLES = (
    "admin",
    "manager",
    "supervisor",
    "head",
    "finance_manager",
    "cfo",
    "ceo",
    "operator",
    "viewer",
)

# Roles allowed to maintain the approval matrix.
MATRIX_ADMIN_ROLES = ("admin", "manager")


class User(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # soft delete
