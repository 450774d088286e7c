"""Approval matrix: rules and their ordered approver levels."""
import enum
import uuid
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_service.db.base import Base, TimestampMixin, UUIDMixin

WILDCARD_DEPARTMENT = "All Departments"

# max_amount at or above this value means the band has no upper limit.
NO_LIMIT_AMOUNT = Decimal("999999999")


class TransactionType(str, enum.Enum):
    quotation = "quotation"
    cost_analysis = "cost_analysis"
    cash_advance = "cash_advance"
    soa = "soa"
    service_invoice = "service_invoice"
    booking = "booking"


class ApproverRole(str, enum.Enum):
    supervisor = "supervisor"
    manager = "manager"
    head = "head"
    finance_manager = "finance_manager"
    cfo = "cfo"
    ceo = "ceo"


class ApprovalRule(Base, UUIDMixin, TimestampMixin):
    """Who must approve a transaction type within an amount band and department."""

    __tablename__ = "approval_rules"

    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(100), nullable=False, default=WILDCARD_DEPARTMENT)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    max_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=NO_LIMIT_AMOUNT)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    approvers: Mapped[list["ApproverLevel"]] = relationship(
        "ApproverLevel",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="ApproverLevel.level",
        lazy="selectin",
    )

    @property
    def is_unbounded(self) -> bool:
        return Decimal(self.max_amount) >= NO_LIMIT_AMOUNT

    def covers(self, amount: Decimal) -> bool:
        if Decimal(self.min_amount) > amount:
            return False
        return self.is_unbounded or amount <= Decimal(self.max_amount)


class ApproverLevel(Base, UUIDMixin):
    """One position in a rule's approval chain (1 = first approver)."""

    __tablename__ = "approver_levels"
    __table_args__ = (UniqueConstraint("rule_id", "level", name="uq_approver_levels_rule_level"),)

    rule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)  # specific-user override
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_delegate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rule: Mapped["ApprovalRule"] = relationship("ApprovalRule", back_populates="approvers")

    def snapshot(self) -> dict:
        return {
            "level": self.level,
            "role": self.role,
            "user_id": str(self.user_id) if self.user_id else None,
            "required": self.required,
            "can_delegate": self.can_delegate,
        }
