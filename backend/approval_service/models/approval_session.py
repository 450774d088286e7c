"""Approval sessions: one transaction's run through a snapshotted approval chain."""
import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_service.db.base import Base, TimestampMixin, UUIDMixin


class SessionState(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = (SessionState.APPROVED.value, SessionState.REJECTED.value, SessionState.CANCELLED.value)


class DecisionOutcome(str, enum.Enum):
    approve = "approve"
    reject = "reject"
    delegate = "delegate"


class ApprovalSession(Base, UUIDMixin, TimestampMixin):
    """A transaction awaiting approval against the chain captured at start."""

    __tablename__ = "approval_sessions"
    __table_args__ = (
        # At most one PENDING session per transaction.
        Index(
            "uq_approval_sessions_pending_transaction",
            "transaction_type",
            "transaction_id",
            unique=True,
            postgresql_where=text("state = 'PENDING'"),
            sqlite_where=text("state = 'PENDING'"),
        ),
    )

    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    # No FK: the rule may be edited or deleted while this session is in flight.
    matched_rule_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    approver_chain: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionState.PENDING.value, index=True
    )
    submitted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    decisions: Mapped[list["ApprovalDecision"]] = relationship(
        "ApprovalDecision",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ApprovalDecision.level",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def chain_level(self, level: int) -> dict | None:
        for entry in self.approver_chain:
            if entry["level"] == level:
                return entry
        return None

    def decision_for(self, level: int) -> "ApprovalDecision | None":
        for decision in self.decisions:
            if decision.level == level:
                return decision
        return None


class ApprovalDecision(Base, UUIDMixin, TimestampMixin):
    """The current outcome at one level of a session (delegations update it in place)."""

    __tablename__ = "approval_decisions"
    __table_args__ = (UniqueConstraint("session_id", "level", name="uq_approval_decisions_session_level"),)

    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    decided_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)  # approve, reject, delegate
    delegate_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    session: Mapped["ApprovalSession"] = relationship("ApprovalSession", back_populates="decisions")

    @property
    def is_final(self) -> bool:
        return self.outcome in (DecisionOutcome.approve.value, DecisionOutcome.reject.value)
