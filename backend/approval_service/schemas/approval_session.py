"""Pydantic schemas for approval sessions, decisions and their audit trail."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


# ─── Requests ───

class SessionStartIn(BaseModel):
    transaction_id: str
    transaction_type: str
    department: str
    amount: Decimal


class DecisionIn(BaseModel):
    level: int
    approver_id: uuid.UUID | None = None  # defaults to the caller
    outcome: str  # approve | reject | delegate
    delegate_to: uuid.UUID | None = None
    comments: str | None = None


class CancelIn(BaseModel):
    reason: str | None = None


# ─── Responses ───

class ChainLevelOut(BaseModel):
    level: int
    role: str
    user_id: uuid.UUID | None
    required: bool
    can_delegate: bool


class DecisionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    decided_by: uuid.UUID
    outcome: str
    delegate_to: uuid.UUID | None
    comments: str | None
    decided_at: datetime


class ApprovalSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: str
    transaction_type: str
    department: str
    amount: Decimal
    matched_rule_id: uuid.UUID
    approver_chain: list[ChainLevelOut]
    state: str
    submitted_by: uuid.UUID | None
    cancel_reason: str | None
    decisions: list[DecisionOut]
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


class LevelDecisionOut(BaseModel):
    decided_by: uuid.UUID
    outcome: str
    delegate_to: uuid.UUID | None
    comments: str | None
    decided_at: datetime


class SessionStatusOut(BaseModel):
    session_id: uuid.UUID
    state: str
    current_level: int | None
    decisions: dict[int, LevelDecisionOut]


class SessionStatsOut(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    cancelled: int


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor_id: uuid.UUID | None
    action: str
    before_state: str | None  # JSON snapshot
    after_state: str | None
    notes: str | None
    created_at: datetime
