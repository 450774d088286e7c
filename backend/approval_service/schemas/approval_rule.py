"""Pydantic schemas for approval rules and their approver levels."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

# Enum membership, amount ranges and level numbering are checked by the rule
# store, so these schemas stay loose and every caller gets the same errors.


class ApproverLevelIn(BaseModel):
    level: int
    role: str
    user_id: uuid.UUID | None = None
    required: bool = True
    can_delegate: bool = False


class ApproverLevelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    role: str
    user_id: uuid.UUID | None
    required: bool
    can_delegate: bool


class ApprovalRuleIn(BaseModel):
    transaction_type: str
    department: str = "All Departments"
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None  # omitted = no upper limit
    active: bool | None = None
    approvers: list[ApproverLevelIn]


class ApprovalRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_type: str
    department: str
    min_amount: Decimal
    max_amount: Decimal
    active: bool
    approvers: list[ApproverLevelOut]
    created_at: datetime
    updated_at: datetime


class ActiveToggleIn(BaseModel):
    active: bool
