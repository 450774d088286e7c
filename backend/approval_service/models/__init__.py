from approval_service.models.user import User
from approval_service.models.approval_rule import ApprovalRule, ApproverLevel, ApproverRole, TransactionType
from approval_service.models.approval_session import (
    ApprovalDecision,
    ApprovalSession,
    DecisionOutcome,
    SessionState,
)
from approval_service.models.audit import AuditLog

__all__ = [
    "User",
    "ApprovalRule", "ApproverLevel", "ApproverRole", "TransactionType",
    "ApprovalSession", "ApprovalDecision", "DecisionOutcome", "SessionState",
    "AuditLog",
]
