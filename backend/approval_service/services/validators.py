"""Boundary parsing for values that arrive loosely typed from callers."""
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

from approval_service.core.exceptions import ValidationError
from approval_service.models.approval_rule import ApproverRole, TransactionType
from approval_service.models.approval_session import DecisionOutcome, SessionState

# Amounts are stored as Numeric(18, 2).
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal(10) ** 16


def _raw(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def parse_transaction_type(value: Any) -> str:
    raw = _raw(value)
    try:
        return TransactionType(raw).value
    except ValueError:
        allowed = ", ".join(t.value for t in TransactionType)
        raise ValidationError(
            f"Unknown transaction type {raw!r}; expected one of: {allowed}.",
            invariant="transaction_type",
        ) from None


def parse_role(value: Any) -> str:
    raw = _raw(value)
    try:
        return ApproverRole(raw).value
    except ValueError:
        allowed = ", ".join(r.value for r in ApproverRole)
        raise ValidationError(
            f"Unknown approver role {raw!r}; expected one of: {allowed}.",
            invariant="approver_role",
        ) from None


def parse_outcome(value: Any) -> str:
    raw = _raw(value)
    try:
        return DecisionOutcome(raw).value
    except ValueError:
        raise ValidationError(
            f"Unknown decision outcome {raw!r}; expected approve, reject or delegate.",
            invariant="decision_outcome",
        ) from None


def parse_state(value: Any) -> str:
    raw = _raw(value)
    try:
        return SessionState(raw).value
    except ValueError:
        raise ValidationError(f"Unknown session state {raw!r}.", invariant="session_state") from None


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """Coerce to a finite, non-negative Decimal that fits a Numeric(18, 2) column."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required and must be a number.", invariant="amount_non_negative")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number, got {value!r}.", invariant="amount_non_negative") from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be a non-negative number.", invariant="amount_non_negative")
    if amount >= MAX_AMOUNT:
        raise ValidationError(f"{field} must be less than {MAX_AMOUNT:,}.", invariant="amount_precision")
    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} allows at most 2 decimal places, got {value!r}.", invariant="amount_precision")
    return amount.quantize(CENT)


def parse_department(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("department must be a non-empty string.", invariant="department")
    return value.strip()


def parse_optional_uuid(value: Any, field: str) -> uuid.UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a UUID, got {value!r}.", invariant=field) from None
