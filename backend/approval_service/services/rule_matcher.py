"""Rule matcher: picks the single active rule that governs a transaction.

Overlapping rules are allowed at write time, so ambiguity is resolved here,
deterministically:

  1. exact department beats the "All Departments" wildcard
  2. narrower amount band (max - min) beats wider; no-limit bands are widest
  3. most recently created wins
  4. rule id, so two rules created in the same instant still order stably
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_service.core.exceptions import NoMatchError
from approval_service.db.session import read_with_retry
from approval_service.models.approval_rule import WILDCARD_DEPARTMENT, ApprovalRule
from approval_service.services.validators import parse_amount, parse_department, parse_transaction_type

logger = logging.getLogger(__name__)

_INFINITE_WIDTH = Decimal("Infinity")


def _band_width(rule: ApprovalRule) -> Decimal:
    if rule.is_unbounded:
        return _INFINITE_WIDTH
    return Decimal(rule.max_amount) - Decimal(rule.min_amount)


def _created_key(rule: ApprovalRule) -> datetime:
    # SQLite hands back naive UTC; PostgreSQL hands back aware values in the server zone.
    created = rule.created_at
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created.astimezone(timezone.utc)


def rank_candidates(candidates: list[ApprovalRule], department: str) -> list[ApprovalRule]:
    """Order candidate rules best-first according to the tie-break policy."""
    newest_first = sorted(candidates, key=lambda r: (_created_key(r), str(r.id)), reverse=True)
    return sorted(
        newest_first,
        key=lambda r: (0 if r.department == department else 1, _band_width(r)),
    )


def find_candidates(db: Session, transaction_type: str, department: str, amount: Decimal) -> list[ApprovalRule]:
    stmt = select(ApprovalRule).where(
        ApprovalRule.active.is_(True),
        ApprovalRule.transaction_type == transaction_type,
        ApprovalRule.department.in_([department, WILDCARD_DEPARTMENT]),
    )
    rules = read_with_retry(db, "match_rule", lambda: list(db.execute(stmt).scalars().all()))
    return [rule for rule in rules if rule.covers(amount)]


def match_rule(db: Session, transaction_type: Any, department: Any, amount: Any) -> ApprovalRule:
    """Return the governing rule or raise NoMatchError.

    What to do when nothing matches (skip approval, escalate) is the
    caller's policy, not the matcher's.
    """
    transaction_type = parse_transaction_type(transaction_type)
    department = parse_department(department)
    amount = parse_amount(amount)

    candidates = find_candidates(db, transaction_type, department, amount)
    if not candidates:
        raise NoMatchError(
            f"No active approval rule covers {transaction_type} for department "
            f"'{department}' and amount {amount}."
        )

    best = rank_candidates(candidates, department)[0]
    logger.debug(
        "match_rule: type=%s department=%s amount=%s -> rule=%s (%s candidates)",
        transaction_type, department, amount, best.id, len(candidates),
    )
    return best
