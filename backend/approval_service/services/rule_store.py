"""Approval matrix rule store.

All functions accept a sync SQLAlchemy Session and commit their own
transaction. Every rule is validated here, before anything is written, so
a stored rule always satisfies:

  - transaction_type is one of the known transaction types
  - 0 <= min_amount <= max_amount
  - approvers is non-empty and its levels are exactly 1..n
"""
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_service.core.exceptions import InvalidLevelError, NotFoundError, ValidationError
from approval_service.db.base import utcnow
from approval_service.db.session import read_with_retry, storage_guard
from approval_service.models.approval_rule import NO_LIMIT_AMOUNT, WILDCARD_DEPARTMENT, ApprovalRule, ApproverLevel
from approval_service.services import audit as audit_svc
from approval_service.services.validators import (
    parse_amount,
    parse_department,
    parse_optional_uuid,
    parse_role,
    parse_transaction_type,
)

logger = logging.getLogger(__name__)


# ─── Validation ───

def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is None else value


def _validate_levels(approvers: Any) -> list[dict]:
    if not approvers:
        raise ValidationError("A rule needs at least one approver level.", invariant="approvers_non_empty")

    levels: list[dict] = []
    for entry in approvers:
        level = _field(entry, "level")
        if not isinstance(level, int) or isinstance(level, bool):
            raise ValidationError(f"Approver level must be an integer, got {level!r}.", invariant="level_contiguity")
        levels.append({
            "level": level,
            "role": parse_role(_field(entry, "role")),
            "user_id": parse_optional_uuid(_field(entry, "user_id"), "approver_user_id"),
            "required": bool(_field(entry, "required", True)),
            "can_delegate": bool(_field(entry, "can_delegate", False)),
        })

    levels.sort(key=lambda lvl: lvl["level"])
    numbers = [lvl["level"] for lvl in levels]
    if numbers != list(range(1, len(levels) + 1)):
        raise ValidationError(
            f"Approver levels must run 1..{len(levels)} without gaps or duplicates, got {numbers}.",
            invariant="level_contiguity",
        )
    return levels


def validate_rule_data(data: Any, default_active: bool = True) -> dict:
    """Normalise a rule payload (dict or schema object) or raise ValidationError."""
    transaction_type = parse_transaction_type(_field(data, "transaction_type"))
    department = parse_department(_field(data, "department", WILDCARD_DEPARTMENT))
    min_amount = parse_amount(_field(data, "min_amount", 0), "min_amount")
    max_amount = parse_amount(_field(data, "max_amount", NO_LIMIT_AMOUNT), "max_amount")
    if min_amount > max_amount:
        raise ValidationError(
            f"min_amount ({min_amount}) must not exceed max_amount ({max_amount}).",
            invariant="amount_range",
        )
    return {
        "transaction_type": transaction_type,
        "department": department,
        "min_amount": min_amount,
        "max_amount": max_amount,
        "active": bool(_field(data, "active", default_active)),
        "approvers": _validate_levels(_field(data, "approvers")),
    }


# ─── Helpers ───

def rule_snapshot(rule: ApprovalRule) -> dict:
    return {
        "id": str(rule.id),
        "transaction_type": rule.transaction_type,
        "department": rule.department,
        "min_amount": str(rule.min_amount),
        "max_amount": str(rule.max_amount),
        "active": rule.active,
        "approvers": [lvl.snapshot() for lvl in rule.approvers],
    }


def _load(db: Session, rule_id: uuid.UUID) -> ApprovalRule:
    rule = db.get(ApprovalRule, rule_id)
    if rule is None:
        raise NotFoundError(f"Approval rule {rule_id} not found.")
    return rule


def _replace_levels(db: Session, rule: ApprovalRule, levels: list[dict]) -> None:
    # Delete first: (rule_id, level) is unique and the unit of work inserts before deleting.
    rule.approvers.clear()
    db.flush()
    rule.approvers.extend(ApproverLevel(**lvl) for lvl in levels)
    db.flush()


# ─── CRUD ───

def create_rule(db: Session, data: Any, actor_id: uuid.UUID | None = None) -> ApprovalRule:
    fields = validate_rule_data(data)
    with storage_guard(db, "create_rule"):
        rule = ApprovalRule(
            transaction_type=fields["transaction_type"],
            department=fields["department"],
            min_amount=fields["min_amount"],
            max_amount=fields["max_amount"],
            active=fields["active"],
            approvers=[ApproverLevel(**lvl) for lvl in fields["approvers"]],
        )
        db.add(rule)
        db.flush()
        audit_svc.log(
            db=db,
            action="approval_rule.created",
            entity_type="approval_rule",
            entity_id=rule.id,
            actor_id=actor_id,
            after=rule_snapshot(rule),
        )
        db.commit()

    logger.info(
        "Approval rule created: id=%s type=%s department=%s range=%s..%s levels=%s",
        rule.id, rule.transaction_type, rule.department, rule.min_amount, rule.max_amount,
        len(rule.approvers),
    )
    return rule


def get_rule(db: Session, rule_id: uuid.UUID) -> ApprovalRule:
    return read_with_retry(db, "get_rule", lambda: _load(db, rule_id))


def list_rules(
    db: Session,
    transaction_type: str | None = None,
    active: bool | None = None,
) -> list[ApprovalRule]:
    """Return rules in insertion order, optionally filtered."""
    stmt = select(ApprovalRule)
    if transaction_type is not None:
        stmt = stmt.where(ApprovalRule.transaction_type == parse_transaction_type(transaction_type))
    if active is not None:
        stmt = stmt.where(ApprovalRule.active.is_(active))
    stmt = stmt.order_by(ApprovalRule.created_at.asc(), ApprovalRule.id.asc())

    return read_with_retry(db, "list_rules", lambda: list(db.execute(stmt).scalars().all()))


def update_rule(db: Session, rule_id: uuid.UUID, data: Any, actor_id: uuid.UUID | None = None) -> ApprovalRule:
    """Replace every field of a rule; omitted ``active`` keeps the current flag."""
    with storage_guard(db, "update_rule"):
        rule = _load(db, rule_id)
        fields = validate_rule_data(data, default_active=rule.active)
        before = rule_snapshot(rule)

        rule.transaction_type = fields["transaction_type"]
        rule.department = fields["department"]
        rule.min_amount = fields["min_amount"]
        rule.max_amount = fields["max_amount"]
        rule.active = fields["active"]
        rule.updated_at = utcnow()
        _replace_levels(db, rule, fields["approvers"])

        audit_svc.log(
            db=db,
            action="approval_rule.updated",
            entity_type="approval_rule",
            entity_id=rule.id,
            actor_id=actor_id,
            before=before,
            after=rule_snapshot(rule),
        )
        db.commit()

    logger.info("Approval rule updated: id=%s", rule.id)
    return rule


def delete_rule(db: Session, rule_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> None:
    """Hard-delete a rule. Sessions keep their own snapshot of its chain."""
    with storage_guard(db, "delete_rule"):
        rule = _load(db, rule_id)
        before = rule_snapshot(rule)
        db.delete(rule)
        db.flush()
        audit_svc.log(
            db=db,
            action="approval_rule.deleted",
            entity_type="approval_rule",
            entity_id=rule_id,
            actor_id=actor_id,
            before=before,
        )
        db.commit()

    logger.info("Approval rule deleted: id=%s", rule_id)


def set_rule_active(
    db: Session,
    rule_id: uuid.UUID,
    active: bool,
    actor_id: uuid.UUID | None = None,
) -> ApprovalRule:
    with storage_guard(db, "set_rule_active"):
        rule = _load(db, rule_id)
        if rule.active == active:
            return rule

        rule.active = active
        rule.updated_at = utcnow()
        db.flush()
        audit_svc.log(
            db=db,
            action="approval_rule.activated" if active else "approval_rule.deactivated",
            entity_type="approval_rule",
            entity_id=rule.id,
            actor_id=actor_id,
            before={"active": not active},
            after={"active": active},
        )
        db.commit()

    logger.info("Approval rule %s: id=%s", "activated" if active else "deactivated", rule.id)
    return rule


def remove_approver_level(
    db: Session,
    rule_id: uuid.UUID,
    level: int,
    actor_id: uuid.UUID | None = None,
) -> ApprovalRule:
    """Drop one level and renumber the rest so the chain stays 1..n."""
    with storage_guard(db, "remove_approver_level"):
        rule = _load(db, rule_id)
        if not any(lvl.level == level for lvl in rule.approvers):
            raise InvalidLevelError(f"Rule {rule_id} has no approver level {level}.")
        if len(rule.approvers) == 1:
            raise ValidationError(
                "Cannot remove the only approver level of a rule.",
                invariant="approvers_non_empty",
            )

        before = rule_snapshot(rule)
        remaining = [
            {
                "level": position,
                "role": lvl.role,
                "user_id": lvl.user_id,
                "required": lvl.required,
                "can_delegate": lvl.can_delegate,
            }
            for position, lvl in enumerate((lvl for lvl in rule.approvers if lvl.level != level), start=1)
        ]
        rule.updated_at = utcnow()
        _replace_levels(db, rule, remaining)

        audit_svc.log(
            db=db,
            action="approval_rule.level_removed",
            entity_type="approval_rule",
            entity_id=rule.id,
            actor_id=actor_id,
            before=before,
            after=rule_snapshot(rule),
            notes=f"Removed level {level}",
        )
        db.commit()

    logger.info("Approval rule %s: removed level %s", rule.id, level)
    return rule
