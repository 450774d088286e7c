"""Approval matrix rule endpoints."""
import uuid
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from approval_service.core.deps import get_current_user, require_role
from approval_service.db.session import get_session
from approval_service.models.user import MATRIX_ADMIN_ROLES, User
from approval_service.schemas.approval_rule import ActiveToggleIn, ApprovalRuleIn, ApprovalRuleOut
from approval_service.services import rule_matcher, rule_store

router = APIRouter()

matrix_admin = require_role(*MATRIX_ADMIN_ROLES)


@router.get(
    "",
    response_model=list[ApprovalRuleOut],
    summary="List approval rules in insertion order",
)
def list_rules(
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
    transaction_type: str | None = Query(None),
    active: bool | None = Query(None),
):
    rules = rule_store.list_rules(db, transaction_type=transaction_type, active=active)
    return [ApprovalRuleOut.model_validate(r) for r in rules]


@router.get(
    "/match",
    response_model=ApprovalRuleOut,
    summary="Preview which rule would govern a transaction",
)
def preview_match(
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
    transaction_type: str = Query(...),
    department: str = Query(...),
    amount: Decimal = Query(...),
):
    rule = rule_matcher.match_rule(db, transaction_type, department, amount)
    return ApprovalRuleOut.model_validate(rule)


@router.post(
    "",
    response_model=ApprovalRuleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval rule (admin, manager)",
)
def create_rule(
    body: ApprovalRuleIn,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(matrix_admin)],
):
    rule = rule_store.create_rule(db, body, actor_id=current_user.id)
    return ApprovalRuleOut.model_validate(rule)


@router.get(
    "/{rule_id}",
    response_model=ApprovalRuleOut,
    summary="Get one approval rule",
)
def get_rule(
    rule_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return ApprovalRuleOut.model_validate(rule_store.get_rule(db, rule_id))


@router.put(
    "/{rule_id}",
    response_model=ApprovalRuleOut,
    summary="Replace an approval rule (admin, manager)",
)
def update_rule(
    rule_id: uuid.UUID,
    body: ApprovalRuleIn,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(matrix_admin)],
):
    rule = rule_store.update_rule(db, rule_id, body, actor_id=current_user.id)
    return ApprovalRuleOut.model_validate(rule)


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an approval rule (admin, manager)",
)
def delete_rule(
    rule_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(matrix_admin)],
):
    rule_store.delete_rule(db, rule_id, actor_id=current_user.id)


@router.patch(
    "/{rule_id}/active",
    response_model=ApprovalRuleOut,
    summary="Activate or deactivate an approval rule (admin, manager)",
)
def set_active(
    rule_id: uuid.UUID,
    body: ActiveToggleIn,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(matrix_admin)],
):
    rule = rule_store.set_rule_active(db, rule_id, body.active, actor_id=current_user.id)
    return ApprovalRuleOut.model_validate(rule)


@router.delete(
    "/{rule_id}/levels/{level}",
    response_model=ApprovalRuleOut,
    summary="Remove one approver level and renumber the rest (admin, manager)",
)
def remove_level(
    rule_id: uuid.UUID,
    level: int,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(matrix_admin)],
):
    rule = rule_store.remove_approver_level(db, rule_id, level, actor_id=current_user.id)
    return ApprovalRuleOut.model_validate(rule)
