"""Approval session endpoints: start, decide, cancel, inspect."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from approval_service.core.config import settings
from approval_service.core.deps import get_current_user
from approval_service.core.limiter import limiter
from approval_service.db.session import get_session
from approval_service.models.user import MATRIX_ADMIN_ROLES, User
from approval_service.schemas.approval_session import (
    ApprovalSessionOut,
    AuditEntryOut,
    CancelIn,
    DecisionIn,
    SessionStartIn,
    SessionStatsOut,
    SessionStatusOut,
)
from approval_service.services import session_tracker

router = APIRouter()


@router.get(
    "",
    response_model=list[ApprovalSessionOut],
    summary="List approval sessions, newest first",
)
def list_sessions(
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
    state: str | None = Query(None),
    transaction_type: str | None = Query(None),
):
    sessions = session_tracker.list_sessions(db, state=state, transaction_type=transaction_type)
    return [ApprovalSessionOut.model_validate(s) for s in sessions]


@router.get(
    "/stats",
    response_model=SessionStatsOut,
    summary="Session counts per state",
)
def session_stats(
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return session_tracker.session_stats(db)


@router.post(
    "",
    response_model=ApprovalSessionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Start an approval session for a transaction",
)
def start_session(
    body: SessionStartIn,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    session = session_tracker.start_session(
        db,
        transaction_id=body.transaction_id,
        transaction_type=body.transaction_type,
        department=body.department,
        amount=body.amount,
        submitted_by=current_user.id,
    )
    return ApprovalSessionOut.model_validate(session)


@router.post(
    "/{session_id}/decisions",
    response_model=ApprovalSessionOut,
    summary="Approve, reject or delegate one level of a session",
)
@limiter.limit(settings.DECISION_RATE_LIMIT)
def record_decision(
    request: Request,
    session_id: uuid.UUID,
    body: DecisionIn,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    approver_id = body.approver_id or current_user.id
    if approver_id != current_user.id and current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Decisions can only be recorded on your own behalf.",
        )

    session = session_tracker.record_decision(
        db,
        session_id=session_id,
        level=body.level,
        approver_id=approver_id,
        outcome=body.outcome,
        delegate_to=body.delegate_to,
        comments=body.comments,
    )
    return ApprovalSessionOut.model_validate(session)


@router.post(
    "/{session_id}/cancel",
    response_model=ApprovalSessionOut,
    summary="Withdraw a pending session (submitter, admin, manager)",
)
def cancel_session(
    session_id: uuid.UUID,
    body: CancelIn,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    session = session_tracker.get_session(db, session_id)
    if current_user.role not in MATRIX_ADMIN_ROLES and session.submitted_by != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the submitter or a matrix administrator may cancel this session.",
        )

    session = session_tracker.cancel_session(
        db, session_id, actor_id=current_user.id, reason=body.reason
    )
    return ApprovalSessionOut.model_validate(session)


@router.get(
    "/{session_id}",
    response_model=SessionStatusOut,
    summary="Current state, per-level decisions and the next level awaiting action",
)
def get_status(
    session_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return session_tracker.get_session_status(db, session_id)


@router.get(
    "/{session_id}/history",
    response_model=list[AuditEntryOut],
    summary="Audit trail of a session, oldest first",
)
def get_history(
    session_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    entries = session_tracker.get_session_history(db, session_id)
    return [AuditEntryOut.model_validate(e) for e in entries]
