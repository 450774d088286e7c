"""Approval session lifecycle service.

All functions accept a sync SQLAlchemy Session and commit their own
transaction.

Lifecycle:
  start_session    -> PENDING (or APPROVED when the rule has no required level)
  record_decision  -> per-level approve / reject / delegate
                      reject on a required level  -> REJECTED (short-circuit)
                      last required level approved -> APPROVED
  cancel_session   -> CANCELLED (withdrawn, not denied)

The approver chain is copied from the matched rule at start, so later rule
edits or deletion never change an in-flight approval. Decisions are
serialised per session: the row is read FOR UPDATE, carries an optimistic
version counter, and (session_id, level) is unique. A caller that loses a
race gets AlreadyDecidedError.
"""
import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_service.core.exceptions import (
    AlreadyDecidedError,
    InvalidLevelError,
    NotFoundError,
    UnauthorizedApproverError,
    ValidationError,
)
from approval_service.db.base import utcnow
from approval_service.db.session import read_with_retry, storage_guard
from approval_service.models.approval_session import (
    ApprovalDecision,
    ApprovalSession,
    DecisionOutcome,
    SessionState,
)
from approval_service.models.audit import AuditLog
from approval_service.services import audit as audit_svc
from approval_service.services import events
from approval_service.services.directory import RoleDirectory, UserTableDirectory
from approval_service.services.rule_matcher import match_rule
from approval_service.services.validators import (
    parse_amount,
    parse_department,
    parse_outcome,
    parse_state,
    parse_transaction_type,
)

logger = logging.getLogger(__name__)


# ─── Snapshots ───

def decision_snapshot(decision: ApprovalDecision) -> dict:
    return {
        "level": decision.level,
        "decided_by": str(decision.decided_by),
        "outcome": decision.outcome,
        "delegate_to": str(decision.delegate_to) if decision.delegate_to else None,
        "comments": decision.comments,
        "decided_at": decision.decided_at.isoformat(),
    }


def session_snapshot(session: ApprovalSession) -> dict:
    return {
        "id": str(session.id),
        "transaction_id": session.transaction_id,
        "transaction_type": session.transaction_type,
        "department": session.department,
        "amount": str(session.amount),
        "matched_rule_id": str(session.matched_rule_id),
        "state": session.state,
        "decisions": [decision_snapshot(d) for d in session.decisions],
    }


def _all_required_approved(session: ApprovalSession) -> bool:
    for entry in session.approver_chain:
        if not entry["required"]:
            continue
        decision = session.decision_for(entry["level"])
        if decision is None or decision.outcome != DecisionOutcome.approve.value:
            return False
    return True


# ─── Loading ───

def _load(db: Session, session_id: uuid.UUID) -> ApprovalSession:
    session = db.get(ApprovalSession, session_id)
    if session is None:
        raise NotFoundError(f"Approval session {session_id} not found.")
    return session


def _lock(db: Session, session_id: uuid.UUID) -> ApprovalSession:
    """Load the session row FOR UPDATE, refreshing anything cached in this Session."""
    stmt = (
        select(ApprovalSession)
        .where(ApprovalSession.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    session = db.execute(stmt).scalars().first()
    if session is None:
        raise NotFoundError(f"Approval session {session_id} not found.")
    return session


def _flush_or_conflict(db: Session, session_id: uuid.UUID, what: str) -> None:
    try:
        db.flush()
    except (IntegrityError, StaleDataError) as exc:
        db.rollback()
        logger.warning("Concurrent update lost on session %s (%s): %s", session_id, what, exc)
        raise AlreadyDecidedError(
            f"Approval session {session_id} was changed concurrently ({what}); refresh and retry."
        ) from exc


# ─── Start ───

def start_session(
    db: Session,
    transaction_id: str,
    transaction_type: Any,
    department: Any,
    amount: Any,
    submitted_by: uuid.UUID | None = None,
) -> ApprovalSession:
    """Match the governing rule and open a session on a copy of its chain.

    Raises:
        ValidationError: bad input, or a PENDING session already exists for
            this transaction.
        NoMatchError: no active rule covers the transaction.
    """
    if transaction_id is None or not str(transaction_id).strip():
        raise ValidationError("transaction_id is required.", invariant="transaction_id")
    transaction_id = str(transaction_id).strip()
    transaction_type = parse_transaction_type(transaction_type)
    department = parse_department(department)
    amount = parse_amount(amount)

    rule = match_rule(db, transaction_type, department, amount)

    with storage_guard(db, "start_session"):
        existing = db.execute(
            select(ApprovalSession.id).where(
                ApprovalSession.transaction_type == transaction_type,
                ApprovalSession.transaction_id == transaction_id,
                ApprovalSession.state == SessionState.PENDING.value,
            )
        ).first()
        if existing is not None:
            raise ValidationError(
                f"{transaction_type} {transaction_id} already has a pending approval session ({existing[0]}).",
                invariant="single_pending_session",
            )

        chain = [lvl.snapshot() for lvl in rule.approvers]
        session = ApprovalSession(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            department=department,
            amount=amount,
            matched_rule_id=rule.id,
            approver_chain=chain,
            state=SessionState.PENDING.value,
            submitted_by=submitted_by,
        )
        auto_approved = not any(entry["required"] for entry in chain)
        if auto_approved:
            session.state = SessionState.APPROVED.value
            session.completed_at = utcnow()

        db.add(session)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise ValidationError(
                f"{transaction_type} {transaction_id} already has a pending approval session.",
                invariant="single_pending_session",
            ) from exc

        audit_svc.log(
            db=db,
            action="approval_session.started",
            entity_type="approval_session",
            entity_id=session.id,
            actor_id=submitted_by,
            after=session_snapshot(session),
            notes=f"Matched rule {rule.id} ({len(chain)} levels)",
        )
        if auto_approved:
            audit_svc.log(
                db=db,
                action="approval_session.approved",
                entity_type="approval_session",
                entity_id=session.id,
                after={"state": session.state},
                notes="Matched rule has no required approver level",
            )
        db.commit()

    logger.info(
        "Approval session started: session=%s %s=%s rule=%s state=%s",
        session.id, transaction_type, transaction_id, rule.id, session.state,
    )
    snapshot = session_snapshot(session)
    events.fire("approval_session.started", snapshot)
    if auto_approved:
        events.fire("approval_session.approved", snapshot)
    return session


# ─── Decide ───

def _authorize(
    directory: RoleDirectory,
    entry: dict,
    current: ApprovalDecision | None,
    approver_id: uuid.UUID,
) -> None:
    level = entry["level"]

    if current is not None and current.outcome == DecisionOutcome.delegate.value:
        if current.delegate_to == approver_id and directory.is_active_user(approver_id):
            return
        raise UnauthorizedApproverError(
            f"Level {level} is delegated to {current.delegate_to}; {approver_id} may not act on it."
        )

    override = entry.get("user_id")
    if override:
        if uuid.UUID(override) == approver_id and directory.is_active_user(approver_id):
            return
        raise UnauthorizedApproverError(f"Level {level} is assigned to a specific user; {approver_id} is not it.")

    if not directory.has_role(approver_id, entry["role"]):
        raise UnauthorizedApproverError(
            f"User {approver_id} does not hold role '{entry['role']}' required at level {level}."
        )


def _check_delegation(
    directory: RoleDirectory,
    entry: dict,
    approver_id: uuid.UUID,
    delegate_to: uuid.UUID | None,
) -> None:
    level = entry["level"]
    if not entry["can_delegate"]:
        raise ValidationError(f"Level {level} does not allow delegation.", invariant="delegation_not_allowed")
    if delegate_to is None:
        raise ValidationError("delegate_to is required when delegating.", invariant="delegate_to_required")
    if delegate_to == approver_id:
        raise ValidationError("A level cannot be delegated to the current approver.", invariant="delegate_to_self")
    if not directory.has_role(delegate_to, entry["role"]):
        raise ValidationError(
            f"Delegate {delegate_to} does not hold role '{entry['role']}' required at level {level}.",
            invariant="delegate_role",
        )


def record_decision(
    db: Session,
    session_id: uuid.UUID,
    level: int,
    approver_id: uuid.UUID,
    outcome: Any,
    delegate_to: uuid.UUID | None = None,
    comments: str | None = None,
    directory: RoleDirectory | None = None,
) -> ApprovalSession:
    """Record one approver's decision at one level of a session.

    Raises:
        ValidationError: unknown outcome, or an invalid delegation.
        NotFoundError: unknown session.
        AlreadyDecidedError: session terminal, level already approved/rejected,
            or a concurrent decision won the race.
        InvalidLevelError: level not in the session's chain.
        UnauthorizedApproverError: approver may not act on this level.
    """
    outcome = parse_outcome(outcome)
    directory = directory or UserTableDirectory(db)

    with storage_guard(db, "record_decision"):
        session = _lock(db, session_id)
        if session.is_terminal:
            raise AlreadyDecidedError(f"Approval session {session_id} is already {session.state}.")

        entry = session.chain_level(level)
        if entry is None:
            raise InvalidLevelError(f"Level {level} is not part of session {session_id}'s approval chain.")

        current = session.decision_for(level)
        if current is not None and current.is_final:
            raise AlreadyDecidedError(
                f"Level {level} of session {session_id} was already decided ({current.outcome})."
            )

        _authorize(directory, entry, current, approver_id)
        if outcome == DecisionOutcome.delegate.value:
            _check_delegation(directory, entry, approver_id, delegate_to)
        else:
            delegate_to = None

        now = utcnow()
        if current is None:
            current = ApprovalDecision(level=level)
            session.decisions.append(current)
        current.decided_by = approver_id
        current.outcome = outcome
        current.delegate_to = delegate_to
        current.comments = comments
        current.decided_at = now

        fired: list[str] = []
        if outcome == DecisionOutcome.delegate.value:
            fired.append("approval_session.delegated")
        else:
            fired.append("approval_session.decided")
            if outcome == DecisionOutcome.reject.value and entry["required"]:
                session.state = SessionState.REJECTED.value
                session.completed_at = now
                fired.append("approval_session.rejected")
            elif _all_required_approved(session):
                session.state = SessionState.APPROVED.value
                session.completed_at = now
                fired.append("approval_session.approved")
        session.updated_at = now  # bumps the version even when the state is unchanged

        _flush_or_conflict(db, session_id, f"level {level}")

        audit_svc.log(
            db=db,
            action=f"approval_session.level_{outcome}",
            entity_type="approval_session",
            entity_id=session.id,
            actor_id=approver_id,
            after=decision_snapshot(current),
            notes=comments,
        )
        if session.is_terminal:
            audit_svc.log(
                db=db,
                action=f"approval_session.{session.state.lower()}",
                entity_type="approval_session",
                entity_id=session.id,
                actor_id=approver_id,
                after={"state": session.state},
                notes=f"Level {level} {outcome}",
            )
        db.commit()

    logger.info(
        "Approval decision: session=%s level=%s approver=%s outcome=%s state=%s",
        session_id, level, approver_id, outcome, session.state,
    )
    snapshot = session_snapshot(session)
    for event in fired:
        events.fire(event, {**snapshot, "level": level, "outcome": outcome,
                            "delegate_to": str(delegate_to) if delegate_to else None})
    return session


# ─── Cancel ───

def cancel_session(
    db: Session,
    session_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    reason: str | None = None,
) -> ApprovalSession:
    """Withdraw a PENDING session. Terminal and irreversible."""
    with storage_guard(db, "cancel_session"):
        session = _lock(db, session_id)
        if session.is_terminal:
            raise AlreadyDecidedError(
                f"Approval session {session_id} is already {session.state} and cannot be cancelled."
            )

        now = utcnow()
        session.state = SessionState.CANCELLED.value
        session.cancel_reason = reason
        session.completed_at = now
        session.updated_at = now
        _flush_or_conflict(db, session_id, "cancel")

        audit_svc.log(
            db=db,
            action="approval_session.cancelled",
            entity_type="approval_session",
            entity_id=session.id,
            actor_id=actor_id,
            before={"state": SessionState.PENDING.value},
            after={"state": session.state},
            notes=reason,
        )
        db.commit()

    logger.info("Approval session cancelled: session=%s actor=%s", session_id, actor_id)
    events.fire("approval_session.cancelled", session_snapshot(session))
    return session


# ─── Reads ───

def get_session(db: Session, session_id: uuid.UUID) -> ApprovalSession:
    return read_with_retry(db, "get_session", lambda: _load(db, session_id))


def get_session_status(db: Session, session_id: uuid.UUID) -> dict:
    """Read-only projection: state, per-level decisions and the next level awaiting action."""
    session = get_session(db, session_id)

    current_level = None
    if not session.is_terminal:
        for entry in session.approver_chain:
            decision = session.decision_for(entry["level"])
            if decision is None or not decision.is_final:
                current_level = entry["level"]
                break

    return {
        "session_id": session.id,
        "state": session.state,
        "current_level": current_level,
        "decisions": {
            d.level: {
                "decided_by": d.decided_by,
                "outcome": d.outcome,
                "delegate_to": d.delegate_to,
                "comments": d.comments,
                "decided_at": d.decided_at,
            }
            for d in session.decisions
        },
    }


def list_sessions(
    db: Session,
    state: str | None = None,
    transaction_type: str | None = None,
) -> list[ApprovalSession]:
    """Return sessions newest first, optionally filtered."""
    stmt = select(ApprovalSession)
    if state is not None:
        stmt = stmt.where(ApprovalSession.state == parse_state(state))
    if transaction_type is not None:
        stmt = stmt.where(ApprovalSession.transaction_type == parse_transaction_type(transaction_type))
    stmt = stmt.order_by(ApprovalSession.created_at.desc())

    return read_with_retry(db, "list_sessions", lambda: list(db.execute(stmt).scalars().all()))


def session_stats(db: Session) -> dict:
    """Session counts in total and per state."""
    stmt = select(ApprovalSession.state, func.count()).group_by(ApprovalSession.state)
    rows = read_with_retry(db, "session_stats", lambda: db.execute(stmt).all())

    counts = {state.value.lower(): 0 for state in SessionState}
    for state, count in rows:
        counts[state.lower()] = count
    return {"total": sum(counts.values()), **counts}


def get_session_history(db: Session, session_id: uuid.UUID) -> list[AuditLog]:
    get_session(db, session_id)
    return read_with_retry(
        db,
        "get_session_history",
        lambda: audit_svc.entries_for(db, "approval_session", session_id),
    )
