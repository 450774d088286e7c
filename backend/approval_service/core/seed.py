"""Seed demo users and a default approval matrix into the database."""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_service.db.session import SessionLocal
from approval_service.models.approval_rule import ApprovalRule, NO_LIMIT_AMOUNT, WILDCARD_DEPARTMENT
from approval_service.models.user import User
from approval_service.services import rule_store

logger = logging.getLogger(__name__)

# (email, name, role, department)
DEMO_USERS = [
    ("admin@example.com", "Matrix Admin", "admin", "Management"),
    ("supervisor@example.com", "Ops Supervisor", "supervisor", "Operations"),
    ("manager@example.com", "Ops Manager", "manager", "Operations"),
    ("finance@example.com", "Finance Manager", "finance_manager", "Finance"),
    ("cfo@example.com", "Chief Financial Officer", "cfo", "Management"),
    ("operator@example.com", "Booking Operator", "operator", "Booking"),
]

# (transaction_type, department, min_amount, max_amount, [(role, required, can_delegate), ...])
DEFAULT_MATRIX = [
    ("quotation", WILDCARD_DEPARTMENT, 0, NO_LIMIT_AMOUNT, [("manager", True, True)]),
    ("booking", WILDCARD_DEPARTMENT, 0, NO_LIMIT_AMOUNT, [("supervisor", True, False)]),
    ("cash_advance", WILDCARD_DEPARTMENT, 0, 50000, [("supervisor", True, True)]),
    ("cash_advance", WILDCARD_DEPARTMENT, "50000.01", NO_LIMIT_AMOUNT, [
        ("supervisor", True, True),
        ("finance_manager", True, False),
        ("cfo", False, False),
    ]),
    ("cost_analysis", WILDCARD_DEPARTMENT, 0, NO_LIMIT_AMOUNT, [
        ("manager", True, True),
        ("finance_manager", True, False),
    ]),
    ("soa", "Finance", 0, NO_LIMIT_AMOUNT, [("finance_manager", True, False)]),
    ("service_invoice", WILDCARD_DEPARTMENT, 0, NO_LIMIT_AMOUNT, [("finance_manager", True, True)]),
]


def seed_users(db: Session) -> None:
    """Insert demo users that don't exist yet (matched by email)."""
    for email, name, role, department in DEMO_USERS:
        existing = db.execute(select(User).where(User.email == email)).scalars().first()
        if existing is None:
            db.add(User(email=email, name=name, role=role, department=department))
            logger.info("Seeded user: %s (%s)", email, role)
        else:
            logger.info("User already exists: %s, skipping", email)
    db.commit()


def seed_approval_matrix(db: Session) -> None:
    """Create the default matrix, only when no rule exists yet."""
    if db.execute(select(ApprovalRule.id).limit(1)).first() is not None:
        logger.info("Approval matrix already populated, skipping")
        return

    for transaction_type, department, min_amount, max_amount, levels in DEFAULT_MATRIX:
        rule_store.create_rule(db, {
            "transaction_type": transaction_type,
            "department": department,
            "min_amount": min_amount,
            "max_amount": max_amount,
            "approvers": [
                {"level": i, "role": role, "required": required, "can_delegate": can_delegate}
                for i, (role, required, can_delegate) in enumerate(levels, start=1)
            ],
        })
    logger.info("Seeded %s approval rules", len(DEFAULT_MATRIX))


def run_seed() -> None:
    with SessionLocal() as db:
        seed_users(db)
        seed_approval_matrix(db)
    logger.info("Seeding complete.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed()
