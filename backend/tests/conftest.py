"""Shared fixtures: an in-memory SQLite database and a set of users, one per role.

DATABASE_URL is pointed at SQLite before the application is imported so the
module-level engine never tries to reach PostgreSQL.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import approval_service.models  # noqa: E402,F401
from approval_service.db.base import Base  # noqa: E402
from approval_service.models.user import User  # noqa: E402
from approval_service.services import events  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    with TestingSession() as session:
        yield session


@pytest.fixture(autouse=True)
def _reset_event_hooks():
    events.clear()
    yield
    events.clear()


def make_user(db, role: str, name: str | None = None, **kwargs) -> User:
    name = name or role.replace("_", " ").title()
    email = kwargs.pop("email", f"{name.lower().replace(' ', '.')}@example.com")
    user = User(email=email, name=name, role=role, **kwargs)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def users(db) -> dict[str, User]:
    """One active user per role, plus a second supervisor for delegation."""
    people = {
        role: make_user(db, role)
        for role in ("admin", "manager", "supervisor", "head", "finance_manager", "cfo", "ceo", "operator")
    }
    people["supervisor_2"] = make_user(db, "supervisor", name="Second Supervisor")
    return people


def rule_payload(transaction_type="cash_advance", department="All Departments",
                 min_amount=0, max_amount=None, levels=None, **extra) -> dict:
    """Rule input dict; ``levels`` is a list of (role, required, can_delegate)."""
    levels = levels or [("supervisor", True, False)]
    data = {
        "transaction_type": transaction_type,
        "department": department,
        "min_amount": min_amount,
        "approvers": [
            {"level": i, "role": role, "required": required, "can_delegate": can_delegate}
            for i, (role, required, can_delegate) in enumerate(levels, start=1)
        ],
        **extra,
    }
    if max_amount is not None:
        data["max_amount"] = max_amount
    return data


@pytest.fixture
def override_app(db):
    """Point the app at the test database; returns a helper that sets the caller."""
    from approval_service.core.deps import get_current_user
    from approval_service.db.session import get_session
    from approval_service.main import app

    def _session_override():
        yield db

    def act_as(user: User | None):
        if user is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = lambda: user
        return app

    app.dependency_overrides[get_session] = _session_override
    try:
        yield act_as
    finally:
        app.dependency_overrides.clear()
