"""Engine, session factory and the storage-timeout guard.

Every persistence call in the services runs inside ``storage_guard`` so a
hung database surfaces as ``StorageTimeoutError`` instead of blocking the
worker. Reads go through ``read_with_retry``; writes are never retried.
"""
import logging
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session, sessionmaker

from approval_service.core.config import settings
from approval_service.core.exceptions import StorageTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substrings of driver messages that mean "gave up waiting", per backend.
_TIMEOUT_MARKERS = (
    "statement timeout",
    "lock timeout",
    "timeout expired",
    "database is locked",
    "could not obtain lock",
)


def _engine_kwargs() -> dict:
    timeout = settings.STORAGE_TIMEOUT_SECONDS
    if settings.is_sqlite:
        return {"connect_args": {"timeout": timeout, "check_same_thread": False}}
    timeout_ms = int(timeout * 1000)
    return {
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": timeout,
        "connect_args": {
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}",
        },
    }


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs())

SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


def get_session() -> Generator[Session, None, None]:
    with SessionLocal() as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise


def _is_timeout(exc: sa_exc.DBAPIError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


@contextmanager
def storage_guard(db: Session, operation: str) -> Generator[None, None, None]:
    """Translate pool/statement/lock timeouts into ``StorageTimeoutError``.

    The session is rolled back before raising, so a timed-out write leaves
    nothing half-applied.
    """
    try:
        yield
    except sa_exc.TimeoutError as exc:
        db.rollback()
        logger.warning("Connection pool timeout during %s", operation)
        raise StorageTimeoutError(f"Storage timed out during {operation}.") from exc
    except sa_exc.OperationalError as exc:
        if not _is_timeout(exc):
            raise
        db.rollback()
        logger.warning("Storage timeout during %s: %s", operation, exc.orig)
        raise StorageTimeoutError(f"Storage timed out during {operation}.") from exc


def read_with_retry(db: Session, operation: str, fn: Callable[[], T]) -> T:
    """Run an idempotent read, retrying storage timeouts with exponential backoff."""
    attempt = 1
    while True:
        try:
            with storage_guard(db, operation):
                return fn()
        except StorageTimeoutError:
            if attempt > settings.STORAGE_READ_RETRIES:
                raise
            delay = settings.STORAGE_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
            logger.info(
                "Retrying %s after storage timeout (attempt %s/%s, sleeping %.2fs)",
                operation, attempt, settings.STORAGE_READ_RETRIES, delay,
            )
            time.sleep(delay)
            attempt += 1
