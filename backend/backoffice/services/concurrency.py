# Concurrency helpers shared by the sale and stock services.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, SaleTimeoutError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the database write lock up front on SQLite.

    SQLite has no row locks, so a read-then-write sequence must start with
    BEGIN IMMEDIATE to serialize writers. Must run before any other
    statement of the transaction. No-op on other backends.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


class Deadline:
    """Wall-clock budget for a unit of work, checked between steps."""

    def __init__(self, seconds: float | None):
        self.seconds = seconds
        self._expires = time.monotonic() + seconds if seconds else None

    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() >= self._expires

    def check(self, step: str) -> None:
        if self.expired():
            raise SaleTimeoutError(
                "Sale transaction exceeded its deadline and was rolled back",
                {"step": step, "timeout_seconds": self.seconds},
            )


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    deadline: Deadline | None = None,
    retry_on: tuple = (),
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks), StaleDataError (optimistic locking
    conflicts) and any extra ``retry_on`` types, rolling the session back
    before each new attempt. A conflict that survives every attempt
    surfaces as ConflictError. No retry starts once ``deadline`` has passed.
    Any other exception rolls the session back and propagates.
    """
    retryable = (OperationalError, StaleDataError) + tuple(retry_on)
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, OperationalError):
                    raise
                raise ConflictError(
                    "Record was modified concurrently, please retry",
                    {"attempts": attempts},
                ) from exc
            if deadline is not None:
                deadline.check("retry")
            logger.info("Retrying after concurrency conflict (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
