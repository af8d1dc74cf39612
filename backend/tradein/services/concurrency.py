# Overview: Service-layer helpers for concurrency; row locking, error classification, retry.

from __future__ import annotations

import time

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


# Driver messages that mean "you may not do this", whatever exception class carries them
_AUTHORIZATION_MARKERS = (
    "permission denied",
    "insufficient privilege",
    "access denied",
    "attempt to write a readonly database",
    "read-only",
)

CONTENTION = "contention"
AUTHORIZATION = "authorization"
OTHER = "other"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def classify_db_error(exc: BaseException) -> str:
    """
    Sort a storage failure into the retry taxonomy.

    - authorization: never retried, reported immediately
    - contention: lock timeouts, deadlocks, optimistic-version conflicts,
      unique-key races on first insert; safe to retry
    - other: propagated unchanged
    """
    message = str(getattr(exc, "orig", None) or exc).lower()
    if any(marker in message for marker in _AUTHORIZATION_MARKERS):
        return AUTHORIZATION
    if isinstance(exc, (OperationalError, StaleDataError, IntegrityError)):
        return CONTENTION
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return CONTENTION
    return OTHER


def backoff_delay(attempt: int, backoff_base: float) -> float:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return backoff_base * (2 ** attempt)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors raised by `func` are not
    retried; the caller sees them on the first attempt.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if classify_db_error(exc) == AUTHORIZATION:
                raise
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_delay(attempt, backoff_base))
    if last_exc:
        raise last_exc

