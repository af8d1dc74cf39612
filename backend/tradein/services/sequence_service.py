# Overview: Service-layer operations for the global order counter; two-tier allocation ladder.

"""
Sequence allocation for order numbers.

One durable row per named counter (SequenceCounter). `count` is the last
issued value; the first issued value is ORDER_SEQUENCE_START + 1.

Every call runs in its own session/connection on db.engine and commits on
its own, independent of the caller's unit of work. That makes a call behave
the same whether the callers share a process or not, and it means a number
can be burned (caller fails after allocation) but never handed out twice on
the transactional path.

LADDER:
1. Optimistic: read the row, write count+1 guarded by version_id. Cheap when
   uncontended; a concurrent writer makes it fail with StaleDataError /
   IntegrityError / OperationalError instead of overwriting.
2. Transactional: up to SEQUENCE_MAX_ATTEMPTS single-transaction
   UPDATE count = count + 1 (+ read back), exponential backoff between
   attempts starting at SEQUENCE_BACKOFF_BASE seconds.
3. Best effort: one non-transactional read then blind write. Kept for
   availability under extreme contention; this is the one path that can
   theoretically repeat a value.

Authorization failures stop the ladder immediately at any tier.
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import SequenceCounter
from .concurrency import AUTHORIZATION, CONTENTION, backoff_delay, classify_db_error


class SequenceAllocationError(RuntimeError):
    """Raised when no tier of the ladder could allocate a number."""


class SequencePermissionError(SequenceAllocationError):
    """Raised when the store refuses access to the counter; never retried."""


def _settings() -> tuple[str, int, int, float]:
    cfg = current_app.config
    return (
        cfg.get("ORDER_SEQUENCE_NAME", "orderId"),
        int(cfg.get("ORDER_SEQUENCE_START", 1000)),
        int(cfg.get("SEQUENCE_MAX_ATTEMPTS", 5)),
        float(cfg.get("SEQUENCE_BACKOFF_BASE", 0.01)),
    )


def _permission_error(name: str, exc: BaseException) -> SequencePermissionError:
    return SequencePermissionError(
        f"Access to sequence counter '{name}' was denied by the store: {exc}"
    )


def _optimistic_increment(name: str, start: int) -> int:
    """Tier 1: plain read-modify-write, version checked on flush."""
    with Session(db.engine, expire_on_commit=False) as session:
        counter = session.execute(
            select(SequenceCounter).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
        if counter is None:
            counter = SequenceCounter(name=name, count=start + 1)
            session.add(counter)
        else:
            counter.count = counter.count + 1
        session.commit()
        return counter.count


def _transactional_increment(name: str, start: int) -> int:
    """Tier 2: one atomic transaction; initializes a missing row to the first value."""
    with db.engine.begin() as conn:
        result = conn.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == name)
            .values(
                count=SequenceCounter.count + 1,
                version_id=SequenceCounter.version_id + 1,
            )
        )
        if not result.rowcount:
            conn.execute(
                insert(SequenceCounter).values(name=name, count=start + 1, version_id=1)
            )
            return start + 1
        return conn.execute(
            select(SequenceCounter.count).where(SequenceCounter.name == name)
        ).scalar_one()


def _best_effort_increment(name: str, start: int) -> int:
    """Tier 3: read, then blind write. No version guard."""
    with db.engine.connect() as conn:
        current = conn.execute(
            select(SequenceCounter.count).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
        if current is None:
            conn.execute(
                insert(SequenceCounter).values(name=name, count=start, version_id=1)
            )
            current = start
        next_number = current + 1
        conn.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == name)
            .values(count=next_number, version_id=SequenceCounter.version_id + 1)
        )
        conn.commit()
        return next_number


def next_sequence(name: str | None = None) -> int:
    """
    Allocate the next number of a global counter.

    Returns:
        int: the allocated value (>= ORDER_SEQUENCE_START + 1)

    Raises:
        SequencePermissionError: store refused access (not retried)
        SequenceAllocationError: every tier failed; chained to the last
            transactional failure
    """
    default_name, start, max_attempts, backoff_base = _settings()
    name = name or default_name
    log = current_app.logger

    try:
        return _optimistic_increment(name, start)
    except (SQLAlchemyError, StaleDataError) as exc:
        kind = classify_db_error(exc)
        if kind == AUTHORIZATION:
            raise _permission_error(name, exc) from exc
        if kind != CONTENTION:
            raise
        log.warning("Optimistic update of sequence '%s' conflicted, using transactions: %s", name, exc)

    last_exc: BaseException | None = None
    for attempt in range(max_attempts):
        try:
            return _transactional_increment(name, start)
        except SQLAlchemyError as exc:
            kind = classify_db_error(exc)
            if kind == AUTHORIZATION:
                raise _permission_error(name, exc) from exc
            if kind != CONTENTION:
                raise
            last_exc = exc
            log.warning(
                "Sequence '%s' transaction attempt %d/%d failed: %s",
                name, attempt + 1, max_attempts, exc,
            )
            if attempt < max_attempts - 1:
                time.sleep(backoff_delay(attempt, backoff_base))

    log.error("Sequence '%s' exhausted %d transactional attempts, trying best-effort write", name, max_attempts)
    try:
        return _best_effort_increment(name, start)
    except SQLAlchemyError as fallback_exc:
        if classify_db_error(fallback_exc) == AUTHORIZATION:
            raise _permission_error(name, fallback_exc) from fallback_exc
        raise SequenceAllocationError(
            f"Failed to allocate from sequence '{name}' after {max_attempts} attempts. "
            f"Last error: {last_exc}. Fallback error: {fallback_exc}"
        ) from last_exc


def peek_sequence(name: str | None = None) -> int:
    """Last issued value (ORDER_SEQUENCE_START when nothing was issued yet). Read only."""
    default_name, start, _, _ = _settings()
    with db.engine.connect() as conn:
        current = conn.execute(
            select(SequenceCounter.count).where(SequenceCounter.name == (name or default_name))
        ).scalar_one_or_none()
    return start if current is None else current


def ensure_sequence(name: str | None = None) -> int:
    """
    Create the counter row at its starting value if it does not exist.

    Safe to call repeatedly (idempotent); never lowers an existing counter.
    """
    default_name, start, _, _ = _settings()
    name = name or default_name
    with db.engine.begin() as conn:
        current = conn.execute(
            select(SequenceCounter.count).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
        if current is not None:
            return current
        conn.execute(insert(SequenceCounter).values(name=name, count=start, version_id=1))
        return start
