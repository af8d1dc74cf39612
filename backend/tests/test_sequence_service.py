import threading

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm.exc import StaleDataError

from tradein.extensions import db
from tradein.services import sequence_service
from tradein.services.sequence_service import (
    SequenceAllocationError,
    SequencePermissionError,
    ensure_sequence,
    next_sequence,
    peek_sequence,
)


def _locked():
    return OperationalError("UPDATE sequence_counters", {}, Exception("database is locked"))


def _readonly():
    return OperationalError("UPDATE sequence_counters", {}, Exception("attempt to write a readonly database"))


def _always(exc_factory):
    def _fail(name, start):
        raise exc_factory()
    return _fail


@pytest.fixture
def sleeps(monkeypatch):
    delays = []
    monkeypatch.setattr(sequence_service.time, "sleep", delays.append)
    return delays


def test_first_value_is_start_plus_one(app):
    assert peek_sequence() == 1000
    assert next_sequence() == 1001
    assert next_sequence() == 1002
    assert peek_sequence() == 1002


def test_counters_are_independent_by_name(app):
    assert next_sequence("orderId") == 1001
    assert next_sequence("other") == 1001
    assert next_sequence("orderId") == 1002


def test_ensure_sequence_is_idempotent_and_never_lowers(app):
    assert ensure_sequence() == 1000
    assert ensure_sequence() == 1000
    next_sequence()
    next_sequence()
    assert ensure_sequence() == 1002
    assert next_sequence() == 1003


def test_allocation_commits_independently_of_caller(app):
    value = next_sequence()
    db.session.rollback()
    assert peek_sequence() == value


def test_optimistic_conflict_falls_back_to_transactional_tier(app, monkeypatch, sleeps):
    def conflicting(name, start):
        raise StaleDataError("UPDATE statement on table 'sequence_counters' expected to update 1 row(s); 0 were matched.")

    monkeypatch.setattr(sequence_service, "_optimistic_increment", conflicting)

    assert next_sequence() == 1001
    assert next_sequence() == 1002
    assert peek_sequence() == 1002
    assert sleeps == []


def test_transactional_exhaustion_uses_best_effort_write(app, monkeypatch, sleeps):
    calls = []

    def locked_transaction(name, start):
        calls.append(name)
        raise _locked()

    monkeypatch.setattr(sequence_service, "_optimistic_increment", _always(_locked))
    monkeypatch.setattr(sequence_service, "_transactional_increment", locked_transaction)

    assert next_sequence() == 1001
    assert len(calls) == 5
    assert sleeps == pytest.approx([0.01, 0.02, 0.04, 0.08])
    assert peek_sequence() == 1001


def test_permission_error_is_raised_immediately(app, monkeypatch, sleeps):
    calls = []

    def denied(name, start):
        raise _readonly()

    def transactional(name, start):
        calls.append(name)
        return 9999

    monkeypatch.setattr(sequence_service, "_optimistic_increment", denied)
    monkeypatch.setattr(sequence_service, "_transactional_increment", transactional)

    with pytest.raises(SequencePermissionError):
        next_sequence()
    assert calls == []
    assert sleeps == []


def test_permission_error_in_transactional_tier_stops_retries(app, monkeypatch, sleeps):
    attempts = []

    def transactional(name, start):
        attempts.append(name)
        if len(attempts) == 1:
            raise _locked()
        raise _readonly()

    monkeypatch.setattr(sequence_service, "_optimistic_increment", _always(_locked))
    monkeypatch.setattr(sequence_service, "_transactional_increment", transactional)

    with pytest.raises(SequencePermissionError):
        next_sequence()
    assert len(attempts) == 2
    assert sleeps == pytest.approx([0.01])


def test_total_failure_raises_allocation_error(app, monkeypatch, sleeps):
    last = {}

    def transactional(name, start):
        last["exc"] = _locked()
        raise last["exc"]

    def best_effort(name, start):
        raise _locked()

    monkeypatch.setattr(sequence_service, "_optimistic_increment", _always(_locked))
    monkeypatch.setattr(sequence_service, "_transactional_increment", transactional)
    monkeypatch.setattr(sequence_service, "_best_effort_increment", best_effort)

    with pytest.raises(SequenceAllocationError) as excinfo:
        next_sequence()
    assert not isinstance(excinfo.value, SequencePermissionError)
    assert excinfo.value.__cause__ is last["exc"]
    assert peek_sequence() == 1000


def test_unexpected_errors_propagate_unchanged(app, monkeypatch, sleeps):
    def broken(name, start):
        raise ProgrammingError("SELECT", {}, Exception("no such column: count"))

    monkeypatch.setattr(sequence_service, "_optimistic_increment", broken)

    with pytest.raises(ProgrammingError):
        next_sequence()
    assert sleeps == []


def test_concurrent_allocations_are_unique(app):
    allocated = []
    errors = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                for _ in range(5):
                    value = next_sequence()
                    with lock:
                        allocated.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(allocated) == 40
    assert len(set(allocated)) == 40
    assert min(allocated) >= 1001
    assert peek_sequence() == max(allocated)
