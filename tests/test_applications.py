"""Versioned writes: stale sessions, conflict retries and retry exhaustion."""

import pytest
from prometheus_client import REGISTRY

from admitpay.common.applications import (
    MAX_WRITE_ATTEMPTS,
    ApplicationNotFound,
    ConcurrentUpdateError,
    compare_and_set,
    details_of,
    mutate_application,
)
from admitpay.common.models import Application


def retry_count():
    return REGISTRY.get_sample_value("concurrent_update_retries_total", {"service": "tests"}) or 0.0


def competing_write(session_factory, key, value="set"):
    """Commit a change to application 42 from an unrelated session."""

    with session_factory() as other:
        application = other.get(Application, "42")
        details = details_of(application)
        details[key] = value
        compare_and_set(other, application, application_details=details)
        other.commit()


def test_compare_and_set_bumps_version(session_factory, make_application, load_application):
    make_application()
    before = load_application().version

    with session_factory() as db:
        application = db.get(Application, "42")
        compare_and_set(db, application, payment_status="paid")
        db.commit()
        assert application.version == before + 1

    assert load_application().payment_status == "paid"


def test_stale_session_write_is_refused(session_factory, make_application, load_application):
    make_application()

    with session_factory() as stale:
        application = stale.get(Application, "42")
        competing_write(session_factory, "reviewed_by")

        with pytest.raises(ConcurrentUpdateError):
            compare_and_set(stale, application, application_details={"overwritten": True})
        stale.rollback()

    details = load_application().application_details
    assert details["reviewed_by"] == "set"
    assert "overwritten" not in details


def test_conflict_during_first_attempt_is_retried(session_factory, make_application, load_application):
    make_application()
    before = load_application().version
    retries = retry_count()
    calls = []

    def apply(db, application):
        calls.append(application.version)
        if len(calls) == 1:
            competing_write(session_factory, "x")
        details = details_of(application)
        details["w"] = "set"
        compare_and_set(db, application, application_details=details)
        return "done"

    assert mutate_application(session_factory, "42", apply, "tests") == "done"

    assert calls == [before, before + 1]
    stored = load_application()
    assert stored.application_details["x"] == "set"
    assert stored.application_details["w"] == "set"
    assert stored.application_details["admin_filled"]["total_course_fees"] == 20000
    assert stored.version == before + 2
    assert retry_count() == retries + 1


def test_persistent_conflict_gives_up(session_factory, make_application, load_application):
    make_application()
    calls = []

    def apply(db, application):
        calls.append(application.version)
        competing_write(session_factory, f"other_{len(calls)}")
        compare_and_set(db, application, payment_status="paid")

    with pytest.raises(ConcurrentUpdateError):
        mutate_application(session_factory, "42", apply, "tests")

    assert len(calls) == MAX_WRITE_ATTEMPTS
    stored = load_application()
    assert stored.payment_status != "paid"
    assert all(stored.application_details[f"other_{n}"] == "set" for n in range(1, MAX_WRITE_ATTEMPTS + 1))


def test_missing_application_is_reported(session_factory):
    with pytest.raises(ApplicationNotFound):
        mutate_application(session_factory, "missing", lambda db, application: None)
