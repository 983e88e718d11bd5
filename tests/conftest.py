"""Shared fixtures: in-memory database and application factory."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec-test")
os.environ.setdefault("APP_BASE_URL", "https://portal.test")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "0")

import pytest  # noqa: E402

from admitpay.common.db import Base, make_engine, make_session_factory  # noqa: E402
from admitpay.common.models import Application  # noqa: E402


@pytest.fixture
def session_factory():
    """Fresh in-memory schema per test."""

    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def make_application(session_factory):
    """Insert one application row; keyword arguments override the defaults."""

    def _make(application_id: str = "42", **overrides) -> Application:
        values = {
            "id": application_id,
            "email": "student@example.com",
            "student_name": "Asha",
            "selected_course": "NATA Crash Course",
            "application_details": {
                "admin_filled": {
                    "final_course_Name": "NATA Crash Course",
                    "course_duration": "3 months",
                    "total_course_fees": 20000,
                    "discount": 1000,
                    "payment_options": "partial",
                },
            },
        }
        values.update(overrides)
        with session_factory() as db:
            application = Application(**values)
            db.add(application)
            db.commit()
            return application

    return _make


@pytest.fixture
def load_application(session_factory):
    """Read back one application row by id."""

    def _load(application_id: str = "42") -> Application:
        with session_factory() as db:
            return db.get(Application, application_id)

    return _load
