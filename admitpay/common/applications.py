"""Versioned read-modify-write helpers for application rows.

Every write is guarded by `(id, version)` so a writer that read a stale copy of
the JSON sub-documents fails instead of overwriting another writer's change.
"""

import copy
from datetime import datetime, timezone

from sqlalchemy import update

from admitpay.common.logging import logger
from admitpay.common.metrics import concurrent_update_retries_total
from admitpay.common.models import Application
from admitpay.common.state_machine import PaymentStatus, parse_status

MAX_WRITE_ATTEMPTS = 3


class ApplicationNotFound(LookupError):
    """No application row with the requested id."""


class ConcurrentUpdateError(RuntimeError):
    """The row version changed between read and write."""


def details_of(application: Application) -> dict:
    """Deep copy of `application_details`, safe to mutate before a write."""

    return copy.deepcopy(application.application_details or {})


def current_status(application: Application) -> PaymentStatus | None:
    """Payment status from the column, falling back to the JSON mirror."""

    status = parse_status(application.payment_status)
    if status is None:
        status = parse_status((application.application_details or {}).get("payment_status"))
    return status


def compare_and_set(db, application: Application, **values) -> None:
    """Apply one conditional update and reload the row.

    Raises `ConcurrentUpdateError` when the stored version no longer matches the
    version this session read.
    """

    expected_version = application.version
    result = db.execute(
        update(Application)
        .where(Application.id == application.id, Application.version == expected_version)
        .values(**values, version=expected_version + 1, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentUpdateError(
            f"optimistic concurrency conflict for application {application.id} "
            f"(expected version {expected_version})"
        )
    db.refresh(application)


def mutate_application(session_factory, application_id: str, apply, service_name: str = "admitpay"):
    """Load, mutate and commit one application, retrying on version conflicts.

    `apply(db, application)` performs its writes through `compare_and_set` and
    may add other rows to the same session; its return value is passed back.
    """

    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        with session_factory() as db:
            application = db.get(Application, application_id)
            if application is None:
                raise ApplicationNotFound(application_id)
            try:
                result = apply(db, application)
                db.commit()
                return result
            except ConcurrentUpdateError:
                db.rollback()
                if attempt == MAX_WRITE_ATTEMPTS:
                    raise
                concurrent_update_retries_total.labels(service=service_name).inc()
                logger.warning(
                    "application_write_conflict id=%s attempt=%s",
                    application_id,
                    attempt,
                )
    raise ConcurrentUpdateError(f"could not update application {application_id}")
