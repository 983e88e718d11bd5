"""Pay-link token issuance and resolution.

A token authorizes creating a hosted payment link for one application, one
amount and one route. Tokens are stored in `payment_tokens` (indexed) and the
latest issued token is mirrored into `application_details.payment_metadata`.
"""

import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from admitpay.common.applications import compare_and_set, current_status, details_of
from admitpay.common.logging import logger
from admitpay.common.metrics import payment_tokens_issued_total
from admitpay.common.models import Application, PaymentToken
from admitpay.common.money import json_amount
from admitpay.common.state_machine import PaymentStatus

DIRECT = "direct"
RAZORPAY = "razorpay"
PAYMENT_ROUTES = (DIRECT, RAZORPAY)
TOKEN_BYTES = 32


class TokenStorageError(RuntimeError):
    """Token row or payment metadata could not be persisted."""


class TokenRejected(ValueError):
    """Token cannot authorize a payment link; message is user-facing."""

    def __init__(self, reason: str, code: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code


def generate_payment_token() -> str:
    """64 hex characters from 32 bytes of OS randomness."""

    return secrets.token_hex(TOKEN_BYTES)


def as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def issue_payment_token(
    db,
    application: Application,
    amount: Decimal,
    payment_type: str,
    expiry_days: int = 7,
    now: datetime | None = None,
    service_name: str = "admitpay",
) -> PaymentToken:
    """Store a new token and merge its metadata into `application_details`.

    Other keys of `application_details` are preserved. Storage failures are
    raised as `TokenStorageError`; version conflicts propagate unchanged so the
    caller can retry.
    """

    now = now or datetime.now(timezone.utc)
    row = PaymentToken(
        token=generate_payment_token(),
        application_id=application.id,
        payment_type=str(payment_type),
        payable_amount=amount,
        generated_at=now,
        expires_at=now + timedelta(days=expiry_days),
        token_used=False,
    )
    details = details_of(application)
    details["payment_metadata"] = {
        "token": row.token,
        "expires_at": row.expires_at.isoformat(),
        "payable_amount": json_amount(amount),
        "payment_type": row.payment_type,
        "token_used": False,
        "generated_at": now.isoformat(),
    }
    values = {"application_details": details}
    if current_status(application) is None:
        details["payment_status"] = PaymentStatus.PENDING.value
        values["payment_status"] = PaymentStatus.PENDING.value

    try:
        db.add(row)
        db.flush()
        compare_and_set(db, application, **values)
    except SQLAlchemyError as exc:
        logger.error("payment_token_store_failed id=%s error=%s", application.id, exc)
        raise TokenStorageError("Failed to store payment metadata") from exc

    payment_tokens_issued_total.labels(service=service_name, payment_type=row.payment_type).inc()
    return row


def find_token(db, token: str) -> PaymentToken | None:
    return db.execute(select(PaymentToken).where(PaymentToken.token == token)).scalar_one_or_none()


def resolve_payment_token(db, token: str, now: datetime | None = None) -> PaymentToken:
    """Return the token row if it may still authorize a payment link.

    Expiry is checked before the used flag, so an expired token is reported as
    expired whether or not it was used.
    """

    now = now or datetime.now(timezone.utc)
    row = find_token(db, token)
    if row is None:
        raise TokenRejected("Invalid or expired payment link", "unknown")
    if as_utc(row.expires_at) < now:
        raise TokenRejected("Payment link has expired", "expired")
    if row.token_used:
        raise TokenRejected("Payment link has already been used", "used")
    return row


def mark_tokens_used(
    db,
    application_id: str,
    token: str | None = None,
    link_id: str | None = None,
    payment_id: str | None = None,
    now: datetime | None = None,
) -> list[PaymentToken]:
    """Flip `token_used` on the tokens a confirmed payment consumed.

    Matches by token string, then by payment link id, then falls back to every
    unused token of the application.
    """

    now = now or datetime.now(timezone.utc)
    base = select(PaymentToken).where(PaymentToken.application_id == application_id)
    rows: list[PaymentToken] = []
    if token:
        rows = list(db.execute(base.where(PaymentToken.token == token)).scalars())
    if not rows and link_id:
        rows = list(db.execute(base.where(PaymentToken.payment_link_id == link_id)).scalars())
    if not rows:
        rows = list(db.execute(base.where(PaymentToken.token_used.is_(False))).scalars())
    for row in rows:
        if row.token_used:
            continue
        row.token_used = True
        row.used_at = now
        row.payment_id = payment_id
    return rows
