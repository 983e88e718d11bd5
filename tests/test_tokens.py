"""Pay-link token issuance, resolution and consumption."""

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from admitpay.common.models import Application, PaymentToken
from admitpay.common.tokens import (
    DIRECT,
    RAZORPAY,
    TokenRejected,
    generate_payment_token,
    issue_payment_token,
    mark_tokens_used,
    resolve_payment_token,
)

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def issue(session_factory, payment_type=RAZORPAY, now=NOW, expiry_days=7) -> str:
    with session_factory() as db:
        application = db.get(Application, "42")
        row = issue_payment_token(db, application, Decimal("19000"), payment_type, expiry_days=expiry_days, now=now)
        db.commit()
        return row.token


def test_generated_tokens_are_64_hex_chars():
    tokens = {generate_payment_token() for _ in range(50)}

    assert len(tokens) == 50
    assert all(re.fullmatch(r"[0-9a-f]{64}", token) for token in tokens)


def test_issue_merges_metadata_without_dropping_other_keys(session_factory, make_application, load_application):
    make_application(application_details={"application_admin_approval": "Approved", "course": "NATA"})

    token = issue(session_factory)

    details = load_application().application_details
    assert details["application_admin_approval"] == "Approved"
    assert details["course"] == "NATA"
    assert details["payment_status"] == "pending"
    metadata = details["payment_metadata"]
    assert metadata["token"] == token
    assert metadata["payable_amount"] == 19000
    assert metadata["payment_type"] == RAZORPAY
    assert metadata["token_used"] is False
    assert metadata["expires_at"] == (NOW + timedelta(days=7)).isoformat()


def test_tokens_for_both_routes_stay_resolvable(session_factory, make_application):
    make_application()
    direct = issue(session_factory, DIRECT)
    razorpay = issue(session_factory, RAZORPAY)

    with session_factory() as db:
        assert resolve_payment_token(db, direct, NOW).payment_type == DIRECT
        assert resolve_payment_token(db, razorpay, NOW).payment_type == RAZORPAY


def test_issue_does_not_reset_existing_status(session_factory, make_application, load_application):
    make_application(payment_status="failed", application_details={"payment_status": "failed"})

    issue(session_factory)

    assert load_application().payment_status == "failed"


def test_unknown_token_is_rejected(session_factory, make_application):
    make_application()

    with session_factory() as db, pytest.raises(TokenRejected) as exc_info:
        resolve_payment_token(db, "0" * 64, NOW)
    assert exc_info.value.code == "unknown"
    assert exc_info.value.reason == "Invalid or expired payment link"


def test_expired_token_is_rejected(session_factory, make_application):
    make_application()
    token = issue(session_factory, now=NOW - timedelta(days=8))

    with session_factory() as db, pytest.raises(TokenRejected) as exc_info:
        resolve_payment_token(db, token, NOW)
    assert exc_info.value.reason == "Payment link has expired"


def test_expiry_is_reported_before_used(session_factory, make_application):
    make_application()
    token = issue(session_factory, now=NOW - timedelta(days=8))
    with session_factory() as db:
        mark_tokens_used(db, "42", token=token, now=NOW)
        db.commit()

    with session_factory() as db, pytest.raises(TokenRejected) as exc_info:
        resolve_payment_token(db, token, NOW)
    assert exc_info.value.code == "expired"


def test_used_token_is_rejected(session_factory, make_application):
    make_application()
    token = issue(session_factory)
    with session_factory() as db:
        mark_tokens_used(db, "42", token=token, payment_id="pay_1", now=NOW)
        db.commit()

    with session_factory() as db, pytest.raises(TokenRejected) as exc_info:
        resolve_payment_token(db, token, NOW)
    assert exc_info.value.reason == "Payment link has already been used"


def test_mark_used_targets_only_the_matching_token(session_factory, make_application):
    make_application()
    direct = issue(session_factory, DIRECT)
    razorpay = issue(session_factory, RAZORPAY)

    with session_factory() as db:
        used = mark_tokens_used(db, "42", token=razorpay, payment_id="pay_1", now=NOW)
        db.commit()
    assert [row.token for row in used] == [razorpay]

    with session_factory() as db:
        rows = {row.token: row for row in db.execute(select(PaymentToken)).scalars()}
    assert rows[razorpay].token_used is True
    assert rows[razorpay].payment_id == "pay_1"
    assert rows[direct].token_used is False


def test_mark_used_falls_back_to_all_unused_tokens(session_factory, make_application):
    make_application()
    issue(session_factory, DIRECT)
    issue(session_factory, RAZORPAY)

    with session_factory() as db:
        used = mark_tokens_used(db, "42", token="f" * 64, link_id="plink_missing", now=NOW)
        db.commit()

    assert len(used) == 2
    assert all(row.token_used for row in used)
