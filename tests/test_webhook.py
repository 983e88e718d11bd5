"""Webhook verification, reconciliation, dedupe and dead letters."""

import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import select

from admitpay.common.models import Application, PaymentToken, WebhookDeadLetter
from admitpay.common.tokens import DIRECT, RAZORPAY, issue_payment_token
from admitpay.services.payments import main
from admitpay.services.payments.webhook import WebhookService, compute_signature, verify_signature

SECRET = "whsec-test"


@pytest.fixture
def webhooks(session_factory):
    return WebhookService(session_factory, SECRET)


@pytest.fixture
def approved(session_factory, make_application):
    """Application 42 with both route tokens issued and a link on the razorpay one."""

    make_application()
    with session_factory() as db:
        application = db.get(Application, "42")
        tokens = {route: issue_payment_token(db, application, Decimal("19000"), route) for route in (DIRECT, RAZORPAY)}
        tokens[RAZORPAY].payment_link_id = "plink_1"
        db.commit()
        return {route: row.token for route, row in tokens.items()}


def event_body(event="payment_link.paid", notes=None, payment_id="pay_1", link_id="plink_1", amount=1900000) -> bytes:
    notes = {} if notes is None else notes
    body = {
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "amount": amount,
                    "currency": "INR",
                    "status": "captured",
                    "method": "upi",
                    "order_id": "order_1",
                    "notes": notes,
                }
            },
            "payment_link": {"entity": {"id": link_id, "status": "paid", "notes": notes}},
        },
    }
    return json.dumps(body).encode("utf-8")


def deliver(webhooks, body, event_id="evt_1", signature=None):
    return webhooks.handle(body, signature or compute_signature(SECRET, body), event_id)


def anomaly_count(from_state, to_state):
    value = REGISTRY.get_sample_value(
        "payment_status_anomalies_total",
        {"service": "payments", "from_state": from_state, "to_state": to_state},
    )
    return value or 0.0


def test_signature_round_trip_and_bit_flip():
    body = b'{"event":"payment.captured"}'
    signature = compute_signature(SECRET, body)

    assert verify_signature(SECRET, body, signature)
    flipped = ("0" if signature[0] != "0" else "1") + signature[1:]
    assert not verify_signature(SECRET, body, flipped)
    assert not verify_signature(SECRET, body + b" ", signature)
    assert not verify_signature("", body, signature)


def test_missing_signature_is_rejected(webhooks):
    result = webhooks.handle(event_body(), None)

    assert result.status_code == 400
    assert result.body == {"error": "Missing signature"}


def test_invalid_signature_is_rejected(webhooks, approved, load_application):
    result = deliver(webhooks, event_body(notes={"application_id": "42"}), signature="ab" * 32)

    assert result.status_code == 400
    assert result.body == {"error": "Invalid signature"}
    assert load_application().payment_status == "pending"


def test_unparseable_body_is_rejected(webhooks):
    body = b"not json"

    assert deliver(webhooks, body).body == {"error": "Invalid payload"}


def test_paid_event_marks_application_and_token(webhooks, approved, load_application, session_factory):
    notes = {"application_id": "42", "payment_token": approved[RAZORPAY], "payment_type": RAZORPAY}

    result = deliver(webhooks, event_body(notes=notes))

    assert result.status_code == 200
    assert result.body == {"received": True}
    application = load_application()
    details = application.application_details
    assert application.payment_status == "paid"
    assert details["payment_status"] == "paid"
    assert details["razorpay_payment_id"] == "pay_1"
    assert details["razorpay_order_id"] == "order_1"
    assert details["payment_method"] == "upi"
    assert details["payment_at"]
    assert details["payment_metadata"]["token_used"] is True
    assert details["payment_metadata"]["payment_id"] == "pay_1"
    entry, = details["payment_history"]
    assert entry["event"] == "payment_link.paid"
    assert entry["amount"] == 19000
    assert entry["payment_id"] == "pay_1"
    assert entry["webhook_payload"]["event"] == "payment_link.paid"

    with session_factory() as db:
        rows = {row.token: row for row in db.execute(select(PaymentToken)).scalars()}
    assert rows[approved[RAZORPAY]].token_used is True
    assert rows[approved[DIRECT]].token_used is False


def test_application_found_by_link_id_when_notes_are_empty(webhooks, approved, load_application):
    result = deliver(webhooks, event_body(notes=[]))

    assert result.status_code == 200
    assert load_application().payment_status == "paid"


def test_application_found_by_link_id_in_details(webhooks, make_application, load_application):
    make_application(application_details={"payment_link_id": "plink_legacy", "payment_status": "payment_link_created"})

    deliver(webhooks, event_body(notes=[], link_id="plink_legacy"))

    assert load_application().payment_status == "paid"


def test_redelivery_is_acknowledged_without_new_history(webhooks, approved, load_application):
    body = event_body(notes={"application_id": "42"})

    first = deliver(webhooks, body, event_id="evt_same")
    second = deliver(webhooks, body, event_id="evt_same")

    assert first.body == {"received": True}
    assert second.status_code == 200
    assert second.body == {"received": True, "duplicate": True}
    assert len(load_application().application_details["payment_history"]) == 1


def test_body_digest_dedupes_when_event_id_header_is_missing(webhooks, approved, load_application):
    body = event_body(notes={"application_id": "42"})
    signature = compute_signature(SECRET, body)

    webhooks.handle(body, signature, None)
    second = webhooks.handle(body, signature, None)

    assert second.body["duplicate"] is True
    assert len(load_application().application_details["payment_history"]) == 1


def test_failed_after_paid_is_logged_not_applied(webhooks, approved, load_application):
    before = anomaly_count("paid", "failed")
    deliver(webhooks, event_body(notes={"application_id": "42"}), event_id="evt_paid")

    result = deliver(
        webhooks,
        event_body(event="payment.failed", notes={"application_id": "42"}, payment_id="pay_2"),
        event_id="evt_failed",
    )

    assert result.status_code == 200
    application = load_application()
    assert application.payment_status == "paid"
    assert [entry["event"] for entry in application.application_details["payment_history"]] == [
        "payment_link.paid",
        "payment.failed",
    ]
    assert anomaly_count("paid", "failed") == before + 1


def test_failed_payment_can_be_followed_by_success(webhooks, approved, load_application):
    deliver(webhooks, event_body(event="payment.failed", notes={"application_id": "42"}), event_id="evt_1")
    assert load_application().payment_status == "failed"

    deliver(webhooks, event_body(notes={"application_id": "42"}, payment_id="pay_2"), event_id="evt_2")

    assert load_application().payment_status == "paid"


def test_informational_event_only_appends_history(webhooks, approved, load_application):
    deliver(webhooks, event_body(event="payment.authorized", notes={"application_id": "42"}))

    application = load_application()
    assert application.payment_status == "pending"
    assert len(application.application_details["payment_history"]) == 1


def test_unmatched_event_is_dead_lettered_and_replayable(webhooks, make_application, load_application, session_factory):
    body = event_body(notes={"application_id": "77"}, link_id="plink_unknown")

    result = deliver(webhooks, body, event_id="evt_orphan")

    assert result.status_code == 200
    letter, = webhooks.list_dead_letters()
    assert letter.reason == "application_not_found"
    assert letter.event_id == "evt_orphan"
    assert json.loads(letter.payload)["event"] == "payment_link.paid"
    assert deliver(webhooks, body, event_id="evt_orphan").body["duplicate"] is True

    make_application("77")
    replayed = webhooks.replay_dead_letter(letter.id)

    assert replayed.status_code == 200
    assert load_application("77").payment_status == "paid"
    assert webhooks.list_dead_letters() == []
    with session_factory() as db:
        assert db.get(WebhookDeadLetter, letter.id).replayed_at is not None


def test_replaying_a_dead_letter_twice_applies_it_once(webhooks, make_application, load_application):
    body = event_body(notes={"application_id": "77"}, link_id="plink_77")
    deliver(webhooks, body, event_id="evt_orphan")
    letter, = webhooks.list_dead_letters()
    make_application("77")

    first = webhooks.replay_dead_letter(letter.id)
    second = webhooks.replay_dead_letter(letter.id)

    assert first.status_code == 200
    assert first.body == {"received": True}
    assert second.status_code == 200
    assert second.body["duplicate"] is True
    history = load_application("77").application_details["payment_history"]
    assert [entry["event_id"] for entry in history] == ["evt_orphan"]


def test_replay_skips_event_already_in_history(session_factory, webhooks, make_application, load_application):
    body = event_body(notes={"application_id": "77"}, link_id="plink_77")
    deliver(webhooks, body, event_id="evt_orphan")
    letter, = webhooks.list_dead_letters()
    make_application("77")
    webhooks.replay_dead_letter(letter.id)
    with session_factory() as db:
        db.get(WebhookDeadLetter, letter.id).replayed_at = None
        db.commit()

    result = webhooks.replay_dead_letter(letter.id)

    assert result.body["duplicate"] is True
    assert len(load_application("77").application_details["payment_history"]) == 1
    assert webhooks.list_dead_letters() == []


def test_any_single_bit_flip_in_body_is_rejected(webhooks, approved, load_application):
    body = event_body(notes={"application_id": "42"})
    signature = compute_signature(SECRET, body)

    for pos in (0, 1, len(body) // 2, len(body) - 2, len(body) - 1):
        for k in (0, 3, 7):
            flipped = bytes(b ^ (1 << k) if i == pos else b for i, b in enumerate(body))
            result = webhooks.handle(flipped, signature, "evt_flip")

            assert result.status_code == 400, (pos, k)
            assert result.body == {"error": "Invalid signature"}

    assert load_application().payment_status == "pending"
    assert webhooks.list_dead_letters() == []


def test_event_without_any_reference_is_dead_lettered(webhooks):
    body = json.dumps({"event": "payment.captured", "payload": {}}).encode("utf-8")

    result = deliver(webhooks, body)

    assert result.status_code == 200
    assert webhooks.list_dead_letters()[0].reason == "no_application_id"


def test_webhook_endpoint(monkeypatch, webhooks, approved, load_application):
    monkeypatch.setattr(main, "webhooks", webhooks)
    client = TestClient(main.app)
    body = event_body(notes={"application_id": "42"})

    resp = client.post(
        "/api/razorpay/webhook",
        content=body,
        headers={
            "content-type": "application/json",
            "x-razorpay-signature": compute_signature(SECRET, body),
            "x-razorpay-event-id": "evt_http",
        },
    )
    bad = client.post("/api/razorpay/webhook", content=body, headers={"x-razorpay-signature": "00"})

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert load_application().payment_status == "paid"
    assert bad.status_code == 400
    assert bad.json() == {"error": "Invalid signature"}
