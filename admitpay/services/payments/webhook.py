"""Gateway webhook verification and payment reconciliation.

Each verified delivery is keyed by the gateway event id (or a digest of the
raw body when the header is absent) so redeliveries are acknowledged without
touching the application again. Deliveries that match no application are kept
as dead letters and still acknowledged, which stops gateway retries.
"""

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from admitpay.common.applications import (
    ApplicationNotFound,
    compare_and_set,
    current_status,
    details_of,
    mutate_application,
)
from admitpay.common.logging import application_id_ctx, logger
from admitpay.common.metrics import (
    duplicate_webhooks_skipped_total,
    payment_status_anomalies_total,
    webhook_dead_letters_total,
    webhook_signature_failures_total,
    webhooks_received_total,
)
from admitpay.common.models import Application, PaymentToken, WebhookDeadLetter, WebhookEvent
from admitpay.common.money import from_minor_units, json_amount
from admitpay.common.state_machine import (
    InvalidTransition,
    PaymentStatus,
    classify_event,
    validate_transition,
)
from admitpay.common.tokens import mark_tokens_used

RECEIVED = {"received": True}


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    body: dict


class DuplicateEvent(Exception):
    pass


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Constant-time check of the hex HMAC-SHA256 of the raw body."""

    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature.strip())


def _notes(entity) -> dict:
    # The gateway sends `notes: []` when no notes were set.
    notes = entity.get("notes") if isinstance(entity, dict) else None
    return notes if isinstance(notes, dict) else {}


def extract_entities(payload: dict) -> tuple[dict | None, dict | None]:
    """(payment entity, payment link entity) from an event body."""

    inner = payload.get("payload") or {}
    if not isinstance(inner, dict):
        return None, None
    payment = (inner.get("payment") or {}).get("entity")
    link = (inner.get("payment_link") or {}).get("entity")
    return (
        payment if isinstance(payment, dict) else None,
        link if isinstance(link, dict) else None,
    )


class WebhookService:
    """Applies verified gateway events to application payment state."""

    def __init__(self, session_factory, secret: str, service_name: str = "payments") -> None:
        self.session_factory = session_factory
        self.secret = secret
        self.service_name = service_name

    def handle(
        self,
        body: bytes,
        signature: str | None,
        event_id: str | None = None,
        now: datetime | None = None,
    ) -> WebhookResult:
        """Verify, de-duplicate and apply one raw webhook delivery."""

        if not signature:
            webhook_signature_failures_total.labels(service=self.service_name).inc()
            logger.warning("webhook_rejected reason=missing_signature")
            return WebhookResult(400, {"error": "Missing signature"})
        if not verify_signature(self.secret, body, signature):
            webhook_signature_failures_total.labels(service=self.service_name).inc()
            logger.warning("webhook_rejected reason=invalid_signature")
            return WebhookResult(400, {"error": "Invalid signature"})

        try:
            payload = json.loads(body)
        except ValueError:
            return WebhookResult(400, {"error": "Invalid payload"})
        if not isinstance(payload, dict):
            return WebhookResult(400, {"error": "Invalid payload"})

        event_id = event_id or hashlib.sha256(body).hexdigest()
        event = payload.get("event") or "(unknown)"
        webhooks_received_total.labels(service=self.service_name, event=event).inc()
        logger.info("webhook_received event=%s event_id=%s", event, event_id)
        return self.process(payload, body.decode("utf-8", errors="replace"), event_id, now)

    def _seen(self, db, event_id: str) -> bool:
        return db.get(WebhookEvent, event_id) is not None

    def _skip_duplicate(self, event_id: str) -> WebhookResult:
        duplicate_webhooks_skipped_total.labels(service=self.service_name).inc()
        logger.info("duplicate webhook skipped event_id=%s", event_id)
        return WebhookResult(200, {"received": True, "duplicate": True})

    def resolve_application_id(self, db, payment: dict | None, link: dict | None) -> str | None:
        """Application id from entity notes, else by payment link id."""

        for entity in (payment, link):
            application_id = _notes(entity).get("application_id")
            if application_id:
                return str(application_id)
        link_id = (link or {}).get("id") or (payment or {}).get("payment_link_id")
        if not link_id:
            return None
        token_row = db.execute(
            select(PaymentToken).where(PaymentToken.payment_link_id == link_id).limit(1)
        ).scalar_one_or_none()
        if token_row is not None:
            return token_row.application_id
        return db.execute(
            select(Application.id)
            .where(Application.application_details["payment_link_id"].as_string() == link_id)
            .limit(1)
        ).scalar_one_or_none()

    def _dead_letter(self, event_id: str, event: str, reason: str, raw_body: str) -> WebhookResult:
        with self.session_factory() as db:
            if not self._seen(db, event_id):
                db.add(WebhookEvent(event_id=event_id, event=event, application_id=None))
            db.add(WebhookDeadLetter(event_id=event_id, event=event, reason=reason, payload=raw_body))
            db.commit()
        webhook_dead_letters_total.labels(service=self.service_name, reason=reason).inc()
        logger.warning("webhook_dead_lettered event=%s event_id=%s reason=%s", event, event_id, reason)
        return WebhookResult(200, dict(RECEIVED))

    def process(
        self,
        payload: dict,
        raw_body: str,
        event_id: str,
        now: datetime | None = None,
        record_inbox: bool = True,
    ) -> WebhookResult:
        now = now or datetime.now(timezone.utc)
        event = payload.get("event") or "(unknown)"
        payment, link = extract_entities(payload)

        with self.session_factory() as db:
            if record_inbox and self._seen(db, event_id):
                return self._skip_duplicate(event_id)
            application_id = self.resolve_application_id(db, payment, link)

        if not application_id:
            logger.warning("webhook could not extract application_id event=%s", event)
            return self._dead_letter(event_id, event, "no_application_id", raw_body)

        application_id_ctx.set(application_id)
        try:
            new_status = mutate_application(
                self.session_factory,
                application_id,
                lambda db, application: self._apply(
                    db, application, payload, event, event_id, payment, link, now, record_inbox
                ),
                self.service_name,
            )
        except ApplicationNotFound:
            return self._dead_letter(event_id, event, "application_not_found", raw_body)
        except DuplicateEvent:
            return self._skip_duplicate(event_id)

        logger.info(
            "webhook_processed event=%s id=%s status=%s",
            event,
            application_id,
            new_status.value if new_status else None,
        )
        return WebhookResult(200, dict(RECEIVED))

    def _apply(
        self,
        db,
        application: Application,
        payload: dict,
        event: str,
        event_id: str,
        payment: dict | None,
        link: dict | None,
        now: datetime,
        record_inbox: bool,
    ) -> PaymentStatus | None:
        if record_inbox:
            db.add(WebhookEvent(event_id=event_id, event=event, application_id=application.id))
            try:
                db.flush()
            except IntegrityError as exc:
                raise DuplicateEvent(event_id) from exc
        elif any(
            isinstance(entry, dict) and entry.get("event_id") == event_id
            for entry in (application.application_details or {}).get("payment_history") or []
        ):
            raise DuplicateEvent(event_id)

        entity = payment or link or {}
        amount = from_minor_units(entity.get("amount"))
        details = details_of(application)
        history = details.get("payment_history")
        if not isinstance(history, list):
            history = []
        history.append(
            {
                "event": event,
                "event_id": event_id,
                "payment_id": entity.get("id"),
                "amount": json_amount(amount) if amount is not None else None,
                "method": entity.get("method"),
                "status": entity.get("status"),
                "received_at": now.isoformat(),
                "webhook_payload": payload,
            }
        )
        details["payment_history"] = history

        status = current_status(application) or PaymentStatus.PENDING
        target = classify_event(event)
        if target is not None and target != status:
            try:
                validate_transition(status, target)
            except InvalidTransition as exc:
                payment_status_anomalies_total.labels(
                    service=self.service_name,
                    from_state=status.value,
                    to_state=target.value,
                ).inc()
                logger.warning("payment_status_anomaly id=%s event=%s error=%s", application.id, event, exc)
            else:
                status = target

        payment_id = (payment or {}).get("id")
        if target == PaymentStatus.PAID and status == PaymentStatus.PAID:
            details["payment_at"] = details.get("payment_at") or now.isoformat()
            notes_token = _notes(payment).get("payment_token") or _notes(link).get("payment_token")
            used = mark_tokens_used(
                db,
                application.id,
                token=notes_token,
                link_id=(link or {}).get("id") or (payment or {}).get("payment_link_id"),
                payment_id=payment_id,
                now=now,
            )
            metadata = details.get("payment_metadata")
            if isinstance(metadata, dict) and (
                not used or any(row.token == metadata.get("token") for row in used)
            ):
                metadata["token_used"] = True
                metadata["used_at"] = now.isoformat()
                metadata["payment_id"] = payment_id

        details["payment_status"] = status.value
        if entity.get("method"):
            details["payment_method"] = entity["method"]
        if payment_id:
            details["razorpay_payment_id"] = payment_id
        if (payment or {}).get("order_id"):
            details["razorpay_order_id"] = payment["order_id"]

        compare_and_set(db, application, application_details=details, payment_status=status.value)
        return status

    def replay_dead_letter(self, dead_letter_id: str, now: datetime | None = None) -> WebhookResult:
        """Re-run a stored unmatched delivery, e.g. after the row was restored."""

        with self.session_factory() as db:
            letter = db.get(WebhookDeadLetter, dead_letter_id)
            if letter is None:
                raise LookupError(f"dead letter {dead_letter_id} not found")
            if letter.replayed_at is not None:
                return self._skip_duplicate(letter.event_id)
            raw_body, event_id = letter.payload, letter.event_id

        payload = json.loads(raw_body)
        event = payload.get("event") or "(unknown)"
        payment, link = extract_entities(payload)
        with self.session_factory() as db:
            application_id = self.resolve_application_id(db, payment, link)
        if not application_id:
            return WebhookResult(404, {"error": "Application still not found"})

        try:
            mutate_application(
                self.session_factory,
                application_id,
                lambda db, application: self._apply(
                    db, application, payload, event, event_id, payment, link, now or datetime.now(timezone.utc), False
                ),
                self.service_name,
            )
        except ApplicationNotFound:
            return WebhookResult(404, {"error": "Application still not found"})
        except DuplicateEvent:
            self._mark_replayed(dead_letter_id)
            return self._skip_duplicate(event_id)

        self._mark_replayed(dead_letter_id)
        logger.info("dead_letter_replayed id=%s event_id=%s application_id=%s", dead_letter_id, event_id, application_id)
        return WebhookResult(200, dict(RECEIVED))

    def _mark_replayed(self, dead_letter_id: str) -> None:
        with self.session_factory() as db:
            letter = db.get(WebhookDeadLetter, dead_letter_id)
            letter.replayed_at = datetime.now(timezone.utc)
            db.commit()

    def list_dead_letters(self, include_replayed: bool = False) -> list[WebhookDeadLetter]:
        with self.session_factory() as db:
            query = select(WebhookDeadLetter).order_by(WebhookDeadLetter.created_at)
            if not include_replayed:
                query = query.where(WebhookDeadLetter.replayed_at.is_(None))
            return list(db.execute(query).scalars())
