"""Application review workflow.

Records the admin decision first, then (on approval) computes the fee, issues
one pay-link token per route and emails the applicant. Failures after the
decision is stored never undo it; they are reported in the response note.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError

from admitpay.common.applications import (
    ApplicationNotFound,
    compare_and_set,
    current_status,
    details_of,
    mutate_application,
)
from admitpay.common.logging import logger
from admitpay.common.metrics import approval_emails_total, approvals_processed_total
from admitpay.common.models import Application
from admitpay.common.money import ZERO, first_amount, json_amount
from admitpay.common.tokens import DIRECT, PAYMENT_ROUTES, RAZORPAY, TokenStorageError, issue_payment_token
from admitpay.services.approvals.emails import ApprovalEmail, render_approval_email, render_rejection_email
from admitpay.services.approvals.mailer import MailError

APPROVED = "Approved"
REJECTED = "Rejected"
APPROVAL_SUBJECT = "Your application is approved – complete payment"
REJECTION_SUBJECT = "Your application status – rejected"


class DecisionStorageError(RuntimeError):
    """The review decision itself could not be written."""


@dataclass(frozen=True)
class FeeSummary:
    course_name: str
    course_duration: str
    total_course_fees: Decimal
    discount: Decimal
    final_fee_payment: Decimal
    payment_option_text: str


@dataclass
class ApprovalOutcome:
    updated: dict
    email_sent: bool = False
    note: str | None = None
    payment_tokens: dict[str, str] = field(default_factory=dict)
    payment_url: str | None = None
    payment_amount: Decimal | None = None

    def as_response(self) -> dict:
        body = {"ok": True, "updated": self.updated, "emailSent": self.email_sent}
        if self.note:
            body["note"] = self.note
        if self.payment_tokens:
            body["paymentToken"] = self.payment_tokens[RAZORPAY]
            body["paymentUrl"] = self.payment_url
            body["paymentAmount"] = json_amount(self.payment_amount)
        return body


def admin_filled_of(application: Application) -> dict:
    """Admin-entered course/fee document, wherever this record's schema put it."""

    details = application.application_details or {}
    for candidate in (
        details.get("admin_filled"),
        details.get("admin_filled_details"),
        application.admin_filled,
    ):
        if isinstance(candidate, dict) and candidate:
            return candidate
    return {}


def compute_fees(application: Application) -> FeeSummary:
    """Course figures with fallbacks for the older flat fee columns."""

    details = application.application_details or {}
    admin_filled = admin_filled_of(application)
    total = first_amount(admin_filled.get("total_course_fees"), application.course_fee)
    discount = first_amount(admin_filled.get("discount"), application.discount)
    final = first_amount(
        admin_filled.get("final_fee_payment_amount"),
        admin_filled.get("full_amount_after_discount"),
        application.total_payable,
    )
    if not final:
        final = max(ZERO, total - discount)

    option = admin_filled.get("payment_options")
    if isinstance(option, list):
        option = option[0] if option else None
    option_text = "Full Payment" if str(option or "partial").lower() == "full" else "Instalments"

    return FeeSummary(
        course_name=admin_filled.get("final_course_Name")
        or application.selected_course
        or details.get("course")
        or "N/A",
        course_duration=admin_filled.get("course_duration") or "N/A",
        total_course_fees=total,
        discount=discount,
        final_fee_payment=final,
        payment_option_text=option_text,
    )


def recipient_of(application: Application) -> str | None:
    return application.email or (application.contact or {}).get("email") or None


def applicant_name_of(application: Application) -> str:
    return (
        application.student_name
        or (application.basic or {}).get("student_name")
        or application.name
        or "Student"
    )


class ApprovalService:
    """Owns approval decisions, token issuance for both routes, and mail."""

    def __init__(
        self,
        session_factory,
        mailer,
        base_url: str,
        help_desk_email: str,
        token_ttl_days: int = 7,
        service_name: str = "approvals",
    ) -> None:
        self.session_factory = session_factory
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")
        self.help_desk_email = help_desk_email
        self.token_ttl_days = token_ttl_days
        self.service_name = service_name

    def pay_url(self, token: str, payment_type: str) -> str:
        return f"{self.base_url}/api/pay?{urlencode({'v': token, 'type': payment_type})}"

    def get_application(self, application_id: str) -> Application:
        with self.session_factory() as db:
            application = db.get(Application, application_id)
            if application is None:
                raise ApplicationNotFound(application_id)
            return application

    def record_decision(self, application_id: str, status: str, approver: str, now: datetime) -> Application:
        """Write `application_admin_approval`, `approved_by`, `approved_at`."""

        def apply(db, application: Application) -> Application:
            details = details_of(application)
            details["application_admin_approval"] = status
            details["approved_by"] = approver
            details["approved_at"] = now.isoformat()
            compare_and_set(db, application, application_details=details)
            return application

        try:
            return mutate_application(self.session_factory, application_id, apply, self.service_name)
        except SQLAlchemyError as exc:
            logger.error("approval_update_failed id=%s error=%s", application_id, exc)
            raise DecisionStorageError("Failed to update application status") from exc

    def issue_route_tokens(self, application_id: str, amount: Decimal, now: datetime) -> dict[str, str]:
        """One token per payment route; both stay independently resolvable."""

        def apply(db, application: Application) -> dict[str, str]:
            tokens = {}
            for payment_type in PAYMENT_ROUTES:
                row = issue_payment_token(
                    db,
                    application,
                    amount,
                    payment_type,
                    expiry_days=self.token_ttl_days,
                    now=now,
                    service_name=self.service_name,
                )
                tokens[payment_type] = row.token
            return tokens

        return mutate_application(self.session_factory, application_id, apply, self.service_name)

    async def process(self, application_id: str, status: str, approver: str) -> ApprovalOutcome:
        """Run the whole review flow for one decision."""

        now = datetime.now(timezone.utc)
        application = self.record_decision(application_id, status, approver, now)
        approvals_processed_total.labels(service=self.service_name, decision=status).inc()
        logger.info("approval_recorded id=%s status=%s by=%s", application_id, status, approver)
        outcome = ApprovalOutcome(updated=application.as_dict())

        to_email = recipient_of(application)
        if not to_email:
            approval_emails_total.labels(service=self.service_name, outcome="no_recipient").inc()
            outcome.note = "No email on record; email not sent"
            return outcome
        if not self.mailer.is_configured():
            logger.warning("approval_email_skipped id=%s reason=mail_not_configured", application_id)
            approval_emails_total.labels(service=self.service_name, outcome="not_configured").inc()
            outcome.note = "Email credentials not configured - email not sent"
            return outcome

        name = applicant_name_of(application)
        if status == APPROVED:
            fees = compute_fees(application)
            try:
                tokens = self.issue_route_tokens(application_id, fees.final_fee_payment, now)
            except TokenStorageError:
                approval_emails_total.labels(service=self.service_name, outcome="token_failed").inc()
                outcome.note = "Payment token could not be stored - email not sent"
                return outcome
            outcome.payment_tokens = tokens
            outcome.payment_url = self.pay_url(tokens[RAZORPAY], RAZORPAY)
            outcome.payment_amount = fees.final_fee_payment
            subject = APPROVAL_SUBJECT
            body = render_approval_email(
                ApprovalEmail(
                    applicant_name=name,
                    application_number=str(application.id),
                    course_name=str(fees.course_name),
                    course_duration=str(fees.course_duration),
                    approved_at=now.isoformat(),
                    approved_by=approver,
                    total_course_fees=fees.total_course_fees,
                    discount=fees.discount,
                    final_fee_payment=fees.final_fee_payment,
                    payment_option_text=fees.payment_option_text,
                    direct_pay_url=self.pay_url(tokens[DIRECT], DIRECT),
                    razor_pay_url=outcome.payment_url,
                ),
                help_desk_email=self.help_desk_email,
                base_url=self.base_url,
            )
        else:
            subject = REJECTION_SUBJECT
            body = render_rejection_email(name, self.help_desk_email)

        try:
            await self.mailer.send(to_email, subject, body)
        except MailError as exc:
            logger.error("approval_email_failed id=%s error=%s", application_id, exc)
            approval_emails_total.labels(service=self.service_name, outcome="failed").inc()
            outcome.note = "Email delivery failed - email not sent"
            return outcome

        approval_emails_total.labels(service=self.service_name, outcome="sent").inc()
        logger.info("approval_email_sent id=%s status=%s to=%s", application_id, status, to_email)
        outcome.email_sent = True
        return outcome

    def payment_summary(self, application_id: str) -> dict:
        """Admin view of one application's payment sub-document."""

        application = self.get_application(application_id)
        details = application.application_details or {}
        status = current_status(application)
        return {
            "id": application.id,
            "approval": details.get("application_admin_approval"),
            "paymentStatus": status.value if status else None,
            "paymentMetadata": details.get("payment_metadata"),
            "paymentLinkUrl": details.get("payment_link_url"),
            "history": details.get("payment_history", []),
        }
