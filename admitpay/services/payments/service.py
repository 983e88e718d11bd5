"""Pay-link redirect flow.

Resolves a token from an emailed link, asks the gateway for a hosted payment
link and records it on the application. Every outcome is a URL to redirect
the browser to.
"""

from datetime import datetime, timezone
from urllib.parse import urlencode

from admitpay.common.applications import compare_and_set, current_status, details_of, mutate_application
from admitpay.common.logging import application_id_ctx, logger
from admitpay.common.metrics import (
    gateway_errors_total,
    payment_links_created_total,
    payment_status_anomalies_total,
    payment_token_rejections_total,
)
from admitpay.common.models import Application, PaymentToken
from admitpay.common.money import to_minor_units
from admitpay.common.rate_limit import RateLimited
from admitpay.common.state_machine import InvalidTransition, PaymentStatus, validate_transition
from admitpay.common.tokens import PAYMENT_ROUTES, RAZORPAY, TokenRejected, resolve_payment_token
from admitpay.services.payments.gateway import GatewayError, PaymentLink

RATE_LIMITED_MESSAGE = "Too many payment attempts, please retry shortly"
INVALID_LINK_MESSAGE = "Invalid or expired payment link"


class PaymentRedirectService:
    """Turns a pay-link token into a gateway checkout redirect."""

    def __init__(
        self,
        session_factory,
        gateway,
        base_url: str,
        currency: str = "INR",
        limiter=None,
        service_name: str = "payments",
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self.limiter = limiter
        self.service_name = service_name

    def error_url(self, message: str) -> str:
        return f"{self.base_url}/payment/error?{urlencode({'message': message})}"

    def success_url(self, **params) -> str:
        query = urlencode({key: value for key, value in params.items() if value is not None})
        return f"{self.base_url}/payment/success" + (f"?{query}" if query else "")

    def build_link_payload(
        self, application: Application, token: PaymentToken, payment_type: str, now: datetime
    ) -> dict:
        """Gateway request body; `notes` lets the webhook find the application."""

        details = application.application_details or {}
        course_name = (
            (details.get("admin_filled") or {}).get("final_course_Name")
            or application.selected_course
            or details.get("course")
            or "Course"
        )
        customer = {"name": application.student_name or application.name or "Student"}
        if application.email:
            customer["email"] = application.email
        if application.phone:
            customer["contact"] = application.phone
        return {
            "amount": to_minor_units(token.payable_amount),
            "currency": self.currency,
            "accept_partial": False,
            "reference_id": f"app_{application.id}_{int(now.timestamp() * 1000)}",
            "description": f"Payment for {course_name} - Application {application.id}",
            "customer": customer,
            "notify": {"sms": True, "email": True},
            "reminder_enable": True,
            "notes": {
                "application_id": application.id,
                "payment_token": token.token,
                "payment_type": payment_type,
            },
            "callback_url": f"{self.base_url}/payment/callback",
            "callback_method": "get",
        }

    def _load(self, token: str, now: datetime) -> tuple[PaymentToken, Application]:
        with self.session_factory() as db:
            row = resolve_payment_token(db, token, now)
            application = db.get(Application, row.application_id)
            if application is None:
                raise TokenRejected(INVALID_LINK_MESSAGE, "orphaned")
            return row, application

    def _record_link(self, token_id: str, application_id: str, link: PaymentLink, now: datetime) -> bool:
        """Persist link metadata; False when the application is already paid."""

        def apply(db, application: Application) -> bool:
            status = current_status(application) or PaymentStatus.PENDING
            try:
                validate_transition(status, PaymentStatus.PAYMENT_LINK_CREATED)
            except InvalidTransition as exc:
                payment_status_anomalies_total.labels(
                    service=self.service_name,
                    from_state=status.value,
                    to_state=PaymentStatus.PAYMENT_LINK_CREATED.value,
                ).inc()
                logger.warning("payment_status_anomaly id=%s error=%s", application.id, exc)
                return False
            row = db.get(PaymentToken, token_id)
            if row is not None:
                row.payment_link_id = link.id
                row.payment_link_url = link.short_url
            details = details_of(application)
            details["payment_link_id"] = link.id
            details["payment_link_url"] = link.short_url
            details["payment_status"] = PaymentStatus.PAYMENT_LINK_CREATED.value
            details["payment_link_created_at"] = now.isoformat()
            compare_and_set(
                db,
                application,
                application_details=details,
                payment_status=PaymentStatus.PAYMENT_LINK_CREATED.value,
            )
            return True

        return mutate_application(self.session_factory, application_id, apply, self.service_name)

    async def start_payment(self, token: str, payment_type: str | None, client_key: str) -> str:
        """Return the URL the browser should be sent to for this token.

        The token is not consumed here; a second visit before the payment is
        confirmed creates another link. A missing or unknown `payment_type`
        falls back to the route the token was issued for (not always
        `razorpay`), and that route is what lands in the link's
        `notes.payment_type`.
        """

        now = datetime.now(timezone.utc)
        if self.limiter is not None:
            try:
                self.limiter.check(client_key)
            except RateLimited:
                payment_token_rejections_total.labels(service=self.service_name, reason="rate_limited").inc()
                return self.error_url(RATE_LIMITED_MESSAGE)

        try:
            row, application = self._load(token, now)
        except TokenRejected as exc:
            payment_token_rejections_total.labels(service=self.service_name, reason=exc.code).inc()
            logger.warning("payment_token_rejected reason=%s", exc.code)
            return self.error_url(exc.reason)

        application_id_ctx.set(application.id)
        if current_status(application) == PaymentStatus.PAID:
            return self.success_url(already_paid="true")

        route = payment_type if payment_type in PAYMENT_ROUTES else row.payment_type or RAZORPAY
        payload = self.build_link_payload(application, row, route, now)
        try:
            link = await self.gateway.create_payment_link(payload)
        except GatewayError as exc:
            gateway_errors_total.labels(service=self.service_name).inc()
            logger.error("payment_link_failed id=%s error=%s", application.id, exc)
            return self.error_url("Payment provider error")

        if not self._record_link(row.id, application.id, link, now):
            return self.success_url(already_paid="true")
        payment_links_created_total.labels(service=self.service_name, payment_type=route).inc()
        logger.info(
            "payment_link_created id=%s link_id=%s amount=%s type=%s",
            application.id,
            link.id,
            row.payable_amount,
            route,
        )
        return link.short_url

    def callback_target(self, params: dict) -> str:
        """Where to send the browser after the hosted checkout returns."""

        payment_id = params.get("razorpay_payment_id")
        if params.get("razorpay_payment_link_status") == "paid" or payment_id:
            return self.success_url(payment_id=payment_id)
        return self.error_url("Payment was not completed. Please try again or contact support.")
