"""Portal database models.

`applications` keeps the applicant record with its free-form JSON
sub-documents. Payment tokens, processed webhook ids and unmatched webhooks get
their own tables so they can be looked up by index.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from admitpay.common.db import Base, JSONDocument


class Application(Base):
    """Applicant row; payment state lives in `application_details`."""

    __tablename__ = "applications"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    student_name: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    selected_course: Mapped[str | None] = mapped_column(String, nullable=True)
    course_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    discount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    total_payable: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    application_details: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    admin_filled: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    final_fee_payment: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    basic: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    contact: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    account: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "student_name": self.student_name,
            "name": self.name,
            "phone": self.phone,
            "selected_course": self.selected_course,
            "course_fee": self.course_fee,
            "discount": self.discount,
            "total_payable": self.total_payable,
            "application_details": self.application_details,
            "admin_filled": self.admin_filled,
            "final_fee_payment": self.final_fee_payment,
            "basic": self.basic,
            "contact": self.contact,
            "account": self.account,
            "payment_status": self.payment_status,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class PaymentToken(Base):
    """One issued pay-link token; `token` is the indexed lookup key."""

    __tablename__ = "payment_tokens"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    application_id: Mapped[str] = mapped_column(ForeignKey("applications.id"), index=True)
    payment_type: Mapped[str] = mapped_column(String)
    payable_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    token_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_link_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    payment_link_url: Mapped[str | None] = mapped_column(String, nullable=True)


class WebhookEvent(Base):
    """Deduplication rows for processed gateway webhook deliveries."""

    __tablename__ = "webhook_events"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    event: Mapped[str] = mapped_column(String)
    application_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class WebhookDeadLetter(Base):
    """Verified webhooks that could not be matched to an application."""

    __tablename__ = "webhook_dead_letters"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    event_id: Mapped[str] = mapped_column(String, index=True)
    event: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    payload: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    replayed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
