"""Payment status transitions enforced on every application write."""

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAYMENT_LINK_CREATED = "payment_link_created"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InvalidTransition(ValueError):
    """Raised when a status change is not in `ALLOWED_TRANSITIONS`."""

    def __init__(self, current: PaymentStatus, new: PaymentStatus) -> None:
        super().__init__(f"Invalid transition: {current.value} -> {new.value}")
        self.current = current
        self.new = new


ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PAYMENT_LINK_CREATED,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    # Another redirect with a live token creates a fresh link.
    PaymentStatus.PAYMENT_LINK_CREATED: {
        PaymentStatus.PAYMENT_LINK_CREATED,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.FAILED: {
        PaymentStatus.PAYMENT_LINK_CREATED,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.CANCELLED: {
        PaymentStatus.PAYMENT_LINK_CREATED,
        PaymentStatus.PAID,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PAID: set(),
}

TERMINAL_STATUSES = frozenset({PaymentStatus.PAID})

EVENT_STATUS: dict[str, PaymentStatus] = {
    "payment_link.paid": PaymentStatus.PAID,
    "payment.captured": PaymentStatus.PAID,
    "payment.failed": PaymentStatus.FAILED,
    "payment_link.failed": PaymentStatus.FAILED,
    "payment_link.cancelled": PaymentStatus.CANCELLED,
    "payment.cancelled": PaymentStatus.CANCELLED,
}


def parse_status(value) -> PaymentStatus | None:
    """Map a stored status string to the enum; unknown or empty gives None."""

    if isinstance(value, PaymentStatus):
        return value
    try:
        return PaymentStatus(value)
    except ValueError:
        return None


def validate_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, new)


def classify_event(event: str) -> PaymentStatus | None:
    """Status a gateway event moves the application to, or None to keep it."""

    return EVENT_STATUS.get(event)


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_STATUSES
