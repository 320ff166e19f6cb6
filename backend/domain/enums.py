"""
Domain enums (minimal set used for clarity in services).
"""

from enum import Enum


class PaymentState(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class EventSource(str, Enum):
    WEBHOOK = "webhook"
    CALLBACK = "callback"
    VERIFY = "verify"
    RECONCILER = "reconciler"
    CHECKOUT = "checkout"


# Webhook event names → state they report. PhonePe has shipped both styles.
WEBHOOK_EVENT_STATES = {
    "PAYMENT_SUCCESS": PaymentState.COMPLETED,
    "PAYMENT_FAILED": PaymentState.FAILED,
    "PAYMENT_PENDING": PaymentState.PENDING,
    "checkout.order.completed": PaymentState.COMPLETED,
    "checkout.order.failed": PaymentState.FAILED,
}
