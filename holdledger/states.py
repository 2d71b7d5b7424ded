"""Payment hold states and the transitions the coordinator may write."""

from enum import Enum
from typing import Optional

from holdledger.errors import InvalidTransition


class PaymentStatus(str, Enum):
    AUTHORIZED = "authorized"
    RENDER_SUCCEEDED = "render_succeeded"
    RENDER_FAILED = "render_failed"
    CAPTURED = "captured"
    CANCELED = "canceled"
    CAPTURE_FAILED = "capture_failed"
    CANCEL_FAILED = "cancel_failed"
    PAYMENT_FAILED = "payment_failed"


class Action(str, Enum):
    CAPTURE = "capture"
    CANCEL = "cancel"


TERMINAL = frozenset({
    PaymentStatus.CAPTURED,
    PaymentStatus.CANCELED,
    PaymentStatus.PAYMENT_FAILED,
})

# Outcome recorded before the authorization arrived
PLACEHOLDERS = {
    PaymentStatus.RENDER_SUCCEEDED: Action.CAPTURE,
    PaymentStatus.RENDER_FAILED: Action.CANCEL,
}

# None stands for "no record yet"
ALLOWED_TRANSITIONS: dict = {
    None: {
        PaymentStatus.AUTHORIZED,
        PaymentStatus.RENDER_SUCCEEDED,
        PaymentStatus.RENDER_FAILED,
        PaymentStatus.PAYMENT_FAILED,
    },
    PaymentStatus.AUTHORIZED: {
        PaymentStatus.CAPTURED,
        PaymentStatus.CAPTURE_FAILED,
        PaymentStatus.CANCELED,
        PaymentStatus.CANCEL_FAILED,
        PaymentStatus.PAYMENT_FAILED,
    },
    PaymentStatus.RENDER_SUCCEEDED: {
        PaymentStatus.CAPTURED,
        PaymentStatus.CAPTURE_FAILED,
        PaymentStatus.PAYMENT_FAILED,
    },
    PaymentStatus.RENDER_FAILED: {
        PaymentStatus.CANCELED,
        PaymentStatus.CANCEL_FAILED,
        PaymentStatus.PAYMENT_FAILED,
    },
    # Sweeper retries failed cancels; failed captures wait for an operator
    PaymentStatus.CANCEL_FAILED: {PaymentStatus.CANCELED, PaymentStatus.CANCEL_FAILED},
    PaymentStatus.CAPTURE_FAILED: set(),
    PaymentStatus.CAPTURED: set(),
    PaymentStatus.CANCELED: set(),
    PaymentStatus.PAYMENT_FAILED: set(),
}

# Old enough holds in these statuses are canceled by the sweeper; a
# render_failed placeholder only once it carries a PaymentIntent
CANCELABLE_WHEN_STALE = frozenset({
    PaymentStatus.AUTHORIZED,
    PaymentStatus.CANCEL_FAILED,
    PaymentStatus.RENDER_FAILED,
})

RESULTS = {
    Action.CAPTURE: (PaymentStatus.CAPTURED, PaymentStatus.CAPTURE_FAILED),
    Action.CANCEL: (PaymentStatus.CANCELED, PaymentStatus.CANCEL_FAILED),
}


def validate_transition(current: Optional[PaymentStatus], new: PaymentStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, new)


def outcome_status(succeeded: bool) -> PaymentStatus:
    return PaymentStatus.RENDER_SUCCEEDED if succeeded else PaymentStatus.RENDER_FAILED


def outcome_action(succeeded: bool) -> Action:
    return Action.CAPTURE if succeeded else Action.CANCEL


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL
