class HoldLedgerError(Exception):
    """Base class for reconciliation errors."""


class GatewayError(HoldLedgerError):
    """A capture or cancel call against the payment processor failed."""

    def __init__(self, action: str, payment_intent_id: str, cause: Exception = None):
        self.action = action
        self.payment_intent_id = payment_intent_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{action} failed for {payment_intent_id}{detail}")


class InvalidTransition(HoldLedgerError):
    def __init__(self, current, new):
        self.current = current
        self.new = new
        super().__init__(f"Invalid transition: {current} -> {new}")


class WebhookError(HoldLedgerError):
    """Inbound webhook payload could not be verified or decoded."""
