import json

import stripe
import structlog

from holdledger.errors import GatewayError, WebhookError

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"


def decode_event(payload: bytes, signature: str, secret: str):
    """Verify and parse a Stripe webhook body.

    Without a signing secret the body is parsed as-is; that is only meant
    for local development with the Stripe CLI.
    """
    logger = structlog.get_logger().bind(component="webhooks")

    if not secret:
        logger.warning("webhook_not_verified", reason="STRIPE_WEBHOOK_SECRET not set")
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise WebhookError("Invalid payload") from exc

    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError as exc:
        raise WebhookError("Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise WebhookError("Invalid signature") from exc


def _lookup(obj, *path):
    # Works for plain dicts and StripeObjects alike
    for key in path:
        try:
            obj = obj[key]
        except (KeyError, TypeError):
            return None
    return obj


class WebhookDispatcher:
    """Routes decoded Stripe events into the coordinator."""

    def __init__(self, coordinator):
        self.coordinator = coordinator
        self._handlers = {
            CHECKOUT_COMPLETED: self._checkout_completed,
            ASYNC_PAYMENT_SUCCEEDED: self._async_payment_succeeded,
            ASYNC_PAYMENT_FAILED: self._async_payment_failed,
        }
        self._logger = structlog.get_logger().bind(component="webhooks")

    def dispatch(self, event) -> None:
        event_type = _lookup(event, "type")
        self._logger.info("webhook_received", event_type=event_type, event_id=_lookup(event, "id"))

        handler = self._handlers.get(event_type)
        if handler is None:
            self._logger.info("webhook_unhandled", event_type=event_type)
            return

        session = _lookup(event, "data", "object")
        try:
            handler(session)
        except GatewayError as exc:
            # Already recorded as *_failed; a redelivery would be a no-op
            self._logger.error("webhook_settlement_failed", event_type=event_type, error=str(exc))

    def _checkout_completed(self, session) -> None:
        job_id = _lookup(session, "metadata", "jobId")
        payment_intent_id = _lookup(session, "payment_intent")
        if payment_intent_id is not None and not isinstance(payment_intent_id, str):
            payment_intent_id = _lookup(payment_intent_id, "id")
        session_id = _lookup(session, "id")

        if not job_id or not payment_intent_id:
            self._logger.warning(
                "checkout_missing_references",
                session_id=session_id,
                job_id=job_id,
                payment_intent_id=payment_intent_id,
            )
            return

        self.coordinator.on_authorization(job_id, payment_intent_id, session_id)

    def _async_payment_succeeded(self, session) -> None:
        self._logger.info("async_payment_succeeded", session_id=_lookup(session, "id"))

    def _async_payment_failed(self, session) -> None:
        job_id = _lookup(session, "metadata", "jobId")
        self._logger.warning(
            "async_payment_failed", session_id=_lookup(session, "id"), job_id=job_id
        )
        if job_id:
            self.coordinator.on_async_payment_failure(job_id)
