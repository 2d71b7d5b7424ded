import stripe
import structlog

from holdledger.errors import GatewayError

# Stripe reports capture/cancel on an intent that already left requires_capture this way
UNEXPECTED_STATE = "payment_intent_unexpected_state"


class StripeGateway:
    """Capture/cancel primitives for manual-capture PaymentIntents."""

    def __init__(self, settings):
        self.settings = settings
        if settings.stripe_secret_key:
            stripe.api_key = settings.stripe_secret_key
        self._logger = structlog.get_logger().bind(component="stripe_gateway")

    def capture(self, payment_intent_id: str, idempotency_key: str = None) -> None:
        try:
            stripe.PaymentIntent.capture(
                payment_intent_id,
                idempotency_key=idempotency_key or f"capture-{payment_intent_id}"
            )
        except stripe.StripeError as exc:
            if self._already_in(exc, payment_intent_id, "succeeded"):
                self._logger.info("already_captured", payment_intent_id=payment_intent_id)
                return
            raise GatewayError("capture", payment_intent_id, exc) from exc

    def cancel(self, payment_intent_id: str, idempotency_key: str = None) -> None:
        try:
            stripe.PaymentIntent.cancel(
                payment_intent_id,
                idempotency_key=idempotency_key or f"cancel-{payment_intent_id}"
            )
        except stripe.StripeError as exc:
            if self._already_in(exc, payment_intent_id, "canceled"):
                self._logger.info("already_canceled", payment_intent_id=payment_intent_id)
                return
            raise GatewayError("cancel", payment_intent_id, exc) from exc

    def _already_in(self, exc, payment_intent_id: str, status: str) -> bool:
        if getattr(exc, "code", None) != UNEXPECTED_STATE:
            return False
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError:
            return False
        return intent["status"] == status

    def create_checkout_session(self, job_id: str, success_url: str, cancel_url: str):
        return stripe.checkout.Session.create(
            payment_method_types=["card"],
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": self.settings.checkout_currency,
                        "product_data": {"name": self.settings.checkout_product_name},
                        "unit_amount": self.settings.checkout_amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            metadata={"jobId": job_id},
            payment_intent_data={
                "capture_method": "manual",
                "metadata": {"jobId": job_id},
            },
            success_url=success_url,
            cancel_url=cancel_url,
            idempotency_key=f"checkout-{job_id}"
        )
