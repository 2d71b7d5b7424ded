import pytest
import stripe

from holdledger.config import Settings
from holdledger.errors import GatewayError
from holdledger.stripe_service import UNEXPECTED_STATE, StripeGateway


@pytest.fixture
def stripe_gateway():
    return StripeGateway(Settings(checkout_amount_cents=999, checkout_currency="eur"))


def unexpected_state():
    return stripe.InvalidRequestError(
        "This PaymentIntent could not be captured", "intent", code=UNEXPECTED_STATE
    )


def test_capture_uses_idempotency_key(stripe_gateway, mocker):
    capture = mocker.patch("stripe.PaymentIntent.capture")

    stripe_gateway.capture("pi_1")

    capture.assert_called_once_with("pi_1", idempotency_key="capture-pi_1")


def test_capture_of_already_captured_intent_succeeds(stripe_gateway, mocker):
    mocker.patch("stripe.PaymentIntent.capture", side_effect=unexpected_state())
    mocker.patch("stripe.PaymentIntent.retrieve", return_value={"status": "succeeded"})

    stripe_gateway.capture("pi_1")


def test_capture_of_canceled_intent_fails(stripe_gateway, mocker):
    mocker.patch("stripe.PaymentIntent.capture", side_effect=unexpected_state())
    mocker.patch("stripe.PaymentIntent.retrieve", return_value={"status": "canceled"})

    with pytest.raises(GatewayError) as exc_info:
        stripe_gateway.capture("pi_1")
    assert exc_info.value.action == "capture"
    assert exc_info.value.payment_intent_id == "pi_1"


def test_cancel_of_already_canceled_intent_succeeds(stripe_gateway, mocker):
    mocker.patch("stripe.PaymentIntent.cancel", side_effect=unexpected_state())
    mocker.patch("stripe.PaymentIntent.retrieve", return_value={"status": "canceled"})

    stripe_gateway.cancel("pi_2")


def test_cancel_api_error_is_wrapped(stripe_gateway, mocker):
    mocker.patch("stripe.PaymentIntent.cancel", side_effect=stripe.APIConnectionError("network down"))
    retrieve = mocker.patch("stripe.PaymentIntent.retrieve")

    with pytest.raises(GatewayError):
        stripe_gateway.cancel("pi_2")
    retrieve.assert_not_called()


def test_checkout_session_requests_manual_capture(stripe_gateway, mocker):
    create = mocker.patch("stripe.checkout.Session.create")

    stripe_gateway.create_checkout_session("job-1", "https://x/ok", "https://x/no")

    kwargs = create.call_args.kwargs
    assert kwargs["payment_intent_data"] == {"capture_method": "manual", "metadata": {"jobId": "job-1"}}
    assert kwargs["metadata"] == {"jobId": "job-1"}
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 999
    assert kwargs["line_items"][0]["price_data"]["currency"] == "eur"


def test_cancel_passes_attempt_key(stripe_gateway, mocker):
    cancel = mocker.patch("stripe.PaymentIntent.cancel")

    stripe_gateway.cancel("pi_2", idempotency_key="cancel-pi_2-20260115T140000000000")

    cancel.assert_called_once_with("pi_2", idempotency_key="cancel-pi_2-20260115T140000000000")
