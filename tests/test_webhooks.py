import json
from unittest.mock import ANY

import pytest
import stripe

from holdledger.errors import GatewayError, WebhookError
from holdledger.states import PaymentStatus
from holdledger.webhooks import WebhookDispatcher, decode_event


def checkout_completed(job_id="job-1", payment_intent="pi_1", session_id="sess_1"):
    return {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_intent": payment_intent,
                "metadata": {"jobId": job_id} if job_id else {},
            }
        }
    }


@pytest.fixture
def dispatcher(coordinator):
    return WebhookDispatcher(coordinator)


def test_decode_verifies_signature(mocker):
    construct = mocker.patch("stripe.Webhook.construct_event", return_value={"type": "x"})

    assert decode_event(b"{}", "sig", "whsec_test") == {"type": "x"}
    construct.assert_called_once_with(b"{}", "sig", "whsec_test")


def test_decode_rejects_bad_signature(mocker):
    mocker.patch(
        "stripe.Webhook.construct_event",
        side_effect=stripe.SignatureVerificationError("Invalid", "sig")
    )

    with pytest.raises(WebhookError, match="Invalid signature"):
        decode_event(b"{}", "sig", "whsec_test")


def test_decode_without_secret_parses_json():
    event = decode_event(json.dumps(checkout_completed()).encode(), None, None)
    assert event["type"] == "checkout.session.completed"


def test_decode_without_secret_rejects_garbage():
    with pytest.raises(WebhookError, match="Invalid payload"):
        decode_event(b"not json", None, None)


def test_checkout_completed_records_authorization(dispatcher, ledger):
    dispatcher.dispatch(checkout_completed())

    record = ledger.get("job-1")
    assert record.status == PaymentStatus.AUTHORIZED
    assert record.payment_intent_id == "pi_1"
    assert record.session_id == "sess_1"


def test_expanded_payment_intent_is_accepted(dispatcher, ledger):
    dispatcher.dispatch(checkout_completed(payment_intent={"id": "pi_exp", "object": "payment_intent"}))

    assert ledger.get("job-1").payment_intent_id == "pi_exp"


def test_checkout_without_job_id_is_ignored(dispatcher, ledger):
    dispatcher.dispatch(checkout_completed(job_id=None))
    dispatcher.dispatch(checkout_completed(payment_intent=None))

    assert ledger.all() == []


def test_late_checkout_settles_placeholder(dispatcher, coordinator, gateway, ledger):
    coordinator.on_job_outcome("job-1", True)

    dispatcher.dispatch(checkout_completed())
    dispatcher.dispatch(checkout_completed())

    gateway.capture.assert_called_once_with("pi_1", idempotency_key=ANY)
    assert ledger.get("job-1").status == PaymentStatus.CAPTURED


def test_gateway_failure_does_not_escape_dispatch(dispatcher, coordinator, gateway, ledger):
    gateway.cancel.side_effect = GatewayError("cancel", "pi_1")
    coordinator.on_job_outcome("job-1", False)

    dispatcher.dispatch(checkout_completed())

    assert ledger.get("job-1").status == PaymentStatus.CANCEL_FAILED


def test_async_payment_failed_marks_record(dispatcher, ledger):
    dispatcher.dispatch(checkout_completed())
    dispatcher.dispatch({
        "type": "checkout.session.async_payment_failed",
        "data": {"object": {"id": "sess_1", "metadata": {"jobId": "job-1"}}}
    })

    assert ledger.get("job-1").status == PaymentStatus.PAYMENT_FAILED


def test_unhandled_events_are_acknowledged(dispatcher, ledger):
    dispatcher.dispatch({"type": "payment_intent.created", "data": {"object": {}}})
    dispatcher.dispatch({
        "type": "checkout.session.async_payment_succeeded",
        "data": {"object": {"id": "sess_1"}}
    })

    assert ledger.all() == []
