import hashlib
import hmac
import json
import time

import pytest

from src.domain.exceptions import SignatureInvalidError, ValidationError
from src.domain.state_machine import PaymentOutcome
from src.infrastructure.gateways.raiaccept_gateway import RaiAcceptGateway, sign_payload
from src.infrastructure.gateways.razorpay_gateway import RazorpayGateway
from src.infrastructure.gateways.stripe_gateway import StripeGateway


RAIACCEPT_SECRET = "raiaccept-secret"
STRIPE_SECRET = "whsec_unit_secret"
RAZORPAY_SECRET = "razorpay-secret"


def _hmac_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


@pytest.fixture
def raiaccept():
    return RaiAcceptGateway(
        username="u",
        password="p",
        cognito_client_id="c",
        webhook_secret=RAIACCEPT_SECRET,
        auth_url="https://auth.test",
        api_url="https://api.test",
    )


@pytest.fixture
def raiaccept_body():
    return {
        "transaction": {
            "transactionId": "txn-42",
            "status": "COMPLETED",
            "statusCode": "0000",
            "transactionAmount": 25.00,
            "transactionCurrency": "EUR",
        },
        "order": {
            "orderIdentification": "order-42",
            "invoice": {"merchantOrderReference": "booking-42"},
        },
    }


# ---------------------
# RAIACCEPT
# ---------------------

def test_raiaccept_valid_signature(raiaccept, raiaccept_body):
    raw = json.dumps(raiaccept_body).encode("utf-8")
    notification = raiaccept.parse_webhook(
        raw,
        {"x-signature": sign_payload(raiaccept_body, RAIACCEPT_SECRET)},
    )

    assert notification.outcome == PaymentOutcome.PAID
    assert notification.correlation_id == "order-42"
    assert notification.booking_id == "booking-42"
    assert notification.amount_cents == 2500
    assert notification.currency == "EUR"
    assert notification.delivery_key == "txn-42:COMPLETED:0000"
    assert notification.correlation == {
        "raiaccept_order_id": "order-42",
        "raiaccept_transaction_id": "txn-42",
    }


def test_raiaccept_signature_ignores_key_order_and_whitespace(raiaccept, raiaccept_body):
    raw = json.dumps(raiaccept_body, indent=2).encode("utf-8")
    signature = sign_payload(raiaccept_body, RAIACCEPT_SECRET).upper()

    notification = raiaccept.parse_webhook(raw, {"X-Signature": signature})

    assert notification.outcome == PaymentOutcome.PAID


def test_raiaccept_tampered_payload_rejected(raiaccept, raiaccept_body):
    signature = sign_payload(raiaccept_body, RAIACCEPT_SECRET)
    raiaccept_body["transaction"]["transactionAmount"] = 0.01

    with pytest.raises(SignatureInvalidError):
        raiaccept.parse_webhook(
            json.dumps(raiaccept_body).encode("utf-8"),
            {"X-Signature": signature},
        )


def test_raiaccept_wrong_secret_rejected(raiaccept, raiaccept_body):
    with pytest.raises(SignatureInvalidError):
        raiaccept.parse_webhook(
            json.dumps(raiaccept_body).encode("utf-8"),
            {"X-Signature": sign_payload(raiaccept_body, "other-secret")},
        )


def test_raiaccept_missing_signature_rejected(raiaccept, raiaccept_body):
    with pytest.raises(SignatureInvalidError):
        raiaccept.parse_webhook(json.dumps(raiaccept_body).encode("utf-8"), {})


def test_raiaccept_malformed_body(raiaccept):
    with pytest.raises(ValidationError):
        raiaccept.parse_webhook(b"not json", {"X-Signature": "00"})


# ---------------------
# STRIPE
# ---------------------

def _stripe_header(payload: str, secret: str = STRIPE_SECRET) -> str:
    timestamp = int(time.time())
    signature = _hmac_hex(secret, f"{timestamp}.{payload}")
    return f"t={timestamp},v1={signature}"


def _stripe_event(event_type: str, obj: dict) -> str:
    return json.dumps(
        {
            "id": "evt_unit_1",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
    )


def test_stripe_payment_intent_succeeded():
    gateway = StripeGateway(secret_key="sk_test", webhook_secret=STRIPE_SECRET)
    payload = _stripe_event(
        "payment_intent.succeeded",
        {
            "id": "pi_unit_1",
            "object": "payment_intent",
            "amount": 2500,
            "currency": "eur",
            "metadata": {"booking_id": "booking-1"},
        },
    )

    notification = gateway.parse_webhook(
        payload.encode("utf-8"),
        {"stripe-signature": _stripe_header(payload)},
    )

    assert notification.outcome == PaymentOutcome.PAID
    assert notification.correlation_id == "pi_unit_1"
    assert notification.booking_id == "booking-1"
    assert notification.amount_cents == 2500
    assert notification.currency == "EUR"
    assert notification.delivery_key == "evt_unit_1"


def test_stripe_non_payment_intent_event_has_no_reference():
    gateway = StripeGateway(secret_key="sk_test", webhook_secret=STRIPE_SECRET)
    payload = _stripe_event("charge.refunded", {"id": "ch_1", "object": "charge"})

    notification = gateway.parse_webhook(
        payload.encode("utf-8"),
        {"Stripe-Signature": _stripe_header(payload)},
    )

    assert notification.outcome is None
    assert notification.correlation_id is None
    assert notification.booking_id is None


def test_stripe_invalid_signature():
    gateway = StripeGateway(secret_key="sk_test", webhook_secret=STRIPE_SECRET)
    payload = _stripe_event("payment_intent.succeeded", {"id": "pi_1", "object": "payment_intent"})

    with pytest.raises(SignatureInvalidError):
        gateway.parse_webhook(
            payload.encode("utf-8"),
            {"Stripe-Signature": _stripe_header(payload, secret="whsec_other")},
        )


def test_stripe_missing_webhook_secret():
    gateway = StripeGateway(secret_key="sk_test", webhook_secret=None)

    with pytest.raises(SignatureInvalidError):
        gateway.parse_webhook(b"{}", {"Stripe-Signature": "t=1,v1=00"})


# ---------------------
# RAZORPAY
# ---------------------

def _razorpay_body(event: str, notes) -> str:
    return json.dumps(
        {
            "event": event,
            "payload": {
                "payment": {
                    "entity": {
                        "id": "pay_unit_1",
                        "order_id": "order_unit_1",
                        "amount": 2500,
                        "currency": "EUR",
                        "status": "captured",
                        "notes": notes,
                    }
                }
            },
        }
    )


def test_razorpay_payment_captured():
    gateway = RazorpayGateway(key_id="rzp_test", key_secret="secret", webhook_secret=RAZORPAY_SECRET)
    body = _razorpay_body("payment.captured", {"booking_id": "booking-7"})

    notification = gateway.parse_webhook(
        body.encode("utf-8"),
        {
            "X-Razorpay-Signature": _hmac_hex(RAZORPAY_SECRET, body),
            "X-Razorpay-Event-Id": "evt_rzp_1",
        },
    )

    assert notification.outcome == PaymentOutcome.PAID
    assert notification.correlation_id == "order_unit_1"
    assert notification.booking_id == "booking-7"
    assert notification.transaction_id == "pay_unit_1"
    assert notification.delivery_key == "evt_rzp_1"


def test_razorpay_empty_notes_list():
    gateway = RazorpayGateway(key_id="rzp_test", key_secret="secret", webhook_secret=RAZORPAY_SECRET)
    body = _razorpay_body("payment.failed", [])

    notification = gateway.parse_webhook(
        body.encode("utf-8"),
        {"X-Razorpay-Signature": _hmac_hex(RAZORPAY_SECRET, body)},
    )

    assert notification.outcome == PaymentOutcome.FAILED
    assert notification.booking_id is None
    assert notification.delivery_key == hashlib.sha256(body.encode("utf-8")).hexdigest()


def test_razorpay_invalid_signature():
    gateway = RazorpayGateway(key_id="rzp_test", key_secret="secret", webhook_secret=RAZORPAY_SECRET)
    body = _razorpay_body("payment.captured", {})

    with pytest.raises(SignatureInvalidError):
        gateway.parse_webhook(
            body.encode("utf-8"),
            {"X-Razorpay-Signature": _hmac_hex("wrong", body)},
        )
