import pytest

from src.domain.exceptions import GatewayNotConfiguredError
from src.domain.payments import PaymentMethod, map_status
from src.domain.state_machine import PaymentOutcome
from src.infrastructure.config import Settings
from src.infrastructure.gateways.base import header, to_major_units, to_minor_units
from src.infrastructure.gateways.raiaccept_gateway import RaiAcceptGateway
from src.infrastructure.gateways.registry import build_registry
from src.infrastructure.gateways.stripe_gateway import StripeGateway


@pytest.mark.parametrize(
    "provider_status, expected",
    [
        ("COMPLETED", PaymentOutcome.PAID),
        ("success", PaymentOutcome.PAID),
        ("Paid", PaymentOutcome.PAID),
        ("FAILED", PaymentOutcome.FAILED),
        ("declined", PaymentOutcome.FAILED),
        ("ERROR", PaymentOutcome.FAILED),
        ("PENDING", PaymentOutcome.PENDING),
        (" processing ", PaymentOutcome.PENDING),
    ],
)
def test_common_vocabulary(provider_status, expected):
    assert map_status(provider_status) == expected


@pytest.mark.parametrize("provider_status", [None, "", "SOMETHING_NEW"])
def test_unknown_status_maps_to_none(provider_status):
    assert map_status(provider_status) is None


def test_gateway_terms_extend_common_vocabulary():
    gateway = StripeGateway(secret_key="sk_test", webhook_secret="whsec")

    assert gateway.map_status("payment_intent.succeeded") == PaymentOutcome.PAID
    assert gateway.map_status("payment_intent.payment_failed") == PaymentOutcome.FAILED
    assert gateway.map_status("requires_payment_method") == PaymentOutcome.PENDING
    assert gateway.map_status("COMPLETED") == PaymentOutcome.PAID


def test_raiaccept_success_code_without_status():
    gateway = RaiAcceptGateway(
        username="u",
        password="p",
        cognito_client_id="c",
        webhook_secret="s",
        auth_url="https://auth.test",
        api_url="https://api.test",
    )

    assert gateway.outcome_for(None, "0000") == PaymentOutcome.PAID
    assert gateway.outcome_for("IN_PROGRESS", None) == PaymentOutcome.PENDING
    assert gateway.outcome_for("CANCELLED", "1001") == PaymentOutcome.FAILED
    assert gateway.outcome_for(None, "1001") is None


def test_amount_conversions():
    assert to_major_units(2500) == 25.0
    assert to_major_units(1999) == 19.99
    assert to_minor_units(25.00) == 2500
    assert to_minor_units("19.99") == 1999
    assert to_minor_units(None) is None


def test_header_lookup_is_case_insensitive():
    headers = {"x-signature": "abc"}
    assert header(headers, "X-Signature") == "abc"
    assert header(headers, "Stripe-Signature") is None


def test_registry_falls_back_to_stripe_for_unknown_default():
    registry = build_registry(Settings(payment_gateway="paypal"))

    assert registry.default_method == PaymentMethod.STRIPE
    assert registry.select().method == PaymentMethod.STRIPE


def test_registry_rejects_disabled_gateway():
    registry = build_registry(Settings(enabled_gateways=("stripe",)))

    assert registry.is_enabled("stripe")
    assert not registry.is_enabled("razorpay")
    assert not registry.is_enabled("paypal")
    with pytest.raises(GatewayNotConfiguredError):
        registry.get(PaymentMethod.RAZORPAY)
    with pytest.raises(GatewayNotConfiguredError):
        registry.get("paypal")
