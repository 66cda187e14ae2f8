# src/infrastructure/gateways/registry.py

import logging

from src.domain.exceptions import GatewayNotConfiguredError
from src.domain.payments import PaymentMethod
from src.infrastructure.config import Settings
from src.infrastructure.gateways.base import PaymentGateway
from src.infrastructure.gateways.raiaccept_gateway import RaiAcceptGateway
from src.infrastructure.gateways.razorpay_gateway import RazorpayGateway
from src.infrastructure.gateways.stripe_gateway import StripeGateway


logger = logging.getLogger(__name__)


class GatewayRegistry:
    """Enabled gateways, keyed by payment method, plus the configured default."""

    def __init__(
        self,
        gateways: dict[PaymentMethod, PaymentGateway],
        default_method: PaymentMethod,
    ):
        self._gateways = dict(gateways)
        self.default_method = default_method

    def get(self, method: PaymentMethod | str) -> PaymentGateway:
        try:
            method = PaymentMethod(method)
        except ValueError as exc:
            raise GatewayNotConfiguredError(str(method), "Unknown payment gateway") from exc

        gateway = self._gateways.get(method)
        if gateway is None:
            raise GatewayNotConfiguredError(method.value, "Payment gateway is not enabled")
        return gateway

    def select(self, requested: PaymentMethod | None = None) -> PaymentGateway:
        return self.get(requested or self.default_method)

    def is_enabled(self, method: PaymentMethod | str) -> bool:
        try:
            return PaymentMethod(method) in self._gateways
        except ValueError:
            return False


def build_registry(settings: Settings) -> GatewayRegistry:
    gateways: dict[PaymentMethod, PaymentGateway] = {}

    for name in settings.enabled_gateways:
        try:
            method = PaymentMethod(name)
        except ValueError:
            logger.warning("Ignoring unknown gateway in ENABLED_GATEWAYS name=%s", name)
            continue

        if method == PaymentMethod.STRIPE:
            gateways[method] = StripeGateway(
                secret_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                publishable_key=settings.stripe_publishable_key,
            )
        elif method == PaymentMethod.RAIACCEPT:
            gateways[method] = RaiAcceptGateway(
                username=settings.raiaccept_username,
                password=settings.raiaccept_password,
                cognito_client_id=settings.raiaccept_cognito_client_id,
                webhook_secret=settings.raiaccept_webhook_secret,
                auth_url=settings.raiaccept_auth_url,
                api_url=settings.raiaccept_api_url,
                timeout=settings.gateway_timeout_seconds,
            )
        elif method == PaymentMethod.RAZORPAY:
            gateways[method] = RazorpayGateway(
                key_id=settings.razorpay_key_id,
                key_secret=settings.razorpay_key_secret,
                webhook_secret=settings.razorpay_webhook_secret,
            )

    try:
        default_method = PaymentMethod(settings.payment_gateway)
    except ValueError:
        logger.warning(
            "Unknown PAYMENT_GATEWAY=%s, falling back to stripe",
            settings.payment_gateway,
        )
        default_method = PaymentMethod.STRIPE

    return GatewayRegistry(gateways, default_method)
