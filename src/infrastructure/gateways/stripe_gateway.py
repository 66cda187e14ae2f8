# src/infrastructure/gateways/stripe_gateway.py

import json
import logging
from collections.abc import Mapping

import stripe

from src.domain.exceptions import (
    GatewayError,
    GatewayNotConfiguredError,
    SignatureInvalidError,
    ValidationError,
)
from src.domain.payments import PaymentMethod
from src.domain.state_machine import PaymentOutcome
from src.infrastructure.gateways.base import (
    PaymentGateway,
    PaymentNotification,
    PaymentSession,
    PaymentSessionRequest,
    RefundRequest,
    RefundResult,
    header,
)


logger = logging.getLogger(__name__)


class StripeGateway(PaymentGateway):
    """Card payments through Stripe PaymentIntents."""

    method = PaymentMethod.STRIPE
    status_table = {
        "payment_intent.succeeded": PaymentOutcome.PAID,
        "succeeded": PaymentOutcome.PAID,
        "payment_intent.payment_failed": PaymentOutcome.FAILED,
        "payment_intent.canceled": PaymentOutcome.FAILED,
        "canceled": PaymentOutcome.FAILED,
        "payment_intent.processing": PaymentOutcome.PENDING,
        "payment_intent.requires_action": PaymentOutcome.PENDING,
        "processing": PaymentOutcome.PENDING,
        "requires_action": PaymentOutcome.PENDING,
        "requires_capture": PaymentOutcome.PENDING,
        "requires_confirmation": PaymentOutcome.PENDING,
        "requires_payment_method": PaymentOutcome.PENDING,
    }

    def __init__(
        self,
        secret_key: str | None,
        webhook_secret: str | None,
        publishable_key: str | None = None,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.publishable_key = publishable_key

    def _api_key(self) -> str:
        if not self.secret_key:
            raise GatewayNotConfiguredError(
                self.method.value,
                "Stripe key not configured. Set STRIPE_SECRET_KEY.",
            )
        return self.secret_key

    def create_session(self, request: PaymentSessionRequest) -> PaymentSession:
        params = {
            "amount": request.amount_cents,
            "currency": request.currency.lower(),
            "description": request.description,
            "automatic_payment_methods": {"enabled": True},
            "metadata": {
                "booking_id": request.booking_id,
                "booking_reference": request.booking_reference,
            },
        }
        if request.customer_email:
            params["receipt_email"] = request.customer_email

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._api_key(),
                idempotency_key=f"booking-{request.booking_id}",
                **params,
            )
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe payment intent creation failed booking_id=%s error=%s",
                request.booking_id,
                exc,
            )
            raise GatewayError(self.method.value, str(exc)) from exc

        return PaymentSession(
            provider=self.method,
            correlation_id=intent.id,
            client_secret=intent.client_secret,
            public_key=self.publishable_key,
        )

    def parse_webhook(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> PaymentNotification:
        signature = header(headers, "Stripe-Signature")
        if not signature or not self.webhook_secret:
            raise SignatureInvalidError("Missing Stripe signature")

        try:
            stripe.Webhook.construct_event(raw_body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalidError("Invalid Stripe signature") from exc
        except ValueError as exc:
            raise ValidationError("Malformed Stripe payload") from exc

        payload = json.loads(raw_body)
        event_type = payload.get("type")
        obj = (payload.get("data") or {}).get("object") or {}

        if obj.get("object") != "payment_intent":
            # Charges, refunds and the like carry nothing to reconcile.
            return PaymentNotification(
                provider=self.method,
                provider_status=event_type,
                outcome=None,
                delivery_key=payload.get("id"),
            )

        intent_id = obj.get("id")
        metadata = obj.get("metadata") or {}
        currency = obj.get("currency")
        return PaymentNotification(
            provider=self.method,
            provider_status=event_type,
            outcome=self.map_status(event_type),
            correlation_id=intent_id,
            booking_id=metadata.get("booking_id"),
            transaction_id=obj.get("latest_charge"),
            amount_cents=obj.get("amount"),
            currency=currency.upper() if currency else None,
            delivery_key=payload.get("id"),
            correlation={"stripe_payment_intent_id": intent_id},
        )

    def refund(self, request: RefundRequest) -> RefundResult:
        if not request.correlation_id:
            raise ValidationError("Missing Stripe payment intent for refund")

        try:
            refund = stripe.Refund.create(
                api_key=self._api_key(),
                payment_intent=request.correlation_id,
                amount=request.amount_cents,
                metadata={
                    "booking_id": request.booking_id,
                    "reason": request.reason or "",
                },
            )
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe refund failed booking_id=%s error=%s",
                request.booking_id,
                exc,
            )
            raise GatewayError(self.method.value, str(exc)) from exc

        return RefundResult(
            provider=self.method,
            succeeded=refund.status in {"succeeded", "pending"},
            status=refund.status,
            refund_id=refund.id,
        )

    def fetch_status(self, correlation_id: str) -> PaymentNotification:
        try:
            intent = stripe.PaymentIntent.retrieve(correlation_id, api_key=self._api_key())
        except stripe.StripeError as exc:
            raise GatewayError(self.method.value, str(exc)) from exc

        return PaymentNotification(
            provider=self.method,
            provider_status=intent.status,
            outcome=self.map_status(intent.status),
            correlation_id=intent.id,
            amount_cents=intent.amount,
            currency=intent.currency.upper() if intent.currency else None,
            correlation={"stripe_payment_intent_id": intent.id},
        )
