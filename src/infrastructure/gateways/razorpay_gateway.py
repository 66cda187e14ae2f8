# src/infrastructure/gateways/razorpay_gateway.py

import hashlib
import json
import logging
from collections.abc import Mapping

import razorpay
import requests
from razorpay.errors import (
    BadRequestError,
    GatewayError as RazorpayGatewayError,
    ServerError,
    SignatureVerificationError,
)

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

_SDK_ERRORS = (
    BadRequestError,
    RazorpayGatewayError,
    ServerError,
    requests.RequestException,
)


def _notes(entity: dict) -> dict:
    # Razorpay serialises empty notes as a list.
    notes = entity.get("notes")
    return notes if isinstance(notes, dict) else {}


class RazorpayGateway(PaymentGateway):
    method = PaymentMethod.RAZORPAY
    status_table = {
        "payment.captured": PaymentOutcome.PAID,
        "order.paid": PaymentOutcome.PAID,
        "captured": PaymentOutcome.PAID,
        "payment.failed": PaymentOutcome.FAILED,
        "payment.authorized": PaymentOutcome.PENDING,
        "authorized": PaymentOutcome.PENDING,
        "created": PaymentOutcome.PENDING,
    }

    def __init__(
        self,
        key_id: str | None,
        key_secret: str | None,
        webhook_secret: str | None,
        client: razorpay.Client | None = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self._client = client

    @property
    def client(self) -> razorpay.Client:
        if self._client is None:
            if not self.key_id or not self.key_secret:
                raise GatewayNotConfiguredError(
                    self.method.value,
                    "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
                )
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_session(self, request: PaymentSessionRequest) -> PaymentSession:
        try:
            order = self.client.order.create(
                {
                    "amount": request.amount_cents,
                    "currency": request.currency,
                    "receipt": request.booking_reference,
                    "notes": {"booking_id": request.booking_id},
                }
            )
        except _SDK_ERRORS as exc:
            logger.warning(
                "Razorpay order creation failed booking_id=%s error=%s",
                request.booking_id,
                exc,
            )
            raise GatewayError(self.method.value, str(exc)) from exc

        return PaymentSession(
            provider=self.method,
            correlation_id=order["id"],
            public_key=self.key_id,
        )

    def parse_webhook(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> PaymentNotification:
        signature = header(headers, "X-Razorpay-Signature")
        if not signature or not self.webhook_secret:
            raise SignatureInvalidError("Missing Razorpay signature")

        try:
            body_text = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("Malformed Razorpay payload") from exc

        # Signature checks need no API keys.
        utility = razorpay.Client(auth=(self.key_id or "", self.key_secret or "")).utility
        try:
            utility.verify_webhook_signature(body_text, signature, self.webhook_secret)
        except SignatureVerificationError as exc:
            raise SignatureInvalidError("Invalid Razorpay signature") from exc

        try:
            payload = json.loads(body_text)
        except ValueError as exc:
            raise ValidationError("Malformed Razorpay payload") from exc

        event_type = payload.get("event")
        entities = payload.get("payload") or {}
        payment = (entities.get("payment") or {}).get("entity") or {}
        order = (entities.get("order") or {}).get("entity") or {}

        order_id = payment.get("order_id") or order.get("id")
        payment_id = payment.get("id")
        booking_id = _notes(payment).get("booking_id") or _notes(order).get("booking_id")

        delivery_key = header(headers, "X-Razorpay-Event-Id")
        if not delivery_key:
            delivery_key = hashlib.sha256(raw_body).hexdigest()

        return PaymentNotification(
            provider=self.method,
            provider_status=event_type,
            outcome=self.map_status(event_type),
            correlation_id=order_id,
            booking_id=booking_id,
            transaction_id=payment_id,
            amount_cents=payment.get("amount"),
            currency=payment.get("currency"),
            delivery_key=delivery_key,
            correlation={
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
            },
        )

    def refund(self, request: RefundRequest) -> RefundResult:
        if not request.transaction_id:
            raise ValidationError("Missing Razorpay payment for refund")

        try:
            refund = self.client.payment.refund(
                request.transaction_id,
                {
                    "amount": request.amount_cents,
                    "notes": {
                        "booking_id": request.booking_id,
                        "reason": request.reason or "",
                    },
                },
            )
        except _SDK_ERRORS as exc:
            logger.warning(
                "Razorpay refund failed booking_id=%s error=%s",
                request.booking_id,
                exc,
            )
            raise GatewayError(self.method.value, str(exc)) from exc

        refund_status = refund.get("status")
        return RefundResult(
            provider=self.method,
            succeeded=refund_status in {"processed", "pending"},
            status=refund_status,
            refund_id=refund.get("id"),
        )

    def fetch_status(self, correlation_id: str) -> PaymentNotification:
        try:
            result = self.client.order.payments(correlation_id)
        except _SDK_ERRORS as exc:
            raise GatewayError(self.method.value, str(exc)) from exc

        payments = result.get("items") or []
        if not payments:
            return PaymentNotification(
                provider=self.method,
                provider_status="created",
                outcome=PaymentOutcome.PENDING,
                correlation_id=correlation_id,
            )

        captured = [item for item in payments if item.get("status") == "captured"]
        payment = captured[0] if captured else payments[-1]
        return PaymentNotification(
            provider=self.method,
            provider_status=payment.get("status"),
            outcome=self.map_status(payment.get("status")),
            correlation_id=correlation_id,
            transaction_id=payment.get("id"),
            amount_cents=payment.get("amount"),
            currency=payment.get("currency"),
            correlation={
                "razorpay_order_id": correlation_id,
                "razorpay_payment_id": payment.get("id"),
            },
        )
