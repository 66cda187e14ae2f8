# src/infrastructure/gateways/raiaccept_gateway.py

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping

import requests

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
    to_major_units,
    to_minor_units,
)


logger = logging.getLogger(__name__)

SUCCESS_CODE = "0000"
SIGNATURE_HEADER = "X-Signature"


def canonical_json(payload: dict) -> bytes:
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def sign_payload(payload: dict, secret: str) -> str:
    """Hex HMAC-SHA256 of the canonical JSON form of a webhook body."""
    return hmac.new(
        secret.encode("utf-8"),
        canonical_json(payload),
        hashlib.sha256,
    ).hexdigest()


class RaiAcceptGateway(PaymentGateway):
    """
    Bank card acquiring through RaiAccept hosted checkout.

    Session creation is three calls: Cognito password auth, order entry,
    then checkout session. RaiAccept reports success with statusCode 0000.
    """

    method = PaymentMethod.RAIACCEPT
    status_table = {
        "CANCELLED": PaymentOutcome.FAILED,
        "CANCELED": PaymentOutcome.FAILED,
        "REJECTED": PaymentOutcome.FAILED,
        "EXPIRED": PaymentOutcome.FAILED,
        "IN_PROGRESS": PaymentOutcome.PENDING,
    }

    def __init__(
        self,
        username: str | None,
        password: str | None,
        cognito_client_id: str | None,
        webhook_secret: str | None,
        auth_url: str,
        api_url: str,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ):
        self.username = username
        self.password = password
        self.cognito_client_id = cognito_client_id
        self.webhook_secret = webhook_secret
        self.auth_url = auth_url
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _authenticate(self) -> str:
        if not self.username or not self.password or not self.cognito_client_id:
            raise GatewayNotConfiguredError(
                self.method.value,
                "RaiAccept credentials not configured. Set RAIACCEPT_USERNAME, "
                "RAIACCEPT_PASSWORD and RAIACCEPT_COGNITO_CLIENT_ID.",
            )

        body = {
            "AuthFlow": "USER_PASSWORD_AUTH",
            "ClientId": self.cognito_client_id,
            "AuthParameters": {
                "USERNAME": self.username,
                "PASSWORD": self.password,
            },
        }
        try:
            response = self.session.post(
                self.auth_url,
                data=json.dumps(body),
                headers={
                    "Content-Type": "application/x-amz-json-1.1",
                    "X-Amz-Target": "AWSCognitoIdentityProviderService.InitiateAuth",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("RaiAccept authentication failed error=%s", exc)
            raise GatewayError(self.method.value, "Authentication failed") from exc

        result = data.get("AuthenticationResult") or {}
        token = result.get("IdToken") or result.get("AccessToken")
        if not token:
            raise GatewayError(self.method.value, "No authentication token in response")
        return token

    def _call(
        self,
        http_method: str,
        path: str,
        token: str,
        payload: dict | None = None,
    ):
        try:
            response = self.session.request(
                http_method,
                f"{self.api_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning(
                "RaiAccept call failed method=%s path=%s error=%s",
                http_method,
                path,
                exc,
            )
            raise GatewayError(self.method.value, f"{http_method} {path} failed") from exc

    def create_session(self, request: PaymentSessionRequest) -> PaymentSession:
        token = self._authenticate()
        amount = to_major_units(request.amount_cents)

        order = self._call(
            "POST",
            "/orders",
            token,
            {
                "amount": amount,
                "currency": request.currency,
                "orderId": request.booking_id,
                "description": request.description,
                "invoice": {
                    "merchantOrderReference": request.booking_id,
                    "description": request.description,
                },
                "successUrl": request.success_url,
                "failureUrl": request.cancel_url,
                "cancelUrl": request.cancel_url,
                "notificationUrl": request.notify_url,
                "customer": {
                    "email": request.customer_email,
                    "name": request.customer_name,
                },
            },
        )
        order_identification = order.get("orderIdentification")
        if not order_identification:
            raise GatewayError(self.method.value, "Order response without orderIdentification")

        checkout = self._call(
            "POST",
            f"/orders/{order_identification}/checkout",
            token,
            {
                "amount": amount,
                "currency": request.currency,
                "orderId": request.booking_id,
                "orderIdentification": order_identification,
                "description": request.description,
                "successUrl": request.success_url,
                "failureUrl": request.cancel_url,
                "cancelUrl": request.cancel_url,
                "language": "en",
            },
        )
        redirect_url = checkout.get("paymentSessionUrl")
        if not redirect_url:
            raise GatewayError(self.method.value, "Checkout response without paymentSessionUrl")

        return PaymentSession(
            provider=self.method,
            correlation_id=order_identification,
            redirect_url=redirect_url,
        )

    def verify_signature(self, payload: dict, signature: str | None) -> None:
        if not self.webhook_secret or not signature:
            raise SignatureInvalidError("Missing RaiAccept signature")
        expected = sign_payload(payload, self.webhook_secret)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            raise SignatureInvalidError("Invalid RaiAccept signature")

    def outcome_for(self, status: str | None, status_code: str | None) -> PaymentOutcome | None:
        outcome = self.map_status(status)
        if outcome is None and status_code == SUCCESS_CODE:
            return PaymentOutcome.PAID
        return outcome

    def parse_webhook(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> PaymentNotification:
        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationError("Malformed RaiAccept payload") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Malformed RaiAccept payload")

        self.verify_signature(payload, header(headers, SIGNATURE_HEADER))

        transaction = payload.get("transaction") or {}
        order = payload.get("order") or {}
        invoice = order.get("invoice") or {}

        transaction_id = transaction.get("transactionId")
        status = transaction.get("status")
        status_code = transaction.get("statusCode")
        order_identification = order.get("orderIdentification")

        delivery_key = None
        if transaction_id:
            delivery_key = f"{transaction_id}:{status}:{status_code}"

        return PaymentNotification(
            provider=self.method,
            provider_status=status or status_code,
            outcome=self.outcome_for(status, status_code),
            correlation_id=order_identification,
            booking_id=invoice.get("merchantOrderReference"),
            transaction_id=transaction_id,
            amount_cents=to_minor_units(transaction.get("transactionAmount")),
            currency=transaction.get("transactionCurrency"),
            delivery_key=delivery_key,
            correlation={
                "raiaccept_order_id": order_identification,
                "raiaccept_transaction_id": transaction_id,
            },
        )

    def refund(self, request: RefundRequest) -> RefundResult:
        if not request.correlation_id or not request.transaction_id:
            raise ValidationError("Missing RaiAccept payment information")

        token = self._authenticate()
        data = self._call(
            "POST",
            "/refunds",
            token,
            {
                "orderIdentification": request.correlation_id,
                "transactionId": request.transaction_id,
                "amount": to_major_units(request.amount_cents),
                "currency": request.currency,
            },
        )
        transaction = data.get("transaction") or {}
        status = transaction.get("status")
        status_code = transaction.get("statusCode")
        return RefundResult(
            provider=self.method,
            succeeded=status_code == SUCCESS_CODE or status == "SUCCESS",
            status=status or status_code,
            refund_id=transaction.get("transactionId"),
            message=transaction.get("statusMessage"),
        )

    def fetch_status(self, correlation_id: str) -> PaymentNotification:
        token = self._authenticate()
        data = self._call("GET", f"/orders/{correlation_id}/transactions", token)

        if isinstance(data, dict):
            transactions = data.get("transactions") or []
        else:
            transactions = data or []

        if not transactions:
            return PaymentNotification(
                provider=self.method,
                provider_status="UNKNOWN",
                outcome=None,
                correlation_id=correlation_id,
            )

        last = transactions[-1]
        status = last.get("status") or last.get("transactionStatus")
        status_code = last.get("statusCode") or last.get("transactionStatusCode")
        transaction_id = last.get("transactionId")
        return PaymentNotification(
            provider=self.method,
            provider_status=status or status_code,
            outcome=self.outcome_for(status, status_code),
            correlation_id=correlation_id,
            transaction_id=transaction_id,
            amount_cents=to_minor_units(last.get("transactionAmount")),
            currency=last.get("transactionCurrency"),
            correlation={
                "raiaccept_order_id": correlation_id,
                "raiaccept_transaction_id": transaction_id,
            },
        )
