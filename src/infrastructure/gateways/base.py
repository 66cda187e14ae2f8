# src/infrastructure/gateways/base.py

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from src.domain.payments import PaymentMethod, map_status
from src.domain.state_machine import PaymentOutcome


@dataclass(frozen=True)
class PaymentSessionRequest:
    booking_id: str
    booking_reference: str
    amount_cents: int
    currency: str
    description: str
    success_url: str
    cancel_url: str
    notify_url: str
    customer_email: str | None = None
    customer_name: str | None = None


@dataclass(frozen=True)
class PaymentSession:
    provider: PaymentMethod
    correlation_id: str
    redirect_url: str | None = None
    client_secret: str | None = None
    public_key: str | None = None


@dataclass(frozen=True)
class PaymentNotification:
    """A provider status report, from a webhook or from a status lookup."""

    provider: PaymentMethod
    provider_status: str | None
    outcome: PaymentOutcome | None
    correlation_id: str | None = None
    booking_id: str | None = None
    transaction_id: str | None = None
    amount_cents: int | None = None
    currency: str | None = None
    delivery_key: str | None = None
    # Booking correlation columns this report fills when still empty.
    correlation: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundRequest:
    booking_id: str
    correlation_id: str | None
    transaction_id: str | None
    amount_cents: int
    currency: str
    reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    provider: PaymentMethod
    succeeded: bool
    status: str | None
    refund_id: str | None = None
    message: str | None = None


class PaymentGateway(ABC):
    """
    Contract every payment provider adapter implements.
    Adapters translate provider vocabulary into PaymentOutcome and raise
    domain errors (GatewayError, SignatureInvalidError) instead of SDK errors.
    """

    method: PaymentMethod
    status_table: Mapping[str, PaymentOutcome] = {}

    @abstractmethod
    def create_session(self, request: PaymentSessionRequest) -> PaymentSession:
        ...

    @abstractmethod
    def parse_webhook(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> PaymentNotification:
        """Verifies authenticity of a webhook body, then parses it."""

    @abstractmethod
    def refund(self, request: RefundRequest) -> RefundResult:
        ...

    @abstractmethod
    def fetch_status(self, correlation_id: str) -> PaymentNotification:
        ...

    def map_status(self, provider_status: str | None) -> PaymentOutcome | None:
        return map_status(provider_status, self.status_table)


def header(headers: Mapping[str, str], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def to_major_units(amount_cents: int) -> float:
    return float((Decimal(amount_cents) / 100).quantize(Decimal("0.01")))


def to_minor_units(amount) -> int | None:
    if amount is None:
        return None
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
