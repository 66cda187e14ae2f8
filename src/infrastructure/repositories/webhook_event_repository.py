# src/infrastructure/repositories/webhook_event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import PaymentWebhookEvent


class WebhookEventRepository:
    """Receipts of authenticated webhook deliveries, one per provider delivery key."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, provider: str, delivery_key: str) -> PaymentWebhookEvent | None:
        stmt = (
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.delivery_key == delivery_key)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def record(
        self,
        provider: str,
        delivery_key: str,
        booking_id: str | None,
        provider_status: str | None,
        outcome: str,
        payload_hash: str,
    ) -> PaymentWebhookEvent:
        receipt = PaymentWebhookEvent(
            provider=provider,
            delivery_key=delivery_key,
            booking_id=booking_id,
            provider_status=provider_status,
            outcome=outcome,
            payload_hash=payload_hash,
        )
        self.db.add(receipt)
        return receipt
