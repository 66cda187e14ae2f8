# src/infrastructure/repositories/outbox_repository.py

import json
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import OutboxEvent


class OutboxRepository:

    def __init__(self, db: Session):
        self.db = db

    def add_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
        dedupe_key: str,
    ) -> OutboxEvent | None:
        existing = self.get_by_dedupe_key(dedupe_key)
        if existing:
            return None

        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=json.dumps(payload, sort_keys=True, default=str),
            dedupe_key=dedupe_key,
            status="PENDING",
            attempts=0,
        )
        self.db.add(event)
        return event

    def get_by_id(self, event_id: str) -> OutboxEvent | None:
        stmt = select(OutboxEvent).where(OutboxEvent.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_dedupe_key(self, dedupe_key: str) -> OutboxEvent | None:
        stmt = select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_events(
        self,
        status: str = "PENDING",
        event_type: str | None = None,
        limit: int = 50,
    ) -> Sequence[OutboxEvent]:
        stmt = select(OutboxEvent).where(OutboxEvent.status == status)
        if event_type:
            stmt = stmt.where(OutboxEvent.event_type == event_type)
        stmt = stmt.order_by(OutboxEvent.created_at).limit(limit)
        return self.db.execute(stmt).scalars().all()

    def mark_published(self, event: OutboxEvent) -> OutboxEvent:
        event.status = "PUBLISHED"
        event.published_at = datetime.now(timezone.utc)
        event.attempts += 1
        return event

    def mark_failed_attempt(self, event: OutboxEvent, error: str) -> OutboxEvent:
        event.attempts += 1
        event.last_error = error
        return event
