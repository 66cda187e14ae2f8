# src/infrastructure/repositories/validation_log_repository.py

from collections.abc import Sequence

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import TicketValidationLog


class ValidationLogRepository:

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        scanned_code: str,
        validator_id: str,
        status: str,
        ticket_id: str | None = None,
        booking_id: str | None = None,
        event_id: str | None = None,
        reason: str | None = None,
    ) -> TicketValidationLog:
        entry = TicketValidationLog(
            scanned_code=scanned_code[:255],
            ticket_id=ticket_id,
            booking_id=booking_id,
            event_id=event_id,
            validator_id=validator_id,
            status=status,
            reason=reason,
        )
        self.db.add(entry)
        return entry

    def list_logs(
        self,
        event_id: str | None = None,
        validator_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> Sequence[TicketValidationLog]:
        stmt = select(TicketValidationLog)
        if event_id:
            stmt = stmt.where(TicketValidationLog.event_id == event_id)
        if validator_id:
            stmt = stmt.where(TicketValidationLog.validator_id == validator_id)
        if status:
            stmt = stmt.where(TicketValidationLog.status == status)
        stmt = stmt.order_by(TicketValidationLog.created_at.desc()).limit(limit)
        return self.db.execute(stmt).scalars().all()
