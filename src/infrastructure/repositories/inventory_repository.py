# src/infrastructure/repositories/inventory_repository.py

from collections.abc import Iterable, Sequence

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select, update

from src.infrastructure.db.models import Event, TicketType


class InventoryRepository:
    """
    Events and their ticket-type inventory.

    Availability counters are changed with single UPDATE statements so that
    concurrent checkouts, failures and refunds never lose an update.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_event(self, event_id: str) -> Event | None:
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .options(selectinload(Event.ticket_types))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_events(self) -> Sequence[Event]:
        stmt = (
            select(Event)
            .options(selectinload(Event.ticket_types))
            .order_by(Event.date_time)
        )
        return self.db.execute(stmt).scalars().all()

    def get_ticket_types(
        self,
        event_id: str,
        ticket_type_ids: Iterable[str],
    ) -> dict[str, TicketType]:
        stmt = (
            select(TicketType)
            .where(TicketType.event_id == event_id)
            .where(TicketType.id.in_(list(ticket_type_ids)))
        )
        return {item.id: item for item in self.db.execute(stmt).scalars().all()}

    def add_event(self, event: Event) -> Event:
        self.db.add(event)
        return event

    def add_ticket_type(self, ticket_type: TicketType) -> TicketType:
        self.db.add(ticket_type)
        return ticket_type

    def reserve(self, ticket_type_id: str, quantity: int) -> bool:
        """
        UPDATE ... SET available = available - n WHERE available >= n
        Returns False when the hold could not be taken.
        """
        stmt = (
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .where(TicketType.available_tickets >= quantity)
            .values(available_tickets=TicketType.available_tickets - quantity)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def release(self, ticket_type_id: str, quantity: int) -> bool:
        """
        Gives held tickets back, never beyond capacity.
        Returns False when the release would overflow the capacity.
        """
        stmt = (
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .where(TicketType.available_tickets + quantity <= TicketType.capacity)
            .values(available_tickets=TicketType.available_tickets + quantity)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1
