import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy.orm import Session

from src.domain.exceptions import (
    BookingNotFoundError,
    EventNotFoundError,
    ForbiddenError,
    InsufficientInventoryError,
    TicketAlreadyUsedError,
    TicketingError,
    TicketNotFoundError,
    TicketTypeNotFoundError,
    ValidationError,
)
from src.domain.payments import PaymentMethod
from src.domain.references import new_booking_reference, new_redemption_code
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.config import Settings
from src.infrastructure.db.models import (
    Booking,
    BookingTicket,
    Event,
    TicketType,
    TicketValidationLog,
)
from src.infrastructure.gateways.base import PaymentSession, PaymentSessionRequest
from src.infrastructure.gateways.registry import GatewayRegistry
from src.infrastructure.notifications.documents import build_tickets_pdf, parse_scanned_ticket
from src.infrastructure.repositories.booking_repository import (
    CORRELATION_COLUMNS,
    BookingRepository,
)
from src.infrastructure.repositories.inventory_repository import InventoryRepository
from src.infrastructure.repositories.validation_log_repository import ValidationLogRepository


logger = logging.getLogger(__name__)


class BookingService:
    """Application service coordinating checkout, booking reads and ticket redemption."""

    def __init__(
        self,
        db: Session,
        registry: GatewayRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.registry = registry
        self.settings = settings
        self.booking_repository = BookingRepository(db)
        self.inventory_repository = InventoryRepository(db)
        self.validation_log_repository = ValidationLogRepository(db)

    def create_booking(
        self,
        user_id: str,
        event_id: str,
        items: Iterable[tuple[str, int]],
        payment_method: PaymentMethod | None = None,
        customer_email: str | None = None,
        customer_name: str | None = None,
    ) -> tuple[Booking, PaymentSession]:
        """
        Holds inventory, persists a pending booking and opens a payment
        session. Any failure rolls the booking and every hold back together.
        """
        try:
            return self._create_booking(
                user_id=user_id,
                event_id=event_id,
                items=items,
                payment_method=payment_method,
                customer_email=customer_email,
                customer_name=customer_name,
            )
        except TicketingError:
            self.db.rollback()
            raise

    def _create_booking(
        self,
        user_id: str,
        event_id: str,
        items: Iterable[tuple[str, int]],
        payment_method: PaymentMethod | None,
        customer_email: str | None,
        customer_name: str | None,
    ) -> tuple[Booking, PaymentSession]:
        event = self.inventory_repository.get_event(event_id)
        if not event:
            raise EventNotFoundError("Event not found")
        if event.status != "published":
            raise ValidationError("Event is not open for booking")

        quantities: dict[str, int] = {}
        for ticket_type_id, quantity in items:
            if quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            quantities[ticket_type_id] = quantities.get(ticket_type_id, 0) + quantity
        if not quantities:
            raise ValidationError("At least one ticket is required")

        ticket_types = self.inventory_repository.get_ticket_types(event_id, quantities)
        for ticket_type_id in quantities:
            if ticket_type_id not in ticket_types:
                raise TicketTypeNotFoundError(f"Ticket type {ticket_type_id} not found")

        for ticket_type_id, quantity in quantities.items():
            ticket_type = ticket_types[ticket_type_id]
            if ticket_type.available_tickets < quantity:
                raise InsufficientInventoryError(
                    f"Not enough tickets available for {ticket_type.name}"
                )

        if payment_method and not self.registry.is_enabled(payment_method):
            raise ValidationError(f"Payment method {payment_method.value} is not available")
        gateway = self.registry.select(payment_method)

        for ticket_type_id, quantity in quantities.items():
            if not self.inventory_repository.reserve(ticket_type_id, quantity):
                raise InsufficientInventoryError(
                    f"Not enough tickets available for {ticket_types[ticket_type_id].name}"
                )

        booking = Booking(
            booking_reference=new_booking_reference(),
            user_id=user_id,
            event_id=event.id,
            currency=self.settings.default_currency,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=gateway.method,
            customer_email=customer_email,
            customer_name=customer_name,
            email_sent=False,
        )
        booking.tickets = self._line_items(quantities, ticket_types)
        booking.total_amount_cents = sum(item.price_cents for item in booking.tickets)
        self.booking_repository.add(booking)
        self.db.flush()

        base_url = self.settings.public_base_url
        session = gateway.create_session(
            PaymentSessionRequest(
                booking_id=booking.id,
                booking_reference=booking.booking_reference,
                amount_cents=booking.total_amount_cents,
                currency=booking.currency,
                description=f"{event.title} - {len(booking.tickets)} ticket(s)",
                success_url=f"{base_url}/payments/success?booking_id={booking.id}",
                cancel_url=f"{base_url}/payments/cancelled?booking_id={booking.id}",
                notify_url=f"{base_url}/webhooks/{gateway.method.value}",
                customer_email=customer_email,
                customer_name=customer_name,
            )
        )
        setattr(booking, CORRELATION_COLUMNS[gateway.method], session.correlation_id)
        self.db.flush()

        logger.info(
            "Booking created reference=%s event_id=%s tickets=%s total_cents=%s provider=%s",
            booking.booking_reference,
            event.id,
            len(booking.tickets),
            booking.total_amount_cents,
            gateway.method.value,
        )
        return booking, session

    @staticmethod
    def _line_items(
        quantities: dict[str, int],
        ticket_types: dict[str, TicketType],
    ) -> list[BookingTicket]:
        line_items = []
        for ticket_type_id, quantity in quantities.items():
            ticket_type = ticket_types[ticket_type_id]
            for _ in range(quantity):
                line_items.append(
                    BookingTicket(
                        ticket_type_id=ticket_type.id,
                        ticket_name=ticket_type.name,
                        price_cents=ticket_type.price_cents,
                        redemption_code=new_redemption_code(),
                        position=len(line_items),
                        is_used=False,
                    )
                )
        return line_items

    def get_booking(self, identifier: str) -> Booking:
        booking = self.booking_repository.get_by_id_or_reference(identifier)
        if not booking:
            raise BookingNotFoundError("Booking not found")
        return booking

    def get_booking_for_user(self, identifier: str, user_id: str) -> Booking:
        booking = self.get_booking(identifier)
        if booking.user_id != user_id:
            raise ForbiddenError("Booking belongs to another user")
        return booking

    def list_bookings_for_user(self, user_id: str) -> Sequence[Booking]:
        return self.booking_repository.list_for_user(user_id)

    def tickets_pdf(self, identifier: str, user_id: str) -> tuple[Booking, bytes]:
        booking = self.get_booking_for_user(identifier, user_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise ValidationError("Tickets are available once the booking is confirmed")
        return booking, build_tickets_pdf(booking)

    def get_event(self, event_id: str) -> Event:
        event = self.inventory_repository.get_event(event_id)
        if not event:
            raise EventNotFoundError("Event not found")
        return event

    def list_events(self) -> Sequence[Event]:
        return self.inventory_repository.list_events()

    def create_event(
        self,
        title: str,
        date_time: datetime,
        location: str,
        ticket_types: Iterable[tuple[str, int, int]],
        description: str = "",
        venue: str | None = None,
        status: str = "published",
    ) -> Event:
        event = Event(
            title=title,
            description=description,
            date_time=date_time,
            location=location,
            venue=venue,
            status=status,
        )
        self.inventory_repository.add_event(event)
        self.db.flush()

        seen = set()
        for name, price_cents, capacity in ticket_types:
            if name in seen:
                raise ValidationError(f"Duplicate ticket type {name}")
            seen.add(name)
            self.inventory_repository.add_ticket_type(
                TicketType(
                    event_id=event.id,
                    name=name,
                    price_cents=price_cents,
                    capacity=capacity,
                    available_tickets=capacity,
                )
            )
        self.db.flush()
        self.db.refresh(event)

        logger.info("Event created event_id=%s title=%s", event.id, event.title)
        return event

    def validate_ticket(
        self,
        scanned: str,
        validated_by: str,
        event_id: str | None = None,
    ) -> BookingTicket:
        """
        Redeems a ticket once, at the event it was issued for.

        Every scan lands in the validation log. Rejections are committed
        before the error propagates so the audit row survives the request.
        """
        code, issued_for = parse_scanned_ticket(scanned)
        ticket = self.booking_repository.get_ticket_by_code(code)
        booking = ticket.booking if ticket else None
        try:
            if not ticket:
                raise TicketNotFoundError("Ticket not found")
            for expected_event_id in (event_id, issued_for):
                if expected_event_id and expected_event_id != booking.event_id:
                    raise ValidationError("Event mismatch")
            if booking.status != BookingStatus.CONFIRMED:
                raise ValidationError(f"Booking is {booking.status.value}, ticket is not valid")
            if ticket.is_used:
                raise TicketAlreadyUsedError(f"Ticket already validated at {ticket.used_at}")
            if not self.booking_repository.redeem_ticket(ticket.id, validated_by):
                raise TicketAlreadyUsedError("Ticket already validated")
        except TicketingError as exc:
            self.validation_log_repository.record(
                scanned_code=code,
                validator_id=validated_by,
                status="rejected",
                ticket_id=ticket.id if ticket else None,
                booking_id=booking.id if booking else None,
                event_id=booking.event_id if booking else event_id,
                reason=str(exc),
            )
            self.db.commit()
            logger.warning("Ticket rejected code=%s by=%s reason=%s", code, validated_by, exc)
            raise

        self.validation_log_repository.record(
            scanned_code=code,
            validator_id=validated_by,
            status="validated",
            ticket_id=ticket.id,
            booking_id=booking.id,
            event_id=booking.event_id,
        )
        ticket = self.booking_repository.get_ticket_by_code(code)
        logger.info(
            "Ticket validated reference=%s code=%s by=%s",
            booking.booking_reference,
            code,
            validated_by,
        )
        return ticket

    def list_validation_logs(
        self,
        event_id: str | None = None,
        validator_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> Sequence[TicketValidationLog]:
        return self.validation_log_repository.list_logs(
            event_id=event_id,
            validator_id=validator_id,
            status=status,
            limit=limit,
        )
