from datetime import datetime

from src.api.schemas.schemas import (
    BookingResponse,
    BookingStateResponse,
    BookingTicketResponse,
    EventResponse,
    OutboxEventResponse,
    TicketTypeResponse,
    ValidationLogResponse,
)
from src.infrastructure.db.models import (
    Booking,
    BookingTicket,
    Event,
    OutboxEvent,
    TicketValidationLog,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def ticket_response(ticket: BookingTicket) -> BookingTicketResponse:
    return BookingTicketResponse(
        id=ticket.id,
        ticket_type_id=ticket.ticket_type_id,
        ticket_name=ticket.ticket_name,
        price_cents=ticket.price_cents,
        redemption_code=ticket.redemption_code,
        is_used=ticket.is_used,
        used_at=_iso(ticket.used_at),
    )


def booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        booking_reference=booking.booking_reference,
        user_id=booking.user_id,
        event_id=booking.event_id,
        status=booking.status.value,
        payment_status=booking.payment_status.value,
        payment_method=booking.payment_method.value,
        total_amount_cents=booking.total_amount_cents,
        currency=booking.currency,
        email_sent=booking.email_sent,
        customer_email=booking.customer_email,
        customer_name=booking.customer_name,
        payment_date=_iso(booking.payment_date),
        refund_amount_cents=booking.refund_amount_cents,
        tickets=[ticket_response(ticket) for ticket in booking.tickets],
    )


def booking_state(booking: Booking) -> BookingStateResponse:
    return BookingStateResponse(
        status=booking.status.value,
        payment_status=booking.payment_status.value,
        email_sent=booking.email_sent,
    )


def event_response(event: Event) -> EventResponse:
    return EventResponse(
        id=event.id,
        title=event.title,
        description=event.description,
        date_time=event.date_time.isoformat(),
        location=event.location,
        venue=event.venue,
        status=event.status,
        ticket_types=[
            TicketTypeResponse(
                id=item.id,
                name=item.name,
                price_cents=item.price_cents,
                capacity=item.capacity,
                available_tickets=item.available_tickets,
            )
            for item in event.ticket_types
        ],
    )


def outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        last_error=item.last_error,
        created_at=item.created_at.isoformat(),
    )


def validation_log_response(item: TicketValidationLog) -> ValidationLogResponse:
    return ValidationLogResponse(
        id=item.id,
        scanned_code=item.scanned_code,
        ticket_id=item.ticket_id,
        booking_id=item.booking_id,
        event_id=item.event_id,
        validator_id=item.validator_id,
        status=item.status,
        reason=item.reason,
        created_at=item.created_at.isoformat(),
    )
