import json
import re
from datetime import datetime, timezone

from src.domain.payments import PaymentMethod
from src.domain.references import new_booking_reference, new_redemption_code
from src.infrastructure.db.models import Booking, BookingTicket, Event
from src.infrastructure.notifications.documents import (
    build_qr_png,
    build_tickets_pdf,
    parse_scanned_ticket,
    qr_payload,
)
from src.infrastructure.notifications.mailer import build_confirmation_message


def _booking(ticket_count: int = 2) -> Booking:
    event = Event(
        id="event-1",
        title="Jazz Night",
        description="",
        date_time=datetime(2030, 6, 1, 20, 0, tzinfo=timezone.utc),
        location="Prishtina",
        venue="National Theatre",
        status="published",
    )
    booking = Booking(
        id="booking-1",
        booking_reference="BKNGTEST123456",
        user_id="user-1",
        event_id=event.id,
        total_amount_cents=2500 * ticket_count,
        currency="EUR",
        payment_method=PaymentMethod.RAIACCEPT,
        customer_email="fan@example.com",
        customer_name="Fan",
    )
    booking.event = event
    booking.tickets = [
        BookingTicket(
            ticket_type_id="type-1",
            ticket_name="Regular",
            price_cents=2500,
            redemption_code=f"TKT-CODE{index}",
            position=index,
            is_used=False,
        )
        for index in range(ticket_count)
    ]
    return booking


def test_booking_reference_format():
    reference = new_booking_reference()

    assert re.fullmatch(r"BKNG[0-9A-Z]+", reference)
    assert len(reference) > 10
    assert new_booking_reference() != reference


def test_redemption_codes_are_unique():
    codes = {new_redemption_code() for _ in range(100)}

    assert len(codes) == 100
    assert all(code.startswith("TKT-") for code in codes)


def test_qr_payload_round_trips_through_validation():
    booking = _booking()
    ticket = booking.tickets[0]

    payload = qr_payload(booking, ticket)

    assert json.loads(payload)["booking_reference"] == "BKNGTEST123456"
    assert parse_scanned_ticket(payload) == (ticket.redemption_code, booking.event_id)


def test_scanned_ticket_accepts_raw_codes():
    assert parse_scanned_ticket("  TKT-ABC  ") == ("TKT-ABC", None)
    assert parse_scanned_ticket('{"code": "TKT-XYZ"}') == ("TKT-XYZ", None)
    assert parse_scanned_ticket("[1, 2]") == ("[1, 2]", None)


def test_qr_png():
    png = build_qr_png("TKT-ABC")

    assert png.startswith(b"\x89PNG")


def test_tickets_pdf_has_one_page_per_ticket():
    pdf = build_tickets_pdf(_booking(ticket_count=3))

    assert pdf.startswith(b"%PDF")
    assert b"/Count 3" in pdf


def test_confirmation_message_attaches_pdf():
    booking = _booking()
    message = build_confirmation_message(booking, sender="tickets@example.com", tickets_pdf=b"%PDF-1.4")

    assert message["To"] == "fan@example.com"
    assert "BKNGTEST123456" in message["Subject"]
    attachments = list(message.iter_attachments())
    assert len(attachments) == 1
    assert attachments[0].get_filename() == "tickets-BKNGTEST123456.pdf"
    assert attachments[0].get_content() == b"%PDF-1.4"
