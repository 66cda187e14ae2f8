# src/infrastructure/notifications/documents.py

import io
import json

import qrcode
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from src.infrastructure.db.models import Booking, BookingTicket


_FONT_REGULAR = "Helvetica"
_FONT_BOLD = "Helvetica-Bold"


def qr_payload(booking: Booking, ticket: BookingTicket) -> str:
    """JSON carried by a ticket QR code, accepted as-is by ticket validation."""
    return json.dumps(
        {
            "booking_reference": booking.booking_reference,
            "ticket_code": ticket.redemption_code,
            "event_id": booking.event_id,
        },
        sort_keys=True,
        separators=(",", ":"),
    )


def parse_scanned_ticket(scanned: str) -> tuple[str, str | None]:
    """
    Accepts either a raw redemption code or a scanned QR payload.

    Returns the redemption code and the event id the QR was issued for, if any.
    """
    scanned = scanned.strip()
    try:
        data = json.loads(scanned)
    except ValueError:
        return scanned, None
    if isinstance(data, dict):
        code = data.get("ticket_code") or data.get("code")
        event_id = data.get("event_id")
        if isinstance(code, str) and code:
            return code.strip(), event_id if isinstance(event_id, str) else None
    return scanned, None


def build_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(version=1, box_size=8, border=2)
    qr.add_data(data)
    qr.make(fit=True)

    qr_img = qr.make_image(fill_color="black", back_color="white").get_image()
    buffer = io.BytesIO()
    qr_img.save(buffer, format="PNG")
    return buffer.getvalue()


def _format_dt(dt) -> str:
    if not dt:
        return ""
    return dt.strftime("%d.%m.%Y %H:%M")


def _format_amount(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency}"


def build_tickets_pdf(booking: Booking) -> bytes:
    """
    Renders every ticket of a booking on its own A4 page with a QR code.
    Returns the PDF as bytes.
    """
    event = booking.event
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    margin_left = 20 * mm
    margin_top = height - 20 * mm
    total = len(booking.tickets)

    for ticket in booking.tickets:
        c.setFont(_FONT_BOLD, 20)
        c.drawString(margin_left, margin_top, "E-Ticket")

        y = margin_top - 15 * mm
        c.setFont(_FONT_BOLD, 14)
        c.drawString(margin_left, y, event.title)
        y -= 7 * mm

        c.setFont(_FONT_REGULAR, 11)
        c.drawString(margin_left, y, f"Date: {_format_dt(event.date_time)}")
        y -= 6 * mm
        venue = f"{event.venue}, {event.location}" if event.venue else event.location
        c.drawString(margin_left, y, f"Venue: {venue}")
        y -= 10 * mm

        c.setFont(_FONT_BOLD, 12)
        c.drawString(margin_left, y, "Ticket details")
        y -= 7 * mm

        c.setFont(_FONT_REGULAR, 11)
        c.drawString(margin_left, y, f"Ticket: {ticket.ticket_name} ({ticket.position + 1}/{total})")
        y -= 6 * mm
        c.drawString(margin_left, y, f"Code: {ticket.redemption_code}")
        y -= 6 * mm
        c.drawString(margin_left, y, f"Booking: {booking.booking_reference}")
        y -= 6 * mm
        if booking.customer_name:
            c.drawString(margin_left, y, f"Holder: {booking.customer_name}")
            y -= 6 * mm
        c.drawString(margin_left, y, f"Price: {_format_amount(ticket.price_cents, booking.currency)}")

        qr_size = 50 * mm
        c.drawImage(
            ImageReader(io.BytesIO(build_qr_png(qr_payload(booking, ticket)))),
            width - qr_size - 20 * mm,
            margin_top - qr_size,
            qr_size,
            qr_size,
            mask="auto",
        )

        c.setFont(_FONT_REGULAR, 9)
        footer_y = 15 * mm
        c.drawString(margin_left, footer_y, "Show this QR code at the entrance. One code admits one person.")

        c.showPage()

    c.save()
    pdf = buffer.getvalue()
    buffer.close()
    return pdf
