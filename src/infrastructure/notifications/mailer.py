# src/infrastructure/notifications/mailer.py

import logging
import smtplib
from email.message import EmailMessage

from src.domain.exceptions import EmailDeliveryError
from src.infrastructure.config import Settings
from src.infrastructure.db.models import Booking


logger = logging.getLogger(__name__)


class SmtpMailer:
    """Hands messages to the configured SMTP relay."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def sender(self) -> str:
        return self.settings.email_from

    def send(self, message: EmailMessage) -> None:
        if not self.settings.smtp_host:
            raise EmailDeliveryError("SMTP not configured. Set SMTP_HOST.")

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as smtp:
                if self.settings.smtp_use_tls:
                    smtp.starttls()
                if self.settings.smtp_username:
                    smtp.login(self.settings.smtp_username, self.settings.smtp_password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery failed to=%s error=%s", message["To"], exc)
            raise EmailDeliveryError(str(exc)) from exc


def build_confirmation_message(
    booking: Booking,
    sender: str,
    tickets_pdf: bytes,
) -> EmailMessage:
    event = booking.event
    message = EmailMessage()
    message["Subject"] = f"Your tickets for {event.title} ({booking.booking_reference})"
    message["From"] = sender
    message["To"] = booking.customer_email

    lines = [
        f"Hello {booking.customer_name or ''}".rstrip() + ",",
        "",
        f"your booking {booking.booking_reference} is confirmed.",
        "",
        f"Event: {event.title}",
        f"Date: {event.date_time:%d.%m.%Y %H:%M}",
        f"Location: {event.location}",
        f"Tickets: {len(booking.tickets)}",
        f"Total: {booking.total_amount_cents / 100:.2f} {booking.currency}",
        "",
        "Your tickets are attached. Show the QR code at the entrance.",
    ]
    message.set_content("\n".join(lines))
    message.add_attachment(
        tickets_pdf,
        maintype="application",
        subtype="pdf",
        filename=f"tickets-{booking.booking_reference}.pdf",
    )
    return message
