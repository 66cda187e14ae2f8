import logging
from email.message import EmailMessage
from typing import Protocol

from sqlalchemy.orm import Session

from src.application.reconciliation_service import confirmed_dedupe_key
from src.domain.exceptions import EmailDeliveryError
from src.domain.state_machine import BookingStatus
from src.infrastructure.notifications.documents import build_tickets_pdf
from src.infrastructure.notifications.mailer import build_confirmation_message
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository


logger = logging.getLogger(__name__)


class Mailer(Protocol):
    sender: str

    def send(self, message: EmailMessage) -> None:
        ...


class ConfirmationNotifier:
    """
    Sends the confirmation email with PDF tickets.

    email_sent is claimed with a guarded update before the message goes out,
    so concurrent senders cannot both mail it, and released again when the
    mail server refuses it. The BOOKING_CONFIRMED outbox entry stays PENDING
    until a send succeeds, which is what dispatch_pending() retries.
    """

    def __init__(self, db: Session, mailer: Mailer):
        self.db = db
        self.mailer = mailer
        self.booking_repository = BookingRepository(db)
        self.outbox_repository = OutboxRepository(db)

    def send_confirmation(self, booking_id: str, force: bool = False) -> bool:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            logger.warning("Confirmation requested for unknown booking booking_id=%s", booking_id)
            return False
        if booking.status != BookingStatus.CONFIRMED:
            logger.info(
                "Confirmation skipped, booking not confirmed reference=%s status=%s",
                booking.booking_reference,
                booking.status.value,
            )
            return False
        if booking.email_sent and not force:
            return False
        if not booking.customer_email:
            logger.warning(
                "Confirmation skipped, no customer email reference=%s",
                booking.booking_reference,
            )
            return False

        message = build_confirmation_message(
            booking,
            sender=self.mailer.sender,
            tickets_pdf=build_tickets_pdf(booking),
        )
        if not force and not self.booking_repository.claim_email(booking.id):
            logger.info(
                "Confirmation already claimed by another sender reference=%s",
                booking.booking_reference,
            )
            return False

        outbox_event = self.outbox_repository.get_by_dedupe_key(confirmed_dedupe_key(booking.id))
        try:
            self.mailer.send(message)
        except EmailDeliveryError as exc:
            if not force:
                self.booking_repository.release_email_claim(booking.id)
            logger.warning(
                "Confirmation email failed reference=%s error=%s",
                booking.booking_reference,
                exc,
            )
            if outbox_event and outbox_event.status == "PENDING":
                self.outbox_repository.mark_failed_attempt(outbox_event, str(exc))
            return False

        if force:
            self.booking_repository.mark_email_sent(booking.id)
        if outbox_event and outbox_event.status == "PENDING":
            self.outbox_repository.mark_published(outbox_event)
        logger.info(
            "Confirmation email sent reference=%s to=%s",
            booking.booking_reference,
            booking.customer_email,
        )
        return True

    def dispatch_pending(self, limit: int = 50) -> dict:
        """Retries confirmation emails whose BOOKING_CONFIRMED entry is still pending."""
        events = self.outbox_repository.list_events(
            status="PENDING",
            event_type="BOOKING_CONFIRMED",
            limit=limit,
        )
        summary = {"processed": 0, "sent": 0, "failed": 0}
        for event in events:
            summary["processed"] += 1
            booking = self.booking_repository.get_by_id(event.aggregate_id)
            if booking and booking.email_sent:
                self.outbox_repository.mark_published(event)
                continue
            if self.send_confirmation(event.aggregate_id):
                summary["sent"] += 1
            else:
                summary["failed"] += 1
        return summary
