import hashlib
import logging
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.domain.exceptions import (
    BookingNotFoundError,
    ConflictError,
    ForbiddenError,
    GatewayError,
    ValidationError,
)
from src.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentOutcome,
    PaymentStatus,
)
from src.infrastructure.db.models import Booking
from src.infrastructure.gateways.base import (
    PaymentNotification,
    RefundRequest,
    RefundResult,
)
from src.infrastructure.gateways.registry import GatewayRegistry
from src.infrastructure.repositories.booking_repository import (
    CORRELATION_COLUMNS,
    BookingRepository,
)
from src.infrastructure.repositories.inventory_repository import InventoryRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.webhook_event_repository import WebhookEventRepository


logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    booking: Booking | None
    outcome: PaymentOutcome | None
    applied: bool
    message: str

    @property
    def needs_confirmation_email(self) -> bool:
        return self.applied and self.outcome == PaymentOutcome.PAID


def confirmed_dedupe_key(booking_id: str) -> str:
    return f"booking:{booking_id}:confirmed"


class ReconciliationService:
    """
    Moves bookings out of pending from every source of payment evidence:
    gateway webhooks, browser redirect-back, admin actions and status lookups.

    Every move is a conditional update on payment_status; only the caller
    whose update took effect restores inventory and queues the confirmation.
    """

    def __init__(self, db: Session, registry: GatewayRegistry):
        self.db = db
        self.registry = registry
        self.booking_repository = BookingRepository(db)
        self.inventory_repository = InventoryRepository(db)
        self.outbox_repository = OutboxRepository(db)
        self.webhook_event_repository = WebhookEventRepository(db)

    def handle_webhook(
        self,
        provider: str,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> ReconciliationResult:
        gateway = self.registry.get(provider)
        notification = gateway.parse_webhook(raw_body, headers)
        method = gateway.method

        if not notification.correlation_id and not notification.booking_id:
            logger.info(
                "Webhook without payment reference ignored provider=%s status=%s",
                method.value,
                notification.provider_status,
            )
            return ReconciliationResult(None, None, False, "Event ignored")

        payload_hash = hashlib.sha256(raw_body).hexdigest()
        delivery_key = notification.delivery_key or payload_hash
        if self.webhook_event_repository.get(method.value, delivery_key):
            logger.info(
                "Duplicate webhook delivery provider=%s delivery_key=%s",
                method.value,
                delivery_key,
            )
            return ReconciliationResult(None, notification.outcome, False, "Duplicate delivery")

        booking = self._locate(notification)
        if booking is None:
            logger.warning(
                "Webhook for unknown booking provider=%s correlation_id=%s booking_id=%s",
                method.value,
                notification.correlation_id,
                notification.booking_id,
            )
            raise BookingNotFoundError("Booking not found")

        self.webhook_event_repository.record(
            provider=method.value,
            delivery_key=delivery_key,
            booking_id=booking.id,
            provider_status=notification.provider_status,
            outcome=notification.outcome.value if notification.outcome else "ignored",
            payload_hash=payload_hash,
        )
        try:
            self.db.flush()
        except IntegrityError:
            # A concurrent delivery of the same event already holds the receipt.
            self.db.rollback()
            logger.info(
                "Concurrent duplicate webhook delivery provider=%s delivery_key=%s",
                method.value,
                delivery_key,
            )
            return ReconciliationResult(None, notification.outcome, False, "Duplicate delivery")

        if booking.payment_method != method:
            logger.warning(
                "Webhook provider does not match booking reference=%s provider=%s booking_method=%s",
                booking.booking_reference,
                method.value,
                booking.payment_method.value,
            )
            return ReconciliationResult(booking, None, False, "Provider mismatch")

        return self._apply(booking, notification, source=f"webhook:{method.value}")

    def confirm_from_redirect(
        self,
        identifier: str,
        user_id: str,
        session_id: str | None = None,
    ) -> ReconciliationResult:
        booking = self.booking_repository.get_by_id_or_reference(identifier)
        if not booking:
            raise BookingNotFoundError("Booking not found")
        if booking.user_id != user_id:
            raise ForbiddenError("Booking belongs to another user")

        stored = booking.correlation_id()
        if session_id and stored and session_id != stored:
            logger.warning(
                "Redirect session does not match booking reference=%s",
                booking.booking_reference,
            )
            raise ConflictError("Payment session does not match this booking")

        if BookingStateMachine.is_settled(booking.payment_status):
            return ReconciliationResult(booking, None, False, "Booking already settled")

        correlation = {}
        if session_id and not stored:
            correlation[CORRELATION_COLUMNS[booking.payment_method]] = session_id

        return self.settle(
            booking,
            PaymentOutcome.PAID,
            correlation=correlation,
            source="redirect",
        )

    def admin_confirm(self, booking_id: str, admin_id: str) -> ReconciliationResult:
        booking = self._get(booking_id)
        if booking.status == BookingStatus.CONFIRMED:
            return ReconciliationResult(booking, None, False, "Booking already confirmed")
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)

        result = self.settle(
            booking,
            PaymentOutcome.PAID,
            source=f"admin:{admin_id}",
            extra_values={"notes": self._append_note(booking, f"Manually confirmed by {admin_id}")},
        )
        if not result.applied and result.booking.status != BookingStatus.CONFIRMED:
            BookingStateMachine.validate_transition(result.booking.status, BookingStatus.CONFIRMED)
        return result

    def admin_cancel(self, booking_id: str, admin_id: str) -> ReconciliationResult:
        booking = self._get(booking_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)

        result = self.settle(
            booking,
            PaymentOutcome.FAILED,
            source=f"admin:{admin_id}",
            extra_values={"notes": self._append_note(booking, f"Cancelled by {admin_id}")},
            failure_event="BOOKING_CANCELLED",
        )
        if not result.applied:
            BookingStateMachine.validate_transition(result.booking.status, BookingStatus.CANCELLED)
        return result

    def reconcile(self, booking_id: str) -> ReconciliationResult:
        booking = self._get(booking_id)
        correlation_id = booking.correlation_id()
        if not correlation_id:
            raise ValidationError("Booking has no payment session to reconcile")

        gateway = self.registry.get(booking.payment_method)
        notification = gateway.fetch_status(correlation_id)
        logger.info(
            "Reconciling reference=%s provider=%s remote_status=%s",
            booking.booking_reference,
            gateway.method.value,
            notification.provider_status,
        )
        return self._apply(booking, notification, source="reconcile")

    def refund(
        self,
        booking_id: str,
        amount_cents: int,
        reason: str | None,
        admin_id: str,
    ) -> tuple[Booking, RefundResult]:
        if amount_cents <= 0:
            raise ValidationError("Invalid refund amount")

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise BookingNotFoundError("Booking not found")
        BookingStateMachine.validate_transition(booking.payment_status, PaymentStatus.REFUNDED)
        if amount_cents > booking.total_amount_cents:
            raise ValidationError("Refund amount cannot exceed the amount paid")

        gateway = self.registry.get(booking.payment_method)
        result = gateway.refund(
            RefundRequest(
                booking_id=booking.id,
                correlation_id=booking.correlation_id(),
                transaction_id=booking.transaction_id(),
                amount_cents=amount_cents,
                currency=booking.currency,
                reason=reason,
            )
        )
        if not result.succeeded:
            logger.warning(
                "Refund rejected reference=%s provider=%s status=%s",
                booking.booking_reference,
                gateway.method.value,
                result.status,
            )
            raise GatewayError(gateway.method.value, f"Refund rejected with status {result.status}")

        now = datetime.now(timezone.utc)
        won = self.booking_repository.transition(
            booking.id,
            PaymentStatus.PAID,
            {
                "status": BookingStatus.REFUNDED,
                "payment_status": PaymentStatus.REFUNDED,
                "refund_amount_cents": amount_cents,
                "refund_reason": reason,
                "refunded_at": now,
                "refunded_by": admin_id,
            },
        )
        if not won:
            raise ConflictError("Booking changed while the refund was processed")

        self._restore_inventory(booking)
        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_REFUNDED",
            payload={
                "booking_id": booking.id,
                "booking_reference": booking.booking_reference,
                "refund_amount_cents": amount_cents,
                "currency": booking.currency,
                "refund_id": result.refund_id,
                "reason": reason,
            },
            dedupe_key=f"booking:{booking.id}:refunded",
        )
        logger.info(
            "Booking refunded reference=%s amount_cents=%s provider=%s by=%s",
            booking.booking_reference,
            amount_cents,
            gateway.method.value,
            admin_id,
        )
        return self._get(booking.id), result

    def refund_status(self, booking_id: str) -> Booking:
        return self._get(booking_id)

    def settle(
        self,
        booking: Booking,
        outcome: PaymentOutcome | None,
        source: str,
        correlation: dict | None = None,
        extra_values: dict | None = None,
        failure_event: str = "BOOKING_PAYMENT_FAILED",
    ) -> ReconciliationResult:
        correlation = correlation or {}

        if outcome is None:
            logger.info(
                "Unmapped payment status ignored reference=%s source=%s",
                booking.booking_reference,
                source,
            )
            return ReconciliationResult(booking, None, False, "Status received")

        target = BookingStateMachine.target_for(outcome)
        if target is None:
            booking = self._record_correlation(booking, correlation)
            return ReconciliationResult(booking, outcome, False, "Payment pending")

        target_status, target_payment_status = target
        if booking.payment_status == target_payment_status:
            # A late report of the same outcome still carries ids a refund needs.
            booking = self._record_correlation(booking, correlation)
            return ReconciliationResult(booking, outcome, False, "Already processed")

        if not BookingStateMachine.can_transition(booking.payment_status, target_payment_status):
            booking = self._record_correlation(booking, correlation)
            if outcome == PaymentOutcome.PAID and booking.status == BookingStatus.CANCELLED:
                logger.error(
                    "Payment captured for cancelled booking, manual refund required reference=%s source=%s",
                    booking.booking_reference,
                    source,
                )
            else:
                logger.warning(
                    "Ignoring %s for settled booking reference=%s payment_status=%s source=%s",
                    outcome.value,
                    booking.booking_reference,
                    booking.payment_status.value,
                    source,
                )
            return ReconciliationResult(booking, outcome, False, "Booking already settled")

        values = {
            "status": target_status,
            "payment_status": target_payment_status,
        }
        if outcome == PaymentOutcome.PAID:
            now = datetime.now(timezone.utc)
            values["payment_date"] = now
            values["confirmed_at"] = now
        values.update(extra_values or {})

        won = self.booking_repository.transition(
            booking.id,
            booking.payment_status,
            values,
            correlation=correlation,
        )
        if not won:
            booking = self._record_correlation(booking, correlation)
            logger.info(
                "Transition lost to a concurrent update reference=%s source=%s",
                booking.booking_reference,
                source,
            )
            return ReconciliationResult(booking, outcome, False, "Already processed")

        if outcome == PaymentOutcome.FAILED:
            self._restore_inventory(booking)
            self.outbox_repository.add_event(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type=failure_event,
                payload={
                    "booking_id": booking.id,
                    "booking_reference": booking.booking_reference,
                    "event_id": booking.event_id,
                    "source": source,
                },
                dedupe_key=f"booking:{booking.id}:{failure_event.lower()}",
            )
        else:
            self.outbox_repository.add_event(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type="BOOKING_CONFIRMED",
                payload={
                    "booking_id": booking.id,
                    "booking_reference": booking.booking_reference,
                    "event_id": booking.event_id,
                    "total_amount_cents": booking.total_amount_cents,
                    "currency": booking.currency,
                    "source": source,
                },
                dedupe_key=confirmed_dedupe_key(booking.id),
            )

        booking = self._get(booking.id)
        logger.info(
            "Booking transitioned reference=%s status=%s payment_status=%s source=%s",
            booking.booking_reference,
            booking.status.value,
            booking.payment_status.value,
            source,
        )
        message = "Payment confirmed" if outcome == PaymentOutcome.PAID else "Payment failed"
        return ReconciliationResult(booking, outcome, True, message)

    def _apply(
        self,
        booking: Booking,
        notification: PaymentNotification,
        source: str,
    ) -> ReconciliationResult:
        if notification.outcome == PaymentOutcome.PAID and not self._amount_matches(booking, notification):
            logger.warning(
                "Paid amount does not match booking reference=%s expected=%s %s got=%s %s source=%s",
                booking.booking_reference,
                booking.total_amount_cents,
                booking.currency,
                notification.amount_cents,
                notification.currency,
                source,
            )
            return ReconciliationResult(booking, notification.outcome, False, "Amount mismatch")

        return self.settle(
            booking,
            notification.outcome,
            source=source,
            correlation=notification.correlation,
        )

    @staticmethod
    def _amount_matches(booking: Booking, notification: PaymentNotification) -> bool:
        if notification.amount_cents is not None and notification.amount_cents != booking.total_amount_cents:
            return False
        if notification.currency and notification.currency.upper() != booking.currency.upper():
            return False
        return True

    def _locate(self, notification: PaymentNotification) -> Booking | None:
        booking = None
        if notification.correlation_id:
            booking = self.booking_repository.get_by_correlation_id(
                notification.provider,
                notification.correlation_id,
            )
        if booking is None and notification.booking_id:
            booking = self.booking_repository.get_by_id_or_reference(notification.booking_id)
        return booking

    def _record_correlation(self, booking: Booking, correlation: dict) -> Booking:
        self.booking_repository.record_correlation(booking.id, correlation)
        return self._get(booking.id)

    def _get(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id_or_reference(booking_id)
        if not booking:
            raise BookingNotFoundError("Booking not found")
        return booking

    def _restore_inventory(self, booking: Booking) -> None:
        counts = Counter(ticket.ticket_type_id for ticket in booking.tickets)
        for ticket_type_id, quantity in counts.items():
            if not self.inventory_repository.release(ticket_type_id, quantity):
                logger.error(
                    "Inventory release would exceed capacity reference=%s ticket_type_id=%s quantity=%s",
                    booking.booking_reference,
                    ticket_type_id,
                    quantity,
                )

    @staticmethod
    def _append_note(booking: Booking, note: str) -> str:
        if booking.notes:
            return f"{booking.notes}\n{note}"
        return note