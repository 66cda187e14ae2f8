from sqlalchemy import select

from src.application.notification_service import ConfirmationNotifier
from src.application.reconciliation_service import ReconciliationService
from src.domain.state_machine import PaymentOutcome, PaymentStatus
from src.infrastructure.db.models import OutboxEvent
from src.infrastructure.db.session import SessionLocal


def _available(client, event_id: str) -> int:
    return client.get(f"/events/{event_id}").json()["ticket_types"][0]["available_tickets"]


def _settle_from_two_sessions(registry, booking_id: str, first: PaymentOutcome, second: PaymentOutcome):
    """Both sessions read the booking while it is still pending, then settle in turn."""
    first_db = SessionLocal()
    second_db = SessionLocal()
    try:
        first_service = ReconciliationService(first_db, registry)
        second_service = ReconciliationService(second_db, registry)
        first_booking = first_service.booking_repository.get_by_id(booking_id)
        second_booking = second_service.booking_repository.get_by_id(booking_id)
        assert first_booking.payment_status == PaymentStatus.PENDING
        assert second_booking.payment_status == PaymentStatus.PENDING

        first_result = first_service.settle(first_booking, first, source="first")
        first_db.commit()
        second_result = second_service.settle(second_booking, second, source="second")
        second_db.commit()
        return first_result, second_result
    finally:
        first_db.close()
        second_db.close()


def test_only_one_of_two_confirmations_wins(client, create_event, book, registry, mailer):
    event = create_event()
    booking_id = book(event).json()["booking"]["id"]

    results = _settle_from_two_sessions(
        registry, booking_id, PaymentOutcome.PAID, PaymentOutcome.PAID
    )

    assert [result.applied for result in results] == [True, False]
    assert results[1].message == "Already processed"
    assert results[1].booking.payment_status == PaymentStatus.PAID

    db = SessionLocal()
    try:
        notifier = ConfirmationNotifier(db, mailer)
        for result in results:
            if result.needs_confirmation_email:
                notifier.send_confirmation(result.booking.id)
        db.commit()

        confirmed_events = db.execute(
            select(OutboxEvent).where(
                OutboxEvent.aggregate_id == booking_id,
                OutboxEvent.event_type == "BOOKING_CONFIRMED",
            )
        ).scalars().all()
    finally:
        db.close()

    assert len(confirmed_events) == 1
    assert len(mailer.sent) == 1


def test_losing_failure_report_keeps_inventory_held(client, create_event, book, registry):
    event = create_event(capacity=5)
    booking_id = book(event, quantity=2).json()["booking"]["id"]
    assert _available(client, event["id"]) == 3

    results = _settle_from_two_sessions(
        registry, booking_id, PaymentOutcome.PAID, PaymentOutcome.FAILED
    )

    assert results[0].applied is True
    assert results[1].applied is False
    assert results[1].booking.status.value == "confirmed"
    assert _available(client, event["id"]) == 3


def test_stale_sender_does_not_mail_twice(client, create_event, book, registry, mailer):
    event = create_event()
    booking_id = book(event).json()["booking"]["id"]
    _settle_from_two_sessions(registry, booking_id, PaymentOutcome.PAID, PaymentOutcome.PAID)

    stale_db = SessionLocal()
    db = SessionLocal()
    try:
        stale = ConfirmationNotifier(stale_db, mailer)
        stale_booking = stale.booking_repository.get_by_id(booking_id)
        assert stale_booking.email_sent is False

        assert ConfirmationNotifier(db, mailer).send_confirmation(booking_id) is True
        db.commit()

        # The stale sender passed its email_sent check before the other commit.
        stale.booking_repository.get_by_id = lambda _booking_id, for_update=False: stale_booking
        assert stale.send_confirmation(booking_id) is False
        stale_db.commit()
    finally:
        db.close()
        stale_db.close()

    assert len(mailer.sent) == 1
