# src/infrastructure/repositories/booking_repository.py

from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, select, update

from src.domain.payments import PaymentMethod
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.db.models import Booking, BookingTicket


# Booking column holding the primary correlation ID of each gateway.
CORRELATION_COLUMNS = {
    PaymentMethod.STRIPE: "stripe_payment_intent_id",
    PaymentMethod.RAIACCEPT: "raiaccept_order_id",
    PaymentMethod.RAZORPAY: "razorpay_order_id",
}


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Booking | None:

        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .options(selectinload(Booking.tickets))
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_reference(self, booking_reference: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.booking_reference == booking_reference)
            .options(selectinload(Booking.tickets))
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id_or_reference(self, identifier: str) -> Booking | None:
        return self.get_by_id(identifier) or self.get_by_reference(identifier)

    def get_by_correlation_id(
        self,
        method: PaymentMethod,
        correlation_id: str,
    ) -> Booking | None:
        column = getattr(Booking, CORRELATION_COLUMNS[method])
        stmt = (
            select(Booking)
            .where(column == correlation_id)
            .options(selectinload(Booking.tickets))
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_ticket_by_code(self, redemption_code: str) -> BookingTicket | None:
        stmt = (
            select(BookingTicket)
            .where(BookingTicket.redemption_code == redemption_code)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str) -> Sequence[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .options(selectinload(Booking.tickets))
            .order_by(Booking.created_at.desc())
        )
        return self.db.execute(stmt).scalars().all()

    def list_bookings(
        self,
        status: BookingStatus | None = None,
        payment_status: PaymentStatus | None = None,
        payment_method: PaymentMethod | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Booking]:
        stmt = select(Booking).options(selectinload(Booking.tickets))
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        if payment_status is not None:
            stmt = stmt.where(Booking.payment_status == payment_status)
        if payment_method is not None:
            stmt = stmt.where(Booking.payment_method == payment_method)
        stmt = stmt.order_by(Booking.created_at.desc()).limit(limit).offset(offset)
        return self.db.execute(stmt).scalars().all()

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        return booking

    def transition(
        self,
        booking_id: str,
        expected_payment_status: PaymentStatus,
        values: dict,
        correlation: dict | None = None,
    ) -> bool:
        """
        Compare-and-swap on payment_status.

        Applies ``values`` only while the row still carries
        ``expected_payment_status``; correlation columns are filled only if
        still empty. Returns True when this call performed the update.
        """
        update_values = dict(values)
        for column_name, value in (correlation or {}).items():
            if value is None:
                continue
            column = getattr(Booking, column_name)
            update_values[column_name] = func.coalesce(column, value)
        update_values["version"] = Booking.version + 1

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.payment_status == expected_payment_status)
            .values(**update_values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def record_correlation(
        self,
        booking_id: str,
        correlation: dict,
    ) -> None:
        """Fills empty correlation columns without touching lifecycle state."""
        values = {}
        for column_name, value in correlation.items():
            if value is None:
                continue
            column = getattr(Booking, column_name)
            values[column_name] = func.coalesce(column, value)
        if not values:
            return
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    def claim_email(self, booking_id: str) -> bool:
        """Sets email_sent unless another sender already holds it."""
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.email_sent.is_(False))
            .values(email_sent=True)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def release_email_claim(self, booking_id: str) -> None:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(email_sent=False)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    def mark_email_sent(self, booking_id: str) -> None:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(email_sent=True)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)

    def redeem_ticket(self, ticket_id: str, validated_by: str) -> bool:
        """Flags a ticket as used unless another scan got there first."""
        stmt = (
            update(BookingTicket)
            .where(BookingTicket.id == ticket_id)
            .where(BookingTicket.is_used.is_(False))
            .values(
                is_used=True,
                used_at=datetime.now(timezone.utc),
                validated_by=validated_by,
            )
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1
