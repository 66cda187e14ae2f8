# src/infrastructure/db/models.py

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.payments import PaymentMethod
from src.domain.state_machine import BookingStatus, PaymentStatus


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    venue: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="published")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    ticket_types: Mapped[list["TicketType"]] = relationship(
        back_populates="event",
        order_by="TicketType.name",
    )


class TicketType(Base):
    """
    Per-event ticket type with its own capacity.
    available_tickets is only ever changed through atomic UPDATE statements.
    """

    __tablename__ = "ticket_types"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    available_tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    event: Mapped[Event] = relationship(back_populates="ticket_types")

    __table_args__ = (
        UniqueConstraint(
            "event_id",
            "name",
            name="uq_ticket_type_event_name",
        ),
        CheckConstraint("price_cents >= 0", name="ck_ticket_price_nonnegative"),
        CheckConstraint("capacity >= 0", name="ck_ticket_capacity_nonnegative"),
        CheckConstraint("available_tickets >= 0", name="ck_ticket_available_nonnegative"),
        CheckConstraint("available_tickets <= capacity", name="ck_ticket_available_lte_capacity"),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    booking_reference: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="EUR")
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", values_callable=_enum_values),
        nullable=False,
    )

    # Correlation slots, one per gateway. Written once, never overwritten.
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    raiaccept_order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    raiaccept_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    razorpay_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    razorpay_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    refund_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    event: Mapped[Event] = relationship()
    tickets: Mapped[list["BookingTicket"]] = relationship(
        back_populates="booking",
        order_by="BookingTicket.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("booking_reference", name="uq_booking_reference"),
        UniqueConstraint("stripe_payment_intent_id", name="uq_booking_stripe_payment_intent"),
        UniqueConstraint("raiaccept_order_id", name="uq_booking_raiaccept_order"),
        UniqueConstraint("razorpay_order_id", name="uq_booking_razorpay_order"),
        UniqueConstraint("razorpay_payment_id", name="uq_booking_razorpay_payment"),
        CheckConstraint(
            "status <> 'confirmed' OR payment_status = 'paid'",
            name="ck_confirmed_implies_paid",
        ),
        CheckConstraint("total_amount_cents >= 0", name="ck_booking_total_nonnegative"),
        Index("ix_bookings_user_created", "user_id", "created_at"),
        Index("ix_bookings_event_status", "event_id", "status"),
    )

    def correlation_id(self) -> str | None:
        """Provider-side ID of the payment this booking is waiting on."""
        if self.payment_method == PaymentMethod.STRIPE:
            return self.stripe_payment_intent_id
        if self.payment_method == PaymentMethod.RAIACCEPT:
            return self.raiaccept_order_id
        if self.payment_method == PaymentMethod.RAZORPAY:
            return self.razorpay_order_id
        return None

    def transaction_id(self) -> str | None:
        """Provider-side ID of the captured payment, where the gateway has one."""
        if self.payment_method == PaymentMethod.RAIACCEPT:
            return self.raiaccept_transaction_id
        if self.payment_method == PaymentMethod.RAZORPAY:
            return self.razorpay_payment_id
        return None


class BookingTicket(Base):
    __tablename__ = "booking_tickets"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    ticket_type_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ticket_types.id"),
        nullable=False,
    )
    ticket_name: Mapped[str] = mapped_column(String(64), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    redemption_code: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    validated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="tickets")

    __table_args__ = (
        UniqueConstraint("redemption_code", name="uq_booking_ticket_redemption_code"),
    )


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    delivery_key: Mapped[str] = mapped_column(String(128), nullable=False)
    booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    provider_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("provider", "delivery_key", name="uq_webhook_provider_delivery"),
    )


class TicketValidationLog(Base):
    """One row per ticket scan, accepted or rejected."""

    __tablename__ = "ticket_validation_logs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    scanned_code: Mapped[str] = mapped_column(String(255), nullable=False)
    ticket_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    event_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    validator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_ticket_validation_logs_event_created", "event_id", "created_at"),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
