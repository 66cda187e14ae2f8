from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.payments import PaymentMethod


class TicketTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    price_cents: int = Field(ge=0)
    capacity: int = Field(ge=0)


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    date_time: datetime
    location: str = Field(min_length=1, max_length=200)
    venue: str | None = None
    status: str = Field(default="published", pattern="^(draft|published|cancelled|sold_out)$")
    ticket_types: list[TicketTypeCreate] = Field(min_length=1)


class TicketTypeResponse(BaseModel):
    id: str
    name: str
    price_cents: int
    capacity: int
    available_tickets: int


class EventResponse(BaseModel):
    id: str
    title: str
    description: str
    date_time: str
    location: str
    venue: str | None = None
    status: str
    ticket_types: list[TicketTypeResponse]


class TicketSelection(BaseModel):
    ticket_type_id: str
    quantity: int = Field(gt=0, le=50)


class CheckoutRequest(BaseModel):
    tickets: list[TicketSelection] = Field(min_length=1)
    payment_method: PaymentMethod | None = None
    customer_email: str | None = Field(default=None, max_length=255)
    customer_name: str | None = Field(default=None, max_length=200)


class PaymentSessionResponse(BaseModel):
    provider: str
    correlation_id: str
    redirect_url: str | None = None
    client_secret: str | None = None
    public_key: str | None = None


class BookingTicketResponse(BaseModel):
    id: str
    ticket_type_id: str
    ticket_name: str
    price_cents: int
    redemption_code: str
    is_used: bool
    used_at: str | None = None


class BookingResponse(BaseModel):
    id: str
    booking_reference: str
    user_id: str
    event_id: str
    status: str
    payment_status: str
    payment_method: str
    total_amount_cents: int
    currency: str
    email_sent: bool
    customer_email: str | None = None
    customer_name: str | None = None
    payment_date: str | None = None
    refund_amount_cents: int | None = None
    tickets: list[BookingTicketResponse]


class CheckoutResponse(BaseModel):
    booking: BookingResponse
    payment: PaymentSessionResponse


class ConfirmPaymentRequest(BaseModel):
    booking_id: str
    session_id: str | None = None


class BookingStateResponse(BaseModel):
    status: str
    payment_status: str
    email_sent: bool


class ConfirmPaymentResponse(BaseModel):
    success: bool
    message: str
    booking: BookingStateResponse


class WebhookResponse(BaseModel):
    received: bool = True
    message: str
    booking_reference: str | None = None


class AdminActionResponse(BaseModel):
    success: bool
    message: str
    booking: BookingResponse


class RefundRequest(BaseModel):
    amount: int = Field(description="Refund amount in minor currency units")
    reason: str | None = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    success: bool
    refund_id: str | None = None
    refund_status: str | None = None
    booking: BookingResponse


class RefundStatusResponse(BaseModel):
    booking_id: str
    booking_reference: str
    payment_status: str
    refunded: bool
    refund_amount_cents: int | None = None
    refund_reason: str | None = None
    refunded_at: str | None = None
    refunded_by: str | None = None


class ValidateTicketRequest(BaseModel):
    code: str = Field(min_length=1)
    # Event the scanner is admitting to; tickets for other events are rejected.
    event_id: str | None = None


class ValidateTicketResponse(BaseModel):
    valid: bool
    ticket: BookingTicketResponse
    booking_reference: str
    event_id: str
    validated_by: str | None = None


class ValidationLogResponse(BaseModel):
    id: str
    scanned_code: str
    ticket_id: str | None = None
    booking_id: str | None = None
    event_id: str | None = None
    validator_id: str
    status: str
    reason: str | None = None
    created_at: str


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    last_error: str | None = None
    created_at: str


class OutboxDispatchResponse(BaseModel):
    processed: int
    sent: int
    failed: int
