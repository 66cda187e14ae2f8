import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from src.api.deps import (
    CurrentUser,
    get_booking_service,
    get_current_user,
    get_db,
    get_notifier,
    get_reconciliation_service,
    require_admin,
)
from src.api.errors import http_error
from src.api.routes.presenters import (
    booking_response,
    booking_state,
    event_response,
    ticket_response,
)
from src.api.schemas.schemas import (
    BookingResponse,
    CheckoutRequest,
    CheckoutResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    EventResponse,
    PaymentSessionResponse,
    ValidateTicketRequest,
    ValidateTicketResponse,
)
from src.application.booking_service import BookingService
from src.application.notification_service import ConfirmationNotifier
from src.application.reconciliation_service import ReconciliationResult, ReconciliationService
from src.domain.exceptions import TicketingError
from src.infrastructure.db.models import Booking


router = APIRouter()
logger = logging.getLogger(__name__)


def deliver_confirmation(
    db: Session,
    notifier: ConfirmationNotifier,
    result: ReconciliationResult,
) -> Booking | None:
    """
    Commits the transition, then attempts the confirmation email once.
    Delivery failures are logged and left for outbox dispatch; the caller
    still reports the committed transition.
    """
    if not result.needs_confirmation_email:
        return result.booking

    db.commit()
    try:
        notifier.send_confirmation(result.booking.id)
    except Exception:
        logger.exception(
            "Confirmation delivery failed reference=%s",
            result.booking.booking_reference,
        )
        db.rollback()
    return notifier.booking_repository.get_by_id(result.booking.id)


@router.get("/health")
def health():
    return {"message": "Ticketing payment engine is running"}


@router.get("/events", response_model=list[EventResponse])
def list_events(service: BookingService = Depends(get_booking_service)):
    return [event_response(event) for event in service.list_events()]


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(
    event_id: str,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return event_response(service.get_event(event_id))
    except TicketingError as exc:
        raise http_error(exc) from exc


@router.post(
    "/events/{event_id}/book",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
def book_event(
    event_id: str,
    request: CheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking, session = service.create_booking(
            user_id=user.id,
            event_id=event_id,
            items=[(item.ticket_type_id, item.quantity) for item in request.tickets],
            payment_method=request.payment_method,
            customer_email=request.customer_email or user.email,
            customer_name=request.customer_name,
        )
    except TicketingError as exc:
        logger.info(
            "Checkout rejected event_id=%s user_id=%s error=%s",
            event_id,
            user.id,
            exc,
        )
        raise http_error(exc) from exc

    return CheckoutResponse(
        booking=booking_response(booking),
        payment=PaymentSessionResponse(
            provider=session.provider.value,
            correlation_id=session.correlation_id,
            redirect_url=session.redirect_url,
            client_secret=session.client_secret,
            public_key=session.public_key,
        ),
    )


@router.post("/payments/confirm", response_model=ConfirmPaymentResponse)
def confirm_payment(
    request: ConfirmPaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: ReconciliationService = Depends(get_reconciliation_service),
    notifier: ConfirmationNotifier = Depends(get_notifier),
):
    try:
        result = service.confirm_from_redirect(
            request.booking_id,
            user_id=user.id,
            session_id=request.session_id,
        )
    except TicketingError as exc:
        raise http_error(exc) from exc

    booking = deliver_confirmation(db, notifier, result)
    return ConfirmPaymentResponse(
        success=True,
        message=result.message,
        booking=booking_state(booking),
    )


@router.get("/bookings", response_model=list[BookingResponse])
def list_my_bookings(
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return [booking_response(item) for item in service.list_bookings_for_user(user.id)]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_my_booking(
    booking_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        return booking_response(service.get_booking_for_user(booking_id, user.id))
    except TicketingError as exc:
        raise http_error(exc) from exc


@router.get("/bookings/{booking_id}/tickets.pdf")
def download_tickets(
    booking_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking, pdf = service.tickets_pdf(booking_id, user.id)
    except TicketingError as exc:
        raise http_error(exc) from exc

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="tickets-{booking.booking_reference}.pdf"'
        },
    )


@router.post("/tickets/validate", response_model=ValidateTicketResponse)
def validate_ticket(
    request: ValidateTicketRequest,
    admin_id: str = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    try:
        ticket = service.validate_ticket(
            request.code,
            validated_by=admin_id,
            event_id=request.event_id,
        )
    except TicketingError as exc:
        raise http_error(exc) from exc

    if ticket is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found",
        )
    return ValidateTicketResponse(
        valid=True,
        ticket=ticket_response(ticket),
        booking_reference=ticket.booking.booking_reference,
        event_id=ticket.booking.event_id,
        validated_by=ticket.validated_by,
    )
