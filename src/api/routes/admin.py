import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.api.deps import (
    get_booking_service,
    get_db,
    get_notifier,
    get_reconciliation_service,
    require_admin,
)
from src.api.errors import http_error
from src.api.routes.presenters import (
    booking_response,
    event_response,
    outbox_response,
    validation_log_response,
)
from src.api.routes.routes import deliver_confirmation
from src.api.schemas.schemas import (
    AdminActionResponse,
    BookingResponse,
    EventCreate,
    EventResponse,
    OutboxDispatchResponse,
    OutboxEventResponse,
    RefundRequest,
    RefundResponse,
    RefundStatusResponse,
    ValidationLogResponse,
)
from src.application.booking_service import BookingService
from src.application.notification_service import ConfirmationNotifier
from src.application.reconciliation_service import ReconciliationService
from src.domain.exceptions import TicketingError
from src.domain.payments import PaymentMethod
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/bookings", response_model=list[BookingResponse])
def list_bookings(
    status_filter: BookingStatus | None = None,
    payment_status: PaymentStatus | None = None,
    payment_method: PaymentMethod | None = None,
    limit: int = 50,
    offset: int = 0,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    bookings = BookingRepository(db).list_bookings(
        status=status_filter,
        payment_status=payment_status,
        payment_method=payment_method,
        limit=safe_limit,
        offset=max(0, offset),
    )
    return [booking_response(item) for item in bookings]


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    admin_id: str = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    try:
        return booking_response(service.get_booking(booking_id))
    except TicketingError as exc:
        raise http_error(exc) from exc


@router.post("/bookings/{booking_id}/confirm", response_model=AdminActionResponse)
def confirm_booking(
    booking_id: str,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
    service: ReconciliationService = Depends(get_reconciliation_service),
    notifier: ConfirmationNotifier = Depends(get_notifier),
):
    try:
        result = service.admin_confirm(booking_id, admin_id)
    except TicketingError as exc:
        raise http_error(exc) from exc

    logger.info("Admin confirmation booking_id=%s by=%s applied=%s", booking_id, admin_id, result.applied)
    booking = deliver_confirmation(db, notifier, result)
    return AdminActionResponse(
        success=True,
        message=result.message,
        booking=booking_response(booking),
    )


@router.post("/bookings/{booking_id}/cancel", response_model=AdminActionResponse)
def cancel_booking(
    booking_id: str,
    admin_id: str = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        result = service.admin_cancel(booking_id, admin_id)
    except TicketingError as exc:
        raise http_error(exc) from exc

    return AdminActionResponse(
        success=True,
        message="Booking cancelled",
        booking=booking_response(result.booking),
    )


@router.post("/bookings/{booking_id}/refund", response_model=RefundResponse)
def refund_booking(
    booking_id: str,
    request: RefundRequest,
    admin_id: str = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        booking, result = service.refund(
            booking_id,
            amount_cents=request.amount,
            reason=request.reason,
            admin_id=admin_id,
        )
    except TicketingError as exc:
        logger.info("Refund rejected booking_id=%s error=%s", booking_id, exc)
        raise http_error(exc) from exc

    return RefundResponse(
        success=True,
        refund_id=result.refund_id,
        refund_status=result.status,
        booking=booking_response(booking),
    )


@router.get("/bookings/{booking_id}/refund", response_model=RefundStatusResponse)
def get_refund_status(
    booking_id: str,
    admin_id: str = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        booking = service.refund_status(booking_id)
    except TicketingError as exc:
        raise http_error(exc) from exc

    return RefundStatusResponse(
        booking_id=booking.id,
        booking_reference=booking.booking_reference,
        payment_status=booking.payment_status.value,
        refunded=booking.payment_status == PaymentStatus.REFUNDED,
        refund_amount_cents=booking.refund_amount_cents,
        refund_reason=booking.refund_reason,
        refunded_at=booking.refunded_at.isoformat() if booking.refunded_at else None,
        refunded_by=booking.refunded_by,
    )


@router.post("/bookings/{booking_id}/resend-email", response_model=AdminActionResponse)
def resend_confirmation(
    booking_id: str,
    admin_id: str = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
    notifier: ConfirmationNotifier = Depends(get_notifier),
):
    try:
        booking = service.get_booking(booking_id)
    except TicketingError as exc:
        raise http_error(exc) from exc

    if booking.status != BookingStatus.CONFIRMED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only confirmed bookings have tickets to send",
        )

    sent = notifier.send_confirmation(booking.id, force=True)
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Confirmation email could not be sent",
        )
    return AdminActionResponse(
        success=True,
        message="Confirmation email sent",
        booking=booking_response(service.get_booking(booking.id)),
    )


@router.post("/bookings/{booking_id}/reconcile", response_model=AdminActionResponse)
def reconcile_booking(
    booking_id: str,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
    service: ReconciliationService = Depends(get_reconciliation_service),
    notifier: ConfirmationNotifier = Depends(get_notifier),
):
    try:
        result = service.reconcile(booking_id)
    except TicketingError as exc:
        raise http_error(exc) from exc

    booking = deliver_confirmation(db, notifier, result)
    return AdminActionResponse(
        success=True,
        message=result.message,
        booking=booking_response(booking),
    )


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    request: EventCreate,
    admin_id: str = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    try:
        event = service.create_event(
            title=request.title,
            description=request.description,
            date_time=request.date_time,
            location=request.location,
            venue=request.venue,
            status=request.status,
            ticket_types=[
                (item.name, item.price_cents, item.capacity)
                for item in request.ticket_types
            ],
        )
    except TicketingError as exc:
        raise http_error(exc) from exc
    return event_response(event)


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    event_type: str | None = None,
    limit: int = 50,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_events(
        status=status_filter,
        event_type=event_type,
        limit=safe_limit,
    )
    return [outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    repository = OutboxRepository(db)
    item = repository.get_by_id(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )
    return outbox_response(repository.mark_published(item))


@router.post("/outbox/dispatch", response_model=OutboxDispatchResponse)
def dispatch_outbox(
    limit: int = 50,
    admin_id: str = Depends(require_admin),
    notifier: ConfirmationNotifier = Depends(get_notifier),
):
    summary = notifier.dispatch_pending(limit=max(1, min(limit, 200)))
    logger.info("Outbox dispatch by=%s summary=%s", admin_id, summary)
    return OutboxDispatchResponse(**summary)


@router.get("/validation-logs", response_model=list[ValidationLogResponse])
def list_validation_logs(
    event_id: str | None = None,
    validator_id: str | None = None,
    status_filter: str | None = None,
    limit: int = 100,
    admin_id: str = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    logs = service.list_validation_logs(
        event_id=event_id,
        validator_id=validator_id,
        status=status_filter,
        limit=max(1, min(limit, 500)),
    )
    return [validation_log_response(item) for item in logs]
