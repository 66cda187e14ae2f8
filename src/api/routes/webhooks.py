import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from src.api.deps import get_db, get_notifier, get_reconciliation_service
from src.api.errors import http_error
from src.api.routes.routes import deliver_confirmation
from src.api.schemas.schemas import WebhookResponse
from src.application.notification_service import ConfirmationNotifier
from src.application.reconciliation_service import ReconciliationService
from src.domain.exceptions import (
    GatewayNotConfiguredError,
    SignatureInvalidError,
    TicketingError,
)


router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def _process(
    provider: str,
    raw_body: bytes,
    headers: dict[str, str],
    db: Session,
    service: ReconciliationService,
    notifier: ConfirmationNotifier,
) -> WebhookResponse:
    try:
        result = service.handle_webhook(provider, raw_body, headers)
    except GatewayNotConfiguredError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown payment provider {provider}",
        ) from exc
    except SignatureInvalidError as exc:
        logger.warning("Webhook signature rejected provider=%s error=%s", provider, exc)
        raise http_error(exc) from exc
    except TicketingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.exception("Webhook processing failed provider=%s", provider)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    booking = deliver_confirmation(db, notifier, result)
    return WebhookResponse(
        message=result.message,
        booking_reference=booking.booking_reference if booking else None,
    )


@router.post("/{provider}", response_model=WebhookResponse)
async def payment_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    service: ReconciliationService = Depends(get_reconciliation_service),
    notifier: ConfirmationNotifier = Depends(get_notifier),
):
    # Signatures are computed over the exact bytes the provider sent.
    raw_body = await request.body()
    headers = dict(request.headers)
    return await run_in_threadpool(
        _process,
        provider,
        raw_body,
        headers,
        db,
        service,
        notifier,
    )
