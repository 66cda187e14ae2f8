import hmac
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from src.api.errors import http_error
from src.application.booking_service import BookingService
from src.application.notification_service import ConfirmationNotifier
from src.application.reconciliation_service import ReconciliationService
from src.domain.exceptions import ForbiddenError, UnauthorizedError
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.gateways.registry import GatewayRegistry, build_registry
from src.infrastructure.notifications.mailer import SmtpMailer


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str | None = None


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache
def _default_registry() -> GatewayRegistry:
    return build_registry(get_settings())


def get_gateway_registry() -> GatewayRegistry:
    return _default_registry()


def get_mailer(settings: Settings = Depends(get_settings)) -> SmtpMailer:
    return SmtpMailer(settings)


def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
) -> CurrentUser:
    if not x_user_id or not x_user_id.strip():
        raise http_error(UnauthorizedError("Authentication required"))
    return CurrentUser(id=x_user_id.strip(), email=x_user_email)


def require_admin(
    x_admin_token: str | None = Header(default=None),
    x_admin_id: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Returns the acting admin's id."""
    if not settings.admin_api_token:
        raise http_error(ForbiddenError("Admin API disabled. Set ADMIN_API_TOKEN."))
    if not x_admin_token:
        raise http_error(UnauthorizedError("Admin token required"))
    if not hmac.compare_digest(
        x_admin_token.encode("utf-8"),
        settings.admin_api_token.encode("utf-8"),
    ):
        raise http_error(ForbiddenError("Invalid admin token"))
    return x_admin_id or "admin"


def get_booking_service(
    db: Session = Depends(get_db),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    settings: Settings = Depends(get_settings),
) -> BookingService:
    return BookingService(db, registry=registry, settings=settings)


def get_reconciliation_service(
    db: Session = Depends(get_db),
    registry: GatewayRegistry = Depends(get_gateway_registry),
) -> ReconciliationService:
    return ReconciliationService(db, registry)


def get_notifier(
    db: Session = Depends(get_db),
    mailer: SmtpMailer = Depends(get_mailer),
) -> ConfirmationNotifier:
    return ConfirmationNotifier(db, mailer)
