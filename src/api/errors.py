from fastapi import HTTPException, status

from src.domain.exceptions import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    GatewayNotConfiguredError,
    InsufficientInventoryError,
    InvalidStateTransitionError,
    NotFoundError,
    SignatureInvalidError,
    TicketAlreadyUsedError,
    TicketingError,
    UnauthorizedError,
    ValidationError,
)


# Most specific classes first: GatewayNotConfiguredError is a GatewayError.
_STATUS_BY_ERROR: tuple[tuple[type[TicketingError], int], ...] = (
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED),
    (SignatureInvalidError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InsufficientInventoryError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TicketAlreadyUsedError, status.HTTP_409_CONFLICT),
    (GatewayNotConfiguredError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
)


def http_error(exc: TicketingError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )
