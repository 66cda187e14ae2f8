

class TicketingError(Exception):
    """
    Base exception for all domain-level errors
    inside the ticketing payment engine.
    """


class InvalidStateTransitionError(TicketingError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class UnauthorizedError(TicketingError):
    """Raised when the caller identity is missing or invalid."""


class ForbiddenError(TicketingError):
    """Raised when the caller may not act on a resource."""


class NotFoundError(TicketingError):
    """Raised when a requested entity does not exist."""


class BookingNotFoundError(NotFoundError):
    pass


class EventNotFoundError(NotFoundError):
    pass


class TicketTypeNotFoundError(NotFoundError):
    pass


class TicketNotFoundError(NotFoundError):
    pass


class ValidationError(TicketingError):
    """Raised when a request is well-formed but violates a business rule."""


class ConflictError(TicketingError):
    """Raised when a request contradicts the stored state of a booking."""


class InsufficientInventoryError(TicketingError):
    """Raised when not enough tickets are available."""


class TicketAlreadyUsedError(TicketingError):
    """Raised when a ticket has already been redeemed."""


class GatewayError(TicketingError):
    """Raised when a payment provider call fails."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class GatewayNotConfiguredError(GatewayError):
    """Raised when a payment provider is disabled or missing credentials."""


class SignatureInvalidError(TicketingError):
    """Raised when a webhook payload fails authenticity verification."""


class EmailDeliveryError(TicketingError):
    """Raised when a confirmation email could not be handed to the mail server."""
