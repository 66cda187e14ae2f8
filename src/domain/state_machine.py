# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Set, Tuple, Union

from src.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentOutcome(str, Enum):
    """Provider-neutral result of a payment status report."""

    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"


LifecycleStatus = Union[BookingStatus, PaymentStatus]


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.

    A booking carries two statuses that move together: the reservation
    ``status`` and the ``payment_status``. Both only ever move forward;
    nothing returns to ``pending``.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.REFUNDED,
        },
        BookingStatus.CANCELLED: set(),
        BookingStatus.REFUNDED: set(),
    }

    _ALLOWED_PAYMENT_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
        PaymentStatus.PENDING: {
            PaymentStatus.PAID,
            PaymentStatus.FAILED,
        },
        PaymentStatus.PAID: {
            PaymentStatus.REFUNDED,
        },
        PaymentStatus.FAILED: set(),
        PaymentStatus.REFUNDED: set(),
    }

    _OUTCOME_TARGETS: Dict[PaymentOutcome, Tuple[BookingStatus, PaymentStatus]] = {
        PaymentOutcome.PAID: (BookingStatus.CONFIRMED, PaymentStatus.PAID),
        PaymentOutcome.FAILED: (BookingStatus.CANCELLED, PaymentStatus.FAILED),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: LifecycleStatus,
        to_status: LifecycleStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        table = cls._table_for(from_status)
        cls._ensure_same_kind(from_status, to_status)

        return to_status in table.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: LifecycleStatus,
        to_status: LifecycleStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def target_for(
        cls, outcome: PaymentOutcome
    ) -> Tuple[BookingStatus, PaymentStatus] | None:
        """
        Returns the (status, payment_status) pair a payment outcome settles a
        pending booking into, or None when the outcome does not settle it.
        """
        if not isinstance(outcome, PaymentOutcome):
            raise TypeError(f"Expected PaymentOutcome, got {type(outcome)}")
        return cls._OUTCOME_TARGETS.get(outcome)

    @staticmethod
    def is_settled(payment_status: PaymentStatus) -> bool:
        return payment_status != PaymentStatus.PENDING

    @classmethod
    def _table_for(cls, status: LifecycleStatus) -> dict:
        if isinstance(status, BookingStatus):
            return cls._ALLOWED_TRANSITIONS
        if isinstance(status, PaymentStatus):
            return cls._ALLOWED_PAYMENT_TRANSITIONS
        raise TypeError(
            f"Expected BookingStatus or PaymentStatus, got {type(status)}"
        )

    @staticmethod
    def _ensure_same_kind(
        from_status: LifecycleStatus,
        to_status: LifecycleStatus,
    ) -> None:
        if type(from_status) is not type(to_status):
            raise TypeError(
                f"Cannot compare {type(from_status).__name__} "
                f"with {type(to_status).__name__}"
            )
