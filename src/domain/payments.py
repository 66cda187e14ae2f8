# src/domain/payments.py

from enum import Enum
from typing import Dict, Mapping

from src.domain.state_machine import PaymentOutcome


class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    RAIACCEPT = "raiaccept"
    RAZORPAY = "razorpay"


# Vocabulary shared by every provider. Gateways extend it with their own terms.
COMMON_STATUS_TABLE: Dict[str, PaymentOutcome] = {
    "COMPLETED": PaymentOutcome.PAID,
    "SUCCESS": PaymentOutcome.PAID,
    "PAID": PaymentOutcome.PAID,
    "FAILED": PaymentOutcome.FAILED,
    "DECLINED": PaymentOutcome.FAILED,
    "ERROR": PaymentOutcome.FAILED,
    "PENDING": PaymentOutcome.PENDING,
    "PROCESSING": PaymentOutcome.PENDING,
}


def map_status(
    provider_status: str | None,
    extra: Mapping[str, PaymentOutcome] | None = None,
) -> PaymentOutcome | None:
    """
    Maps a provider status string onto a PaymentOutcome.

    Lookup is case-insensitive. Unknown or empty statuses map to None so that
    callers can acknowledge them without acting on them.
    """
    if not provider_status:
        return None

    key = provider_status.strip().upper()
    if extra:
        for term, outcome in extra.items():
            if term.upper() == key:
                return outcome
    return COMMON_STATUS_TABLE.get(key)
