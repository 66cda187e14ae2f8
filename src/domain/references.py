import secrets
import string
import time
from uuid import uuid4

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def new_booking_reference() -> str:
    """BKNG + base36 millisecond timestamp + 6 random base36 characters."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"BKNG{timestamp}{suffix}"


def new_redemption_code() -> str:
    return f"TKT-{uuid4().hex[:16].upper()}"
