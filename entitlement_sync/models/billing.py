"""
Billing provider response codes and their classification.

Codes mirror the Google Play Billing Library BillingResponseCode values.
"""

from enum import Enum, IntEnum


class BillingResponseCode(IntEnum):
    """Billing provider response codes."""

    SERVICE_TIMEOUT = -3
    FEATURE_NOT_SUPPORTED = -2
    SERVICE_DISCONNECTED = -1
    OK = 0
    USER_CANCELED = 1
    SERVICE_UNAVAILABLE = 2
    BILLING_UNAVAILABLE = 3
    ITEM_UNAVAILABLE = 4
    DEVELOPER_ERROR = 5
    ERROR = 6
    ITEM_ALREADY_OWNED = 7
    ITEM_NOT_OWNED = 8
    NETWORK_ERROR = 12


class ResponseClass(str, Enum):
    """How the acknowledgement retrier treats a response code."""

    OK = "ok"
    ALREADY_OWNED = "already_owned"
    RECOVERABLE = "recoverable"
    TERMINAL = "terminal"


_RECOVERABLE_CODES = frozenset(
    {
        BillingResponseCode.ERROR,
        BillingResponseCode.SERVICE_DISCONNECTED,
        BillingResponseCode.SERVICE_TIMEOUT,
        BillingResponseCode.NETWORK_ERROR,
    }
)


def classify_response(code: int) -> ResponseClass:
    """
    Classify a raw provider response code.

    Anything not explicitly successful or recoverable is terminal, including
    codes this module does not know about.
    """
    if code == BillingResponseCode.OK:
        return ResponseClass.OK
    if code == BillingResponseCode.ITEM_ALREADY_OWNED:
        return ResponseClass.ALREADY_OWNED
    if code in _RECOVERABLE_CODES:
        return ResponseClass.RECOVERABLE
    return ResponseClass.TERMINAL


def to_response_code(code: int) -> BillingResponseCode | None:
    """Convert a raw integer to a known response code, or None if unknown."""
    try:
        return BillingResponseCode(code)
    except ValueError:
        return None
