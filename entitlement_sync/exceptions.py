"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from entitlement_sync.models.domain import AcknowledgementOutcome


class EntitlementSyncError(Exception):
    """Base exception for all entitlement sync errors."""

    pass


class RemoteNetworkError(EntitlementSyncError):
    """Raised when the backend of record cannot be reached."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Network error during {operation}: {message}")


class RemoteBackendError(EntitlementSyncError):
    """Raised when the backend of record answers with an unexpected status."""

    def __init__(self, operation: str, status_code: int, message: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.message = message
        super().__init__(f"Backend error during {operation}: HTTP {status_code} {message}".rstrip())


class PurchaseConflictError(EntitlementSyncError):
    """Raised when a purchase token is bound to a different account."""

    def __init__(self, product: str, purchase_token: str) -> None:
        self.product = product
        self.purchase_token = purchase_token
        super().__init__(f"Purchase for {product} is already owned by another account")


class BillingProviderError(EntitlementSyncError):
    """Raised when a billing provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Billing provider error: {message}")


class AcknowledgementError(EntitlementSyncError):
    """Raised when a purchase could not be acknowledged with the billing provider."""

    def __init__(self, outcome: AcknowledgementOutcome) -> None:
        self.outcome = outcome
        super().__init__(
            f"Acknowledgement failed ({outcome.reason.value}) after {outcome.attempts} attempt(s)"
        )


class RecordStoreError(EntitlementSyncError):
    """Raised when the local record store cannot be read or written."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Record store error: {message}")


class UnknownProductError(EntitlementSyncError):
    """Raised when a product id is not part of the catalog."""

    def __init__(self, product: str) -> None:
        self.product = product
        super().__init__(f"Unknown product ID: {product}")


class AuthenticationError(EntitlementSyncError):
    """Raised when a caller's ID token cannot be verified."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
