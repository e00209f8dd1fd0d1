"""
Domain Models - Internal reconciliation models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from enum import Enum

from entitlement_sync.models.billing import BillingResponseCode


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller, as supplied by the external auth collaborator."""

    user_id: str
    id_token: str

    def __post_init__(self) -> None:
        """Validate caller identity fields."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.id_token:
            raise ValueError("id_token cannot be empty")


@dataclass(frozen=True)
class DevicePurchase:
    """
    A purchase as reported by the billing provider on the device.

    Never persisted directly; recomputed every time the device reports its
    purchase list.
    """

    products: tuple[str, ...]
    purchase_token: str
    is_auto_renewing: bool = False
    is_acknowledged: bool = False

    def __post_init__(self) -> None:
        """Validate device purchase fields."""
        if not self.products:
            raise ValueError("Device purchase must reference at least one product")
        if not self.purchase_token:
            raise ValueError("Purchase token required")

    @property
    def primary_product(self) -> str:
        """Bundled purchases are tracked by their first product."""
        return self.products[0]


@dataclass(frozen=True)
class EntitlementRecord:
    """
    Last known state of one entitlement (subscription or one-time product).

    is_local_purchase is derived during reconciliation and only set when a
    device purchase references the same product.
    """

    product: str | None = None
    purchase_token: str | None = None
    is_entitlement_active: bool = False
    is_acknowledged: bool = False
    will_renew: bool = False
    is_consumed: bool = False
    is_account_hold: bool = False
    is_grace_period: bool = False
    is_paused: bool = False
    sub_already_owned: bool = False
    is_local_purchase: bool = False
    is_prepaid: bool = False
    quantity: int = 0

    def __post_init__(self) -> None:
        """Validate record constraints."""
        if self.quantity < 0:
            raise ValueError(f"Quantity cannot be negative: {self.quantity}")

    @classmethod
    def already_owned(cls, product: str, purchase_token: str) -> "EntitlementRecord":
        """Record for a token the backend reports as bound to another account."""
        return cls(
            product=product,
            purchase_token=purchase_token,
            is_entitlement_active=False,
            sub_already_owned=True,
            is_local_purchase=True,
        )

    def needs_acknowledgement(self) -> bool:
        """Check if the record still has to be acknowledged by this account."""
        return (
            not self.is_acknowledged
            and not self.sub_already_owned
            and bool(self.purchase_token)
            and bool(self.product)
        )


class AcknowledgementReason(str, Enum):
    """Why an acknowledgement attempt ended."""

    ACKNOWLEDGED = "acknowledged"
    ALREADY_OWNED = "already_owned"
    TERMINAL = "terminal"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class AcknowledgementOutcome:
    """Result of acknowledging one purchase token with the billing provider."""

    purchase_token: str
    reason: AcknowledgementReason
    attempts: int
    last_response: BillingResponseCode | None = None

    @property
    def succeeded(self) -> bool:
        """Only success reasons mean the provider recorded the acknowledgement."""
        return self.reason in (
            AcknowledgementReason.ACKNOWLEDGED,
            AcknowledgementReason.ALREADY_OWNED,
        )


@dataclass(frozen=True)
class ContentResource:
    """Entitled content fetched from the backend of record."""

    url: str | None = None
