"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.

Two groups live here: the backend-of-record wire format (camelCase, as the
backend sends it) and the request/response bodies of this service's own API.
"""

from dataclasses import asdict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from entitlement_sync.models.domain import DevicePurchase, EntitlementRecord
from entitlement_sync.services.classifier import RecordStatus
from entitlement_sync.services.product_catalog import ProductKind

# ============================================================================
# Backend of Record Wire Models
# ============================================================================


class EntitlementStatusModel(BaseModel):
    """One entitlement status entry as exchanged with the backend of record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

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
    quantity: int = Field(0, ge=0)

    def to_record(self) -> EntitlementRecord:
        """Convert to the immutable domain record."""
        return EntitlementRecord(**self.model_dump(by_alias=False))

    @classmethod
    def from_record(cls, record: EntitlementRecord) -> "EntitlementStatusModel":
        """Build the wire model from a domain record."""
        return cls(
            product=record.product,
            purchase_token=record.purchase_token,
            is_entitlement_active=record.is_entitlement_active,
            is_acknowledged=record.is_acknowledged,
            will_renew=record.will_renew,
            is_consumed=record.is_consumed,
            is_account_hold=record.is_account_hold,
            is_grace_period=record.is_grace_period,
            is_paused=record.is_paused,
            sub_already_owned=record.sub_already_owned,
            is_local_purchase=record.is_local_purchase,
            is_prepaid=record.is_prepaid,
            quantity=record.quantity,
        )


class EntitlementStatusList(BaseModel):
    """Backend list response; subscription and one-time endpoints use different keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    subscriptions: list[EntitlementStatusModel] | None = None
    one_time_product_purchases: list[EntitlementStatusModel] | None = None

    def records(self) -> list[EntitlementRecord]:
        """All entries of the response as domain records."""
        entries = (self.subscriptions or []) + (self.one_time_product_purchases or [])
        return [entry.to_record() for entry in entries]


class BackendPurchaseRequest(BaseModel):
    """Body of the register / acknowledge / transfer / consume backend calls."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product: str
    purchase_token: str


class ContentResourceModel(BaseModel):
    """Entitled content returned by the backend of record."""

    url: str | None = None


# ============================================================================
# Entitlement API Models
# ============================================================================


class DevicePurchaseModel(BaseModel):
    """A purchase reported by the device's billing library."""

    products: list[str] = Field(..., min_length=1)
    purchase_token: str = Field(..., min_length=1, max_length=4096)
    is_auto_renewing: bool = False
    is_acknowledged: bool = False

    def to_domain(self) -> DevicePurchase:
        """Convert to the immutable domain purchase."""
        return DevicePurchase(
            products=tuple(self.products),
            purchase_token=self.purchase_token,
            is_auto_renewing=self.is_auto_renewing,
            is_acknowledged=self.is_acknowledged,
        )


class PurchasesUpdateRequest(BaseModel):
    """POST /v1/entitlements/{user_id}/purchases request body."""

    purchases: list[DevicePurchaseModel] = Field(default_factory=list)


class PurchaseActionRequest(BaseModel):
    """Register / transfer / consume request body."""

    product: str = Field(..., min_length=1, max_length=255)
    purchase_token: str = Field(..., min_length=1, max_length=4096)


class InstanceIdRequest(BaseModel):
    """Push registration request body."""

    instance_id: str = Field(..., min_length=1, max_length=4096)


class RecordStatusModel(BaseModel):
    """What one reconciled record means for the user."""

    product: str | None
    purchase_token: str | None
    basic_content: bool
    premium_content: bool
    subscription_restore: bool
    grace_period: bool
    account_hold: bool
    paused: bool
    transfer_required: bool

    @classmethod
    def from_status(cls, status: RecordStatus) -> "RecordStatusModel":
        return cls(**asdict(status))


class ContentResponse(BaseModel):
    """Content the user is entitled to for one product kind."""

    user_id: str
    kind: ProductKind
    url: str | None = None


class EntitlementStateResponse(BaseModel):
    """Reconciled entitlements of one user plus the derived plan state."""

    user_id: str
    current_plan: str
    records: list[EntitlementStatusModel]
    record_statuses: list[RecordStatusModel] = Field(default_factory=list)
    transfer_required: list[str] = Field(default_factory=list)
    conversion_actions: list[str] = Field(default_factory=list)
    loading: bool = False


class ReconciliationResponse(EntitlementStateResponse):
    """Entitlement state after a reconciliation pass."""

    acknowledged_tokens: list[str] = Field(default_factory=list)
    failed_tokens: list[str] = Field(default_factory=list)
