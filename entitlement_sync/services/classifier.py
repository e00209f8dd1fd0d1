"""
Entitlement State Classifier - derives the user's current plan.

An entitlement is "held" when it is active and not owned by another account.
Held entitlements are renewable unless they were bought on a prepaid plan.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from entitlement_sync.models.domain import EntitlementRecord
from entitlement_sync.services.product_catalog import ProductCatalog, ProductKind


class CurrentPlan(str, Enum):
    """Discrete plan state derived from the reconciled entitlement list."""

    BASIC_PREPAID = "basic_prepaid"
    BASIC_RENEWABLE = "basic_renewable"
    PREMIUM_PREPAID = "premium_prepaid"
    PREMIUM_RENEWABLE = "premium_renewable"
    NONE = "none"


class ConversionAction(str, Enum):
    """Base plan changes a user may make from their current plan."""

    PURCHASE_BASIC = "purchase_basic"
    PURCHASE_PREMIUM = "purchase_premium"
    UPGRADE_TO_PREMIUM = "upgrade_to_premium"
    DOWNGRADE_TO_BASIC = "downgrade_to_basic"
    CONVERT_TO_BASIC_PREPAID = "convert_to_basic_prepaid"
    CONVERT_TO_PREMIUM_PREPAID = "convert_to_premium_prepaid"
    CONVERT_TO_BASIC_RENEWABLE = "convert_to_basic_renewable"
    CONVERT_TO_PREMIUM_RENEWABLE = "convert_to_premium_renewable"
    TOP_UP_BASIC_PREPAID = "top_up_basic_prepaid"
    TOP_UP_PREMIUM_PREPAID = "top_up_premium_prepaid"


CONVERSION_ACTIONS: dict[CurrentPlan, tuple[ConversionAction, ...]] = {
    CurrentPlan.BASIC_RENEWABLE: (
        ConversionAction.UPGRADE_TO_PREMIUM,
        ConversionAction.CONVERT_TO_BASIC_PREPAID,
    ),
    CurrentPlan.PREMIUM_RENEWABLE: (
        ConversionAction.DOWNGRADE_TO_BASIC,
        ConversionAction.CONVERT_TO_PREMIUM_PREPAID,
    ),
    CurrentPlan.BASIC_PREPAID: (
        ConversionAction.TOP_UP_BASIC_PREPAID,
        ConversionAction.CONVERT_TO_BASIC_RENEWABLE,
    ),
    CurrentPlan.PREMIUM_PREPAID: (
        ConversionAction.TOP_UP_PREMIUM_PREPAID,
        ConversionAction.CONVERT_TO_PREMIUM_RENEWABLE,
    ),
    CurrentPlan.NONE: (
        ConversionAction.PURCHASE_BASIC,
        ConversionAction.PURCHASE_PREMIUM,
    ),
}


@dataclass(frozen=True)
class RecordStatus:
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


@dataclass(frozen=True)
class EntitlementSummary:
    """Plan state plus what the user can do next."""

    current_plan: CurrentPlan
    transfer_required: tuple[str, ...]
    conversion_actions: tuple[ConversionAction, ...]
    record_statuses: tuple[RecordStatus, ...] = ()


# ============================================================================
# Per-record Status
# ============================================================================


def is_held(record: EntitlementRecord) -> bool:
    return record.is_entitlement_active and not record.sub_already_owned


def is_grace_period(record: EntitlementRecord) -> bool:
    """Payment failed but access continues while the provider retries."""
    return is_held(record) and record.is_grace_period


def is_subscription_restore(record: EntitlementRecord) -> bool:
    """Cancelled subscription that can still be restored before it lapses."""
    return is_held(record) and not record.will_renew


def is_account_hold(record: EntitlementRecord) -> bool:
    """Access suspended until the payment method is fixed."""
    return (
        not record.is_entitlement_active
        and record.is_account_hold
        and not record.sub_already_owned
    )


def is_paused(record: EntitlementRecord) -> bool:
    return (
        not record.is_entitlement_active and record.is_paused and not record.sub_already_owned
    )


def is_transfer_required(record: EntitlementRecord) -> bool:
    """Purchased on this device but owned by another account."""
    return record.sub_already_owned and record.is_local_purchase


def is_one_time_product_owned(record: EntitlementRecord) -> bool:
    return is_held(record) and not record.is_consumed


class EntitlementClassifier:
    """Classifies reconciled records using the product catalog's tiers."""

    def __init__(self, catalog: ProductCatalog) -> None:
        self.catalog = catalog

    def _held_of_kind(
        self, records: Iterable[EntitlementRecord], kind: ProductKind
    ) -> list[EntitlementRecord]:
        return [
            record
            for record in records
            if self.catalog.kind_of(record.product) is kind and is_held(record)
        ]

    def is_basic_content(self, record: EntitlementRecord) -> bool:
        return self.catalog.kind_of(record.product) is ProductKind.BASIC and is_held(record)

    def is_premium_content(self, record: EntitlementRecord) -> bool:
        return self.catalog.kind_of(record.product) is ProductKind.PREMIUM and is_held(record)

    def classify(self, records: Iterable[EntitlementRecord]) -> CurrentPlan:
        """
        Current plan of the user.

        Renewable plans win over prepaid ones. When both tiers are held in
        the same group the higher tier wins.
        """
        records = list(records)
        basic = self._held_of_kind(records, ProductKind.BASIC)
        premium = self._held_of_kind(records, ProductKind.PREMIUM)

        basic_renewable = any(not record.is_prepaid for record in basic)
        premium_renewable = any(not record.is_prepaid for record in premium)
        basic_prepaid = any(record.is_prepaid for record in basic)
        premium_prepaid = any(record.is_prepaid for record in premium)

        if premium_renewable:
            return CurrentPlan.PREMIUM_RENEWABLE
        if basic_renewable:
            return CurrentPlan.BASIC_RENEWABLE
        if premium_prepaid:
            return CurrentPlan.PREMIUM_PREPAID
        if basic_prepaid:
            return CurrentPlan.BASIC_PREPAID
        return CurrentPlan.NONE

    def content_tiers(self, records: Iterable[EntitlementRecord]) -> frozenset[ProductKind]:
        """
        Kinds of content the records entitle the user to.

        Premium includes basic content. A one-time product grants its content
        until it is consumed.
        """
        tiers: set[ProductKind] = set()
        for record in records:
            match self.catalog.kind_of(record.product):
                case ProductKind.PREMIUM if is_held(record):
                    tiers.update((ProductKind.PREMIUM, ProductKind.BASIC))
                case ProductKind.BASIC if is_held(record):
                    tiers.add(ProductKind.BASIC)
                case ProductKind.ONE_TIME if is_one_time_product_owned(record):
                    tiers.add(ProductKind.ONE_TIME)
                case _:
                    pass
        return frozenset(tiers)

    def record_status(self, record: EntitlementRecord) -> RecordStatus:
        kind = self.catalog.kind_of(record.product)
        is_subscription = kind is not None and kind.is_subscription
        return RecordStatus(
            product=record.product,
            purchase_token=record.purchase_token,
            basic_content=self.is_basic_content(record),
            premium_content=self.is_premium_content(record),
            subscription_restore=is_subscription and is_subscription_restore(record),
            grace_period=is_grace_period(record),
            account_hold=is_account_hold(record),
            paused=is_paused(record),
            transfer_required=is_transfer_required(record),
        )

    def describe(self, records: Iterable[EntitlementRecord]) -> EntitlementSummary:
        """Plan state, per-record status and the allowed plan changes."""
        records = list(records)
        plan = self.classify(records)
        transfer_required = tuple(
            record.product
            for record in records
            if record.product is not None and is_transfer_required(record)
        )
        return EntitlementSummary(
            current_plan=plan,
            transfer_required=transfer_required,
            conversion_actions=CONVERSION_ACTIONS[plan],
            record_statuses=tuple(self.record_status(record) for record in records),
        )
