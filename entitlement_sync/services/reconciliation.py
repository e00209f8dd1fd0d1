"""
Reconciliation Engine - merges device, remote and local entitlement state.

NO DICTIONARIES - All operations use strongly typed domain models.

A pass:
1. Read the stored list and the device purchases
2. Merge (local flags, token backfill, retention of foreign records)
3. Replace the stored list
4. Acknowledge new purchases (backend first, then billing provider)
5. Refresh entitled content when fresh remote data was supplied
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Container, Sequence
from dataclasses import dataclass, replace
from typing import Protocol

from structlog import get_logger

from entitlement_sync.exceptions import (
    AcknowledgementError,
    EntitlementSyncError,
    RemoteBackendError,
    RemoteNetworkError,
    UnknownProductError,
)
from entitlement_sync.models.domain import (
    ContentResource,
    DevicePurchase,
    EntitlementRecord,
)
from entitlement_sync.observability.logging import log_context
from entitlement_sync.observability.metrics import metrics
from entitlement_sync.observability.tracing import trace_operation
from entitlement_sync.services.acknowledgement import AcknowledgementRetrier
from entitlement_sync.services.billing_provider import BillingProvider
from entitlement_sync.services.classifier import EntitlementClassifier, EntitlementSummary
from entitlement_sync.services.product_catalog import ProductCatalog, ProductKind
from entitlement_sync.services.record_store import EntitlementRecordStore
from entitlement_sync.services.remote_client import RemoteEntitlementClient

logger = get_logger(__name__)


# ============================================================================
# Merge
# ============================================================================


def _matching_purchase(
    product: str | None, device_purchases: Sequence[DevicePurchase]
) -> DevicePurchase | None:
    if product is None:
        return None
    for purchase in device_purchases:
        if product in purchase.products:
            return purchase
    return None


def _with_local_flags(
    record: EntitlementRecord,
    device_purchases: Sequence[DevicePurchase],
    subscriptions: Container[str] | None,
) -> EntitlementRecord:
    purchase = _matching_purchase(record.product, device_purchases)
    if purchase is None:
        return replace(record, is_local_purchase=False)
    # The device is the freshest witness of the token and of the base plan.
    # A subscription that does not auto-renew was bought on a prepaid plan;
    # records owned by another account keep the flag they came with.
    is_prepaid = record.is_prepaid
    if not record.sub_already_owned and (subscriptions is None or record.product in subscriptions):
        is_prepaid = not purchase.is_auto_renewing
    return replace(
        record,
        is_local_purchase=True,
        purchase_token=purchase.purchase_token,
        is_prepaid=is_prepaid,
    )


def _still_on_device(record: EntitlementRecord, device_purchases: Sequence[DevicePurchase]) -> bool:
    return any(
        record.product in purchase.products and purchase.purchase_token == record.purchase_token
        for purchase in device_purchases
    )


def merge_entitlements(
    old_local: Sequence[EntitlementRecord],
    new_remote: Sequence[EntitlementRecord] | None,
    device_purchases: Sequence[DevicePurchase],
    subscriptions: Container[str] | None = None,
) -> list[EntitlementRecord]:
    """
    Merge the stored list, the remote list and the device purchases.

    Args:
        old_local: Last reconciled list from the record store
        new_remote: Fresh list from the backend, or None when there is none
        device_purchases: Purchases currently held on the device
        subscriptions: Subscription product ids whose prepaid flag follows
            the device purchase; None applies it to every matched record

    Returns:
        New entitlement list. Records owned by another account but still on
        this device are kept even if the remote list omits them.
    """
    base = old_local if new_remote is None else new_remote
    merged = [_with_local_flags(record, device_purchases, subscriptions) for record in base]

    products = {record.product for record in merged}
    for record in old_local:
        if not (record.sub_already_owned and record.is_local_purchase):
            continue
        if record.product in products:
            continue
        if not _still_on_device(record, device_purchases):
            continue
        merged.append(record)
        products.add(record.product)

    return merged


# ============================================================================
# Content
# ============================================================================


class ContentSink(Protocol):
    """Holds the content a user is currently entitled to."""

    async def get(self, user_id: str, kind: ProductKind) -> ContentResource | None:
        ...

    async def publish(self, user_id: str, kind: ProductKind, content: ContentResource) -> None:
        ...

    async def clear(self, user_id: str, kind: ProductKind) -> None:
        ...


DEFAULT_CONTENT_ENTRIES = 10_000


class InMemoryContentSink:
    """
    Latest entitled content per user and kind, bounded in size.

    Least recently used entries are dropped first; a dropped entry comes back
    on the user's next pass with fresh remote data.
    """

    def __init__(self, max_entries: int = DEFAULT_CONTENT_ENTRIES) -> None:
        self.max_entries = max_entries
        self._content: OrderedDict[tuple[str, ProductKind], ContentResource] = OrderedDict()

    async def get(self, user_id: str, kind: ProductKind) -> ContentResource | None:
        content = self._content.get((user_id, kind))
        if content is not None:
            self._content.move_to_end((user_id, kind))
        return content

    async def publish(self, user_id: str, kind: ProductKind, content: ContentResource) -> None:
        self._content[(user_id, kind)] = content
        self._content.move_to_end((user_id, kind))
        while len(self._content) > self.max_entries:
            self._content.popitem(last=False)

    async def clear(self, user_id: str, kind: ProductKind) -> None:
        self._content.pop((user_id, kind), None)


# ============================================================================
# Engine
# ============================================================================


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one reconciliation pass."""

    records: tuple[EntitlementRecord, ...]
    acknowledged_tokens: tuple[str, ...]
    failed_tokens: tuple[str, ...]
    summary: EntitlementSummary


class ReconciliationEngine:
    """
    Reconciliation engine for one user.

    Passes are serialized by an asyncio.Lock held from the store read through
    acknowledgement, so a pass never merges against a half-written list.
    """

    def __init__(
        self,
        user_id: str,
        store: EntitlementRecordStore,
        provider: BillingProvider,
        retrier: AcknowledgementRetrier,
        remote: RemoteEntitlementClient,
        catalog: ProductCatalog,
        content_sink: ContentSink,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.provider = provider
        self.retrier = retrier
        self.remote = remote
        self.catalog = catalog
        self.classifier = EntitlementClassifier(catalog)
        self.content_sink = content_sink
        self._lock = asyncio.Lock()

    @property
    def loading(self) -> bool:
        return self.remote.loading

    async def reconcile(
        self, new_remote: Sequence[EntitlementRecord] | None = None
    ) -> ReconciliationResult:
        """
        Run one reconciliation pass.

        Args:
            new_remote: Fresh list from the backend, or None to only refresh
                the device-derived flags of the stored list

        Raises:
            RecordStoreError: If the store cannot be read or written
        """
        async with self._lock:
            start = time.perf_counter()
            with (
                log_context(user_id=self.user_id),
                trace_operation("reconciliation_pass", fresh_remote=new_remote is not None) as span,
            ):
                try:
                    result, retained = await self._run_pass(new_remote)
                except EntitlementSyncError:
                    metrics.record_reconciliation("error", time.perf_counter() - start)
                    raise

                span.set_attribute("records", len(result.records))
                span.set_attribute("failed_acknowledgements", len(result.failed_tokens))
                outcome = "partial" if result.failed_tokens else "success"
                metrics.record_reconciliation(outcome, time.perf_counter() - start, retained)
                logger.info(
                    "reconciliation_pass_completed",
                    records=len(result.records),
                    retained=retained,
                    acknowledged=len(result.acknowledged_tokens),
                    failed=len(result.failed_tokens),
                    current_plan=result.summary.current_plan.value,
                )
                return result

    async def _run_pass(
        self, new_remote: Sequence[EntitlementRecord] | None
    ) -> tuple[ReconciliationResult, int]:
        old_local = await self.store.get_all(self.user_id)
        purchases = await self.provider.query_current_purchases()

        merged = merge_entitlements(
            old_local, new_remote, purchases, subscriptions=self.catalog.subscription_ids()
        )
        base_size = len(old_local) if new_remote is None else len(new_remote)
        await self.store.replace_all(self.user_id, merged)

        records, acknowledged, failed = await self._acknowledge_pending(merged)
        if acknowledged:
            await self.store.replace_all(self.user_id, records)

        if new_remote is not None:
            await self._sync_content(records)

        result = ReconciliationResult(
            records=tuple(records),
            acknowledged_tokens=tuple(acknowledged),
            failed_tokens=tuple(failed),
            summary=self.classifier.describe(records),
        )
        return result, len(merged) - base_size

    async def _acknowledge_pending(
        self, records: list[EntitlementRecord]
    ) -> tuple[list[EntitlementRecord], list[str], list[str]]:
        updated = list(records)
        acknowledged: list[str] = []
        failed: list[str] = []

        for index, record in enumerate(records):
            product, purchase_token = record.product, record.purchase_token
            if not record.needs_acknowledgement() or product is None or purchase_token is None:
                continue
            try:
                await self._acknowledge(product, purchase_token)
            except EntitlementSyncError as exc:
                # Left unacknowledged; the next pass tries again.
                logger.warning(
                    "acknowledgement_deferred",
                    product=product,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                metrics.record_error(type(exc).__name__, "acknowledge")
                failed.append(purchase_token)
                continue

            updated[index] = replace(record, is_acknowledged=True)
            acknowledged.append(purchase_token)

        return updated, acknowledged, failed

    async def _acknowledge(self, product: str, purchase_token: str) -> None:
        """
        Acknowledge with the backend of record, then with the billing provider.

        Raises:
            UnknownProductError: If the product is not in the catalog
            RemoteNetworkError, RemoteBackendError: If the backend call fails
            AcknowledgementError: If the billing provider did not acknowledge
        """
        kind = self.catalog.kind_of(product)
        if kind is None:
            raise UnknownProductError(product)

        await self.remote.acknowledge(product, purchase_token, kind)
        outcome = await self.retrier.acknowledge(purchase_token, product)
        if not outcome.succeeded:
            raise AcknowledgementError(outcome)

    async def _sync_content(self, records: Sequence[EntitlementRecord]) -> None:
        owned = self.classifier.content_tiers(records)
        for kind in ProductKind:
            try:
                if kind in owned:
                    content = await self.remote.fetch_content(kind)
                    await self.content_sink.publish(self.user_id, kind, content)
                else:
                    await self.content_sink.clear(self.user_id, kind)
            except EntitlementSyncError as exc:
                logger.warning("content_refresh_failed", kind=kind.value, error=str(exc))

    # ========================================================================
    # Triggers
    # ========================================================================

    async def on_purchases_updated(
        self, purchases: Sequence[DevicePurchase]
    ) -> ReconciliationResult:
        """
        Device purchase list changed.

        Refreshes the local flags first, then registers every purchase with
        the backend and reconciles on each response. Products outside the
        catalog are skipped; a failed registration is logged and the
        remaining purchases are still registered.
        """
        result = await self.reconcile(None)
        for purchase in purchases:
            kind = self.catalog.kind_of(purchase.primary_product)
            if kind is None:
                logger.warning("unknown_product_purchase_skipped", product=purchase.primary_product)
                continue
            try:
                result = await self._register(purchase.primary_product, purchase.purchase_token, kind)
            except (RemoteNetworkError, RemoteBackendError) as exc:
                logger.warning(
                    "purchase_registration_failed",
                    product=purchase.primary_product,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
        return result

    async def register_purchase(self, product: str, purchase_token: str) -> ReconciliationResult:
        """
        Register one purchase with the backend and reconcile on the response.

        Raises:
            UnknownProductError: If the product is not in the catalog
        """
        kind = self.catalog.get(product).kind
        return await self._register(product, purchase_token, kind)

    async def _register(
        self, product: str, purchase_token: str, kind: ProductKind
    ) -> ReconciliationResult:
        logger.info("registering_purchase", product=product, kind=kind.value)
        records = await self.remote.register(product, purchase_token, kind)
        return await self.reconcile(records)

    async def transfer(self, product: str, purchase_token: str) -> ReconciliationResult:
        """
        Move a subscription owned by another account to this user.

        Raises:
            UnknownProductError: If the product is not a catalog subscription
            PurchaseConflictError: If the backend refuses the transfer
        """
        if not self.catalog.get(product).kind.is_subscription:
            raise UnknownProductError(product)
        records = await self.remote.transfer(product, purchase_token)
        logger.info("subscription_transferred", product=product)
        return await self.reconcile(records)

    async def consume(self, product: str, purchase_token: str) -> ReconciliationResult:
        """
        Consume a one-time product purchase.

        Raises:
            UnknownProductError: If the product is not a catalog one-time product
        """
        if self.catalog.get(product).kind is not ProductKind.ONE_TIME:
            raise UnknownProductError(product)
        records = await self.remote.consume(product, purchase_token)
        logger.info("one_time_product_consumed", product=product)
        return await self.reconcile(records)

    async def refresh(self) -> ReconciliationResult:
        """
        Manual refresh from the backend of record.

        Fetch failures propagate and leave the stored list untouched.
        """
        records = await self.remote.fetch_status()
        return await self.reconcile(records)

    async def current_state(self) -> ReconciliationResult:
        """Stored list and derived state, without contacting anything."""
        records = await self.store.get_all(self.user_id)
        return ReconciliationResult(
            records=tuple(records),
            acknowledged_tokens=(),
            failed_tokens=(),
            summary=self.classifier.describe(records),
        )

    async def entitled_content(self, kind: ProductKind) -> ContentResource | None:
        """Content of a kind published by the last pass with fresh remote data."""
        return await self.content_sink.get(self.user_id, kind)

    async def delete_local_user_data(self) -> None:
        """Sign-out: forget the stored list and any entitled content."""
        async with self._lock:
            await self.store.delete_all(self.user_id)
            for kind in ProductKind:
                await self.content_sink.clear(self.user_id, kind)
        logger.info("local_user_data_deleted", user_id=self.user_id)
