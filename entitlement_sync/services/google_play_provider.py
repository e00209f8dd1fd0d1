"""
Google Play Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

import asyncio
from typing import Any

import httplib2
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from structlog import get_logger

from entitlement_sync.exceptions import BillingProviderError
from entitlement_sync.models.billing import BillingResponseCode
from entitlement_sync.models.domain import DevicePurchase
from entitlement_sync.services.product_catalog import ProductCatalog, ProductKind

logger = get_logger(__name__)

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"


def build_android_publisher(service_account_json: str | dict[str, str]) -> Any:
    """
    Build the Google Play Developer API client.

    Args:
        service_account_json: Path to service account JSON or dict with credentials
    """
    if isinstance(service_account_json, str):
        credentials = service_account.Credentials.from_service_account_file(  # type: ignore[no-untyped-call]
            service_account_json,
            scopes=[ANDROID_PUBLISHER_SCOPE],
        )
    else:
        credentials = service_account.Credentials.from_service_account_info(  # type: ignore[no-untyped-call]
            service_account_json,
            scopes=[ANDROID_PUBLISHER_SCOPE],
        )

    return build("androidpublisher", "v3", credentials=credentials, cache_discovery=False)


def response_code_for_http_status(status: int) -> BillingResponseCode:
    """Map a Developer API HTTP status to the equivalent billing response code."""
    if status == 409:
        return BillingResponseCode.ITEM_ALREADY_OWNED
    if status in (404, 410):
        return BillingResponseCode.ITEM_NOT_OWNED
    if status == 429 or status >= 500:
        return BillingResponseCode.ERROR
    return BillingResponseCode.DEVELOPER_ERROR


class GooglePlayBillingProvider:
    """
    Google Play billing provider for one user session.

    The device's purchase list is the snapshot last reported through
    update_purchases(); acknowledgement goes through the Developer API.
    """

    def __init__(self, service: Any, package_name: str, catalog: ProductCatalog) -> None:
        """
        Initialize Google Play provider.

        Args:
            service: androidpublisher v3 client (see build_android_publisher)
            package_name: Android package name (e.g., 'com.example.subscriptions')
            catalog: Product catalog used to pick the subscription or product API
        """
        self.service = service
        self.package_name = package_name
        self.catalog = catalog
        self._purchases: tuple[DevicePurchase, ...] = ()

    def update_purchases(self, purchases: list[DevicePurchase]) -> None:
        """Replace the device purchase snapshot."""
        self._purchases = tuple(purchases)
        acknowledged = sum(1 for purchase in purchases if purchase.is_acknowledged)
        logger.debug(
            "device_purchases_updated",
            acknowledged=acknowledged,
            unacknowledged=len(purchases) - acknowledged,
        )

    async def query_current_purchases(self) -> list[DevicePurchase]:
        """Return the last reported device purchases."""
        return list(self._purchases)

    async def acknowledge(self, purchase_token: str, product: str) -> BillingResponseCode:
        """
        Acknowledge a purchase (required within 3 days).

        Args:
            purchase_token: Purchase token
            product: Product ID

        Returns:
            Response code; Developer API failures are translated, not raised
        """
        kind = self.catalog.kind_of(product)
        if kind is None:
            logger.error("google_play_acknowledge_unknown_product", product=product)
            return BillingResponseCode.DEVELOPER_ERROR

        try:
            logger.info("acknowledging_google_play_purchase", product=product, kind=kind.value)
            await asyncio.to_thread(self._execute_acknowledge, kind, product, purchase_token)
            logger.info("google_play_purchase_acknowledged", product=product)
            return BillingResponseCode.OK

        except HttpError as exc:
            error_content = exc.content.decode("utf-8") if exc.content else str(exc)
            code = response_code_for_http_status(exc.resp.status)
            logger.warning(
                "google_play_acknowledgement_rejected",
                product=product,
                status=exc.resp.status,
                response_code=code.name,
                error=error_content,
            )
            return code

        except (OSError, httplib2.HttpLib2Error) as exc:
            logger.warning("google_play_acknowledgement_network_error", product=product, error=str(exc))
            return BillingResponseCode.NETWORK_ERROR

    def _execute_acknowledge(self, kind: ProductKind, product: str, purchase_token: str) -> None:
        purchases = self.service.purchases()
        if kind.is_subscription:
            request = purchases.subscriptions().acknowledge(
                packageName=self.package_name,
                subscriptionId=product,
                token=purchase_token,
                body={},
            )
        else:
            request = purchases.products().acknowledge(
                packageName=self.package_name,
                productId=product,
                token=purchase_token,
                body={},
            )
        request.execute()

    async def launch_purchase_flow(
        self,
        product_details: str,
        offer_token: str,
        old_purchase_token: str | None = None,
    ) -> None:
        """The purchase UI only exists on the device."""
        raise BillingProviderError("Purchase flow can only be launched from the device")
