"""
Billing Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from typing import Protocol

from entitlement_sync.models.billing import BillingResponseCode
from entitlement_sync.models.domain import DevicePurchase


class BillingProvider(Protocol):
    """
    Billing provider protocol.

    The reconciliation engine only depends on this interface, so a provider
    can be swapped (or faked in tests) without touching reconciliation logic.
    """

    async def query_current_purchases(self) -> list[DevicePurchase]:
        """
        Return the purchases currently held on the device.

        Returns:
            Snapshot of device purchases
        """
        ...

    async def acknowledge(self, purchase_token: str, product: str) -> BillingResponseCode:
        """
        Acknowledge a purchase token once.

        Args:
            purchase_token: Token to acknowledge
            product: Product the token was issued for

        Returns:
            Provider response code (never raises for provider-side rejections)
        """
        ...

    async def launch_purchase_flow(
        self,
        product_details: str,
        offer_token: str,
        old_purchase_token: str | None = None,
    ) -> None:
        """
        Launch the purchase UI for a product offer.

        Raises:
            BillingProviderError: If the flow cannot be launched from here
        """
        ...


class DeviceReportedBillingProvider(BillingProvider, Protocol):
    """Provider whose purchase list is the snapshot last reported by the device."""

    def update_purchases(self, purchases: list[DevicePurchase]) -> None:
        """Replace the device purchase snapshot."""
        ...
