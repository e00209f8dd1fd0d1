"""
Remote Entitlement Client - calls to the backend of record.

Every call is counted by the PendingRequestCounter so consumers can show a
loading indicator. None of the calls retry; callers decide what to do with a
failure.
"""

import httpx
from pydantic import ValidationError
from structlog import get_logger

from entitlement_sync.exceptions import (
    PurchaseConflictError,
    RemoteBackendError,
    RemoteNetworkError,
)
from entitlement_sync.models.api import (
    BackendPurchaseRequest,
    ContentResourceModel,
    EntitlementStatusList,
)
from entitlement_sync.models.domain import CallerIdentity, ContentResource, EntitlementRecord
from entitlement_sync.observability.metrics import metrics
from entitlement_sync.services.product_catalog import ProductKind
from entitlement_sync.services.request_counter import PendingRequestCounter

logger = get_logger(__name__)

HTTP_CONFLICT = 409


class RemoteEntitlementClient:
    """
    Backend of record client for one authenticated caller.

    Operations return the caller's updated entitlement list, except where the
    backend has nothing to return.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        identity: CallerIdentity,
        counter: PendingRequestCounter | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            http_client: Shared client with base_url pointing at the backend of record
            identity: Caller whose bearer token authenticates every request
            counter: Pending request counter; a private one is created if omitted
        """
        self.http_client = http_client
        self.identity = identity
        self.counter = counter or PendingRequestCounter()
        self._last_remote: list[EntitlementRecord] = []

    @property
    def loading(self) -> bool:
        """True while any request to the backend is in flight."""
        return self.counter.loading

    # ========================================================================
    # Entitlement Status
    # ========================================================================

    async def fetch_status(self) -> list[EntitlementRecord]:
        """
        Full snapshot of the caller's subscriptions and one-time products.

        Raises:
            RemoteNetworkError: If the backend cannot be reached
            RemoteBackendError: If the backend rejects the request
        """
        subscriptions = await self._records("fetch_status", "GET", "subscription_status")
        one_time = await self._records("fetch_status", "GET", "otp_status")
        return self._remember(subscriptions + one_time)

    async def register(
        self, product: str, purchase_token: str, kind: ProductKind
    ) -> list[EntitlementRecord]:
        """
        Associate a purchase token with the caller's account.

        A conflict (token bound to another account) is not an error: the
        product's entry is replaced with an already-owned record so it can
        still be shown and transferred.
        """
        match kind:
            case ProductKind.BASIC | ProductKind.PREMIUM:
                path = "subscription_register"
            case ProductKind.ONE_TIME:
                path = "otp_register"

        response = await self._send("register", "PUT", path, product, purchase_token)
        if response.status_code == HTTP_CONFLICT:
            logger.warning("purchase_already_owned", product=product)
            metrics.record_remote_request("register", "conflict")
            owned = EntitlementRecord.already_owned(product, purchase_token)
            others = [record for record in self._last_remote if record.product != product]
            return self._remember(others + [owned])

        return self._remember(self._parse("register", response))

    async def acknowledge(
        self, product: str, purchase_token: str, kind: ProductKind
    ) -> list[EntitlementRecord]:
        """Mark a purchase as acknowledged on the backend of record."""
        match kind:
            case ProductKind.BASIC | ProductKind.PREMIUM:
                path = "acknowledge_purchase"
            case ProductKind.ONE_TIME:
                path = "otp_acknowledge"

        response = await self._send("acknowledge", "PUT", path, product, purchase_token)
        return self._remember(self._parse("acknowledge", response))

    async def transfer(self, product: str, purchase_token: str) -> list[EntitlementRecord]:
        """
        Reassign ownership of a subscription token to the caller's account.

        Raises:
            PurchaseConflictError: If the backend refuses the transfer
        """
        response = await self._send(
            "transfer", "PUT", "subscription_transfer", product, purchase_token
        )
        if response.status_code == HTTP_CONFLICT:
            metrics.record_remote_request("transfer", "conflict")
            raise PurchaseConflictError(product, purchase_token)
        return self._remember(self._parse("transfer", response))

    async def consume(self, product: str, purchase_token: str) -> list[EntitlementRecord]:
        """Consume a one-time product purchase so it can be bought again."""
        response = await self._send("consume", "PUT", "otp_consume", product, purchase_token)
        return self._remember(self._parse("consume", response))

    # ========================================================================
    # Push Registration
    # ========================================================================

    async def register_instance_id(self, instance_id: str) -> None:
        """Register the device's push instance id when the user signs in."""
        response = await self._request(
            "register_instance_id", "PUT", "instanceId_register", {"instanceId": instance_id}
        )
        self._check("register_instance_id", response)

    async def unregister_instance_id(self, instance_id: str) -> None:
        """Unregister the push instance id when the user signs out."""
        response = await self._request(
            "unregister_instance_id", "PUT", "instanceId_unregister", {"instanceId": instance_id}
        )
        self._check("unregister_instance_id", response)

    # ========================================================================
    # Content
    # ========================================================================

    async def fetch_content(self, kind: ProductKind) -> ContentResource:
        """Fetch the content a product kind entitles the caller to."""
        match kind:
            case ProductKind.BASIC:
                path = "content_basic"
            case ProductKind.PREMIUM:
                path = "content_premium"
            case ProductKind.ONE_TIME:
                path = "content_otp"

        response = await self._request("fetch_content", "GET", path)
        self._check("fetch_content", response)
        try:
            model = ContentResourceModel.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise RemoteBackendError("fetch_content", response.status_code, "invalid body") from exc
        return ContentResource(url=model.url)

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _send(
        self, operation: str, method: str, path: str, product: str, purchase_token: str
    ) -> httpx.Response:
        body = BackendPurchaseRequest(product=product, purchase_token=purchase_token)
        return await self._request(operation, method, path, body.model_dump(by_alias=True))

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json_body: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.identity.id_token}"}
        with self.counter.track():
            try:
                response = await self.http_client.request(
                    method, path, json=json_body, headers=headers
                )
            except httpx.TransportError as exc:
                logger.warning("remote_request_failed", operation=operation, error=str(exc))
                metrics.record_remote_request(operation, "network_error")
                raise RemoteNetworkError(operation, str(exc)) from exc

        logger.debug("remote_request_completed", operation=operation, status=response.status_code)
        return response

    def _check(self, operation: str, response: httpx.Response) -> None:
        if response.is_success:
            metrics.record_remote_request(operation, "success")
            return
        logger.error(
            "remote_request_rejected",
            operation=operation,
            status=response.status_code,
            body=response.text[:500],
        )
        metrics.record_remote_request(operation, "error")
        raise RemoteBackendError(operation, response.status_code, response.reason_phrase)

    def _parse(self, operation: str, response: httpx.Response) -> list[EntitlementRecord]:
        self._check(operation, response)
        try:
            return EntitlementStatusList.model_validate(response.json()).records()
        except (ValueError, ValidationError) as exc:
            logger.error("remote_response_invalid", operation=operation, error=str(exc))
            raise RemoteBackendError(operation, response.status_code, "invalid body") from exc

    async def _records(self, operation: str, method: str, path: str) -> list[EntitlementRecord]:
        response = await self._request(operation, method, path)
        return self._parse(operation, response)

    def _remember(self, records: list[EntitlementRecord]) -> list[EntitlementRecord]:
        self._last_remote = list(records)
        return records
