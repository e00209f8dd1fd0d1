"""
Session Registry - one reconciliation engine per user.

Engines, clients and providers are built explicitly from the collaborators
handed to the registry; nothing here is a process-wide singleton.
"""

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

import httpx
from structlog import get_logger

from entitlement_sync.models.domain import CallerIdentity, DevicePurchase
from entitlement_sync.observability.metrics import metrics
from entitlement_sync.services.acknowledgement import (
    BACKOFF_BASE_SECONDS,
    MAX_ATTEMPTS,
    MAX_REMEMBERED_TOKENS,
    AcknowledgementRetrier,
)
from entitlement_sync.services.billing_provider import DeviceReportedBillingProvider
from entitlement_sync.services.product_catalog import ProductCatalog
from entitlement_sync.services.reconciliation import (
    ContentSink,
    ReconciliationEngine,
    ReconciliationResult,
)
from entitlement_sync.services.record_store import EntitlementRecordStore
from entitlement_sync.services.remote_client import RemoteEntitlementClient

logger = get_logger(__name__)

ProviderFactory = Callable[[], DeviceReportedBillingProvider]

DEFAULT_MAX_SESSIONS = 10_000


@dataclass
class UserSession:
    """Collaborators bound to one signed-in user."""

    user_id: str
    engine: ReconciliationEngine
    provider: DeviceReportedBillingProvider
    remote: RemoteEntitlementClient

    async def report_purchases(self, purchases: list[DevicePurchase]) -> ReconciliationResult:
        """Record the device's purchase list and reconcile against it."""
        self.provider.update_purchases(purchases)
        return await self.engine.on_purchases_updated(purchases)


class SessionRegistry:
    """
    Builds and caches a UserSession per user id.

    At most max_sessions are kept; the least recently used is dropped first
    and rebuilt from the record store on its next request.
    """

    def __init__(
        self,
        store: EntitlementRecordStore,
        catalog: ProductCatalog,
        http_client: httpx.AsyncClient,
        provider_factory: ProviderFactory,
        content_sink: ContentSink,
        ack_max_attempts: int = MAX_ATTEMPTS,
        ack_backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
        ack_remembered_tokens: int = MAX_REMEMBERED_TOKENS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.http_client = http_client
        self.provider_factory = provider_factory
        self.content_sink = content_sink
        self.ack_max_attempts = ack_max_attempts
        self.ack_backoff_base_seconds = ack_backoff_base_seconds
        self.ack_remembered_tokens = ack_remembered_tokens
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, UserSession] = OrderedDict()
        self._lock = asyncio.Lock()

    async def session_for(self, identity: CallerIdentity) -> UserSession:
        """
        Get the caller's session, creating it on first use.

        A newer bearer token for an existing session replaces the old one.
        """
        async with self._lock:
            session = self._sessions.get(identity.user_id)
            if session is None:
                session = self._build(identity)
                self._sessions[identity.user_id] = session
                logger.info("user_session_created", user_id=identity.user_id)
                self._evict_least_recently_used()
            elif session.remote.identity != identity:
                session.remote.identity = identity
            self._sessions.move_to_end(identity.user_id)
            metrics.user_sessions_active.set(len(self._sessions))
            return session

    async def close(self, user_id: str) -> None:
        """Forget a user's session (after sign-out)."""
        async with self._lock:
            if self._sessions.pop(user_id, None) is not None:
                logger.info("user_session_closed", user_id=user_id)
            metrics.user_sessions_active.set(len(self._sessions))

    def _evict_least_recently_used(self) -> None:
        while len(self._sessions) > self.max_sessions:
            user_id, _ = self._sessions.popitem(last=False)
            logger.info("user_session_evicted", user_id=user_id)

    def _build(self, identity: CallerIdentity) -> UserSession:
        provider = self.provider_factory()
        remote = RemoteEntitlementClient(self.http_client, identity)
        retrier = AcknowledgementRetrier(
            provider,
            max_attempts=self.ack_max_attempts,
            backoff_base_seconds=self.ack_backoff_base_seconds,
            max_remembered=self.ack_remembered_tokens,
        )
        engine = ReconciliationEngine(
            user_id=identity.user_id,
            store=self.store,
            provider=provider,
            retrier=retrier,
            remote=remote,
            catalog=self.catalog,
            content_sink=self.content_sink,
        )
        return UserSession(
            user_id=identity.user_id, engine=engine, provider=provider, remote=remote
        )
