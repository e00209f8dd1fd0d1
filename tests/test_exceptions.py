"""
Tests for exception classes.
"""

import pytest

from entitlement_sync.exceptions import (
    AcknowledgementError,
    AuthenticationError,
    BillingProviderError,
    EntitlementSyncError,
    PurchaseConflictError,
    RecordStoreError,
    RemoteBackendError,
    RemoteNetworkError,
    UnknownProductError,
)
from entitlement_sync.models.domain import AcknowledgementOutcome, AcknowledgementReason


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            RemoteNetworkError("register", "timeout"),
            RemoteBackendError("register", 500),
            PurchaseConflictError("basic_subscription", "T1"),
            BillingProviderError("disconnected"),
            RecordStoreError("down"),
            UnknownProductError("legacy"),
            AuthenticationError("bad signature"),
        ],
    )
    def test_all_derive_from_base(self, exc):
        assert isinstance(exc, EntitlementSyncError)


class TestMessages:
    """Tests for exception attributes and messages."""

    def test_remote_network_error(self):
        exc = RemoteNetworkError("fetch_status", "connection refused")

        assert exc.operation == "fetch_status"
        assert str(exc) == "Network error during fetch_status: connection refused"

    def test_remote_backend_error(self):
        exc = RemoteBackendError("register", 503, "Service Unavailable")

        assert exc.status_code == 503
        assert str(exc) == "Backend error during register: HTTP 503 Service Unavailable"

    def test_remote_backend_error_without_message(self):
        assert str(RemoteBackendError("register", 500)) == "Backend error during register: HTTP 500"

    def test_purchase_conflict_error(self):
        exc = PurchaseConflictError("basic_subscription", "T1")

        assert exc.purchase_token == "T1"
        assert "already owned by another account" in str(exc)

    def test_acknowledgement_error(self):
        outcome = AcknowledgementOutcome(
            purchase_token="T1", reason=AcknowledgementReason.EXHAUSTED, attempts=3
        )

        exc = AcknowledgementError(outcome)

        assert exc.outcome is outcome
        assert str(exc) == "Acknowledgement failed (exhausted) after 3 attempt(s)"

    def test_unknown_product_error(self):
        assert str(UnknownProductError("legacy")) == "Unknown product ID: legacy"

    def test_authentication_error(self):
        exc = AuthenticationError("Token expired")

        assert exc.message == "Token expired"
        assert str(exc) == "Authentication failed: Token expired"
