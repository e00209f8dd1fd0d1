"""
Pending Request Counter - drives the "loading" signal.

Tracks requests in flight to the backend of record. loading is True while the
count is positive and False once every request has been answered.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from structlog import get_logger

from entitlement_sync.observability.metrics import metrics

logger = get_logger(__name__)


class PendingRequestCounter:
    """Thread-safe pending request count with a derived loading flag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0

    @property
    def loading(self) -> bool:
        """True when there are pending requests."""
        with self._lock:
            return self._count > 0

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def increment(self) -> None:
        """Must be paired with decrement() once the request completes."""
        with self._lock:
            self._count += 1
            new_count = self._count
        if new_count <= 0:
            logger.warning("pending_request_count_low_after_increment", count=new_count)
        logger.debug("pending_requests", count=new_count)
        metrics.remote_requests_pending.inc()

    def decrement(self) -> None:
        """Negative counts are clamped to not-loading and logged, never raised."""
        with self._lock:
            self._count -= 1
            new_count = self._count
        if new_count < 0:
            logger.warning("pending_request_count_negative", count=new_count)
        logger.debug("pending_requests", count=new_count)
        metrics.remote_requests_pending.dec()

    @contextmanager
    def track(self) -> Iterator[None]:
        """Count a request for the duration of the block."""
        self.increment()
        try:
            yield
        finally:
            self.decrement()
