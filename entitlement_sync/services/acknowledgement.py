"""
Acknowledgement Retrier - bounded, backed-off provider acknowledgement.

If a purchase token is not acknowledged with the billing provider within
3 days, the provider refunds and revokes the purchase. Acknowledgement only
happens after the backend of record has associated the token with the account.
"""

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from structlog import get_logger

from entitlement_sync.exceptions import BillingProviderError
from entitlement_sync.models.billing import (
    BillingResponseCode,
    ResponseClass,
    classify_response,
    to_response_code,
)
from entitlement_sync.models.domain import AcknowledgementOutcome, AcknowledgementReason
from entitlement_sync.observability.metrics import metrics
from entitlement_sync.services.billing_provider import BillingProvider

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 0.5
MAX_REMEMBERED_TOKENS = 10_000

SleepFunc = Callable[[float], Awaitable[None]]


class AcknowledgementRetrier:
    """
    Acknowledges purchase tokens with the billing provider.

    Outcomes:
    - OK / ITEM_ALREADY_OWNED: success, returned immediately
    - recoverable codes: sleep base * 2**attempt, then retry
    - terminal or unknown codes: stop immediately
    - attempts exhausted: failure with reason EXHAUSTED
    """

    def __init__(
        self,
        provider: BillingProvider,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
        sleep: SleepFunc = asyncio.sleep,
        max_remembered: int = MAX_REMEMBERED_TOKENS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1: {max_attempts}")
        self.provider = provider
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self._sleep = sleep
        self.max_remembered = max_remembered
        # Tokens known to be acknowledged, least recently used first
        self._acknowledged: OrderedDict[str, None] = OrderedDict()

    def _remember(self, purchase_token: str) -> None:
        self._acknowledged[purchase_token] = None
        self._acknowledged.move_to_end(purchase_token)
        while len(self._acknowledged) > self.max_remembered:
            self._acknowledged.popitem(last=False)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) attempt."""
        return float(self.backoff_base_seconds * 2**attempt)

    async def acknowledge(self, purchase_token: str, product: str) -> AcknowledgementOutcome:
        """
        Acknowledge one purchase token.

        Args:
            purchase_token: Token to acknowledge
            product: Product the token was issued for

        Returns:
            Outcome; check `succeeded` rather than assuming success
        """
        if purchase_token in self._acknowledged:
            self._acknowledged.move_to_end(purchase_token)
            logger.debug("acknowledgement_already_recorded", product=product)
            return self._finish(
                AcknowledgementOutcome(
                    purchase_token=purchase_token,
                    reason=AcknowledgementReason.ALREADY_OWNED,
                    attempts=0,
                )
            )

        last_code: BillingResponseCode | None = None
        for attempt in range(1, self.max_attempts + 1):
            raw_code = await self._call_provider(purchase_token, product)
            last_code = to_response_code(raw_code)
            response_class = classify_response(raw_code)
            metrics.record_acknowledgement_attempt(response_class.value)

            if response_class is ResponseClass.OK:
                logger.info("acknowledgement_succeeded", product=product, attempt=attempt)
                self._remember(purchase_token)
                return self._finish(
                    AcknowledgementOutcome(
                        purchase_token=purchase_token,
                        reason=AcknowledgementReason.ACKNOWLEDGED,
                        attempts=attempt,
                        last_response=last_code,
                    )
                )

            if response_class is ResponseClass.ALREADY_OWNED:
                logger.info("acknowledgement_already_owned", product=product, attempt=attempt)
                self._remember(purchase_token)
                return self._finish(
                    AcknowledgementOutcome(
                        purchase_token=purchase_token,
                        reason=AcknowledgementReason.ALREADY_OWNED,
                        attempts=attempt,
                        last_response=last_code,
                    )
                )

            if response_class is ResponseClass.TERMINAL:
                logger.error(
                    "acknowledgement_failed",
                    product=product,
                    attempt=attempt,
                    response_code=raw_code,
                )
                return self._finish(
                    AcknowledgementOutcome(
                        purchase_token=purchase_token,
                        reason=AcknowledgementReason.TERMINAL,
                        attempts=attempt,
                        last_response=last_code,
                    )
                )

            if attempt < self.max_attempts:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "acknowledgement_retrying",
                    product=product,
                    attempt=attempt,
                    response_code=raw_code,
                    delay_seconds=delay,
                )
                await self._sleep(delay)

        logger.error(
            "acknowledgement_retries_exhausted",
            product=product,
            attempts=self.max_attempts,
            response_code=last_code.name if last_code is not None else None,
        )
        return self._finish(
            AcknowledgementOutcome(
                purchase_token=purchase_token,
                reason=AcknowledgementReason.EXHAUSTED,
                attempts=self.max_attempts,
                last_response=last_code,
            )
        )

    async def _call_provider(self, purchase_token: str, product: str) -> int:
        try:
            return int(await self.provider.acknowledge(purchase_token, product))
        except BillingProviderError as exc:
            logger.warning("acknowledgement_provider_error", product=product, error=exc.message)
            return int(BillingResponseCode.ERROR)

    def _finish(self, outcome: AcknowledgementOutcome) -> AcknowledgementOutcome:
        metrics.record_acknowledgement_outcome(outcome.reason.value)
        return outcome
