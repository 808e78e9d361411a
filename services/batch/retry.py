"""Bounded exponential backoff for transient analysis failures."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from services.batch.cancellation import CancellationToken
from services.openai.analysis_errors import AnalysisTransportError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter: float = 0.1
    retry_on: Tuple[Type[BaseException], ...] = (AnalysisTransportError,)

    def delay_for(self, attempt: int) -> float:
        """Return the wait after failed attempt number `attempt` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter and delay > 0:
            delay *= 1.0 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    token: Optional[CancellationToken] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """Await `func()` until it succeeds or the policy is exhausted.

    Only exceptions listed in `policy.retry_on` are retried; anything else,
    and the last retryable error, propagates unchanged. Each attempt runs
    under `token` so cancellation aborts the in-flight call and the wait.
    """
    token = token or CancellationToken()
    attempt = 1
    while True:
        try:
            return await token.run(func())
        except policy.retry_on as exc:
            if attempt >= policy.max_attempts:
                LOGGER.error("Giving up after %d attempts: %s", attempt, exc)
                raise
            delay = policy.delay_for(attempt)
            if on_retry:
                on_retry(attempt, exc, delay)
            LOGGER.warning(
                "Retry %d/%d after %.1fs - %s: %s",
                attempt, policy.max_attempts - 1, delay, type(exc).__name__, exc,
            )
            await token.sleep(delay)
            attempt += 1
