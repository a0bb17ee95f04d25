"""
Bounded exponential-backoff retry for a single remote operation.

With the defaults (3 retries, 1s base) a permanently failing operation is
attempted four times, sleeping 1s, 2s and 4s between attempts, and then
RetryExhausted is raised carrying the last error and the attempt count.

Every exception is retried unless a ``retryable`` predicate says otherwise.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .errors import NotFound, RemoteRejected, RetryExhausted

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds


def classify_retryable(exc: BaseException) -> bool:
    """Opt-in classifier: permanent failures are not worth retrying.

    A missing document and a 4xx answer from the remote stay the same no
    matter how often they are asked for; everything else may be transient.
    """
    if isinstance(exc, NotFound):
        return False
    if isinstance(exc, RemoteRejected) and exc.status_code is not None:
        return not (400 <= exc.status_code < 500 and exc.status_code != 429)
    return True


class BackoffExecutor:
    """
    Runs async operations with retry and exponential backoff.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Delay in seconds before the second attempt; doubles after
        retryable: Optional predicate; exceptions it rejects stop retrying
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        base_delay: float = RETRY_BACKOFF_BASE,
        *,
        retryable: Optional[Callable[[BaseException], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0 (got {max_retries})")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._retryable = retryable
        self._sleep = sleep
        # key -> attempts made so far, only while a run is in progress
        self._attempts: dict[str, int] = {}

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before 1-indexed ``attempt`` (0 for the first)."""
        if attempt <= 1:
            return 0.0
        return self.base_delay * (2 ** (attempt - 2))

    async def run(
        self,
        fn: Callable[[], Awaitable[Any]],
        key: str,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        Await ``fn()`` until it succeeds or the retry budget is spent.

        Raises:
            RetryExhausted: after max_retries + 1 failed attempts, or sooner
                when the retryable predicate rejects an error
        """
        limit = self.max_retries if max_retries is None else max_retries
        attempt = 0
        try:
            while True:
                attempt += 1
                self._attempts[key] = attempt
                try:
                    result = await fn()
                except Exception as e:
                    if attempt > limit or (
                        self._retryable is not None and not self._retryable(e)
                    ):
                        logger.warning(
                            "%s failed after %d attempt(s): %s", key, attempt, e,
                        )
                        raise RetryExhausted(key, attempt, e) from e
                    delay = self.delay_for(attempt + 1)
                    logger.info(
                        "%s attempt %d/%d failed, retrying in %.1fs: %s",
                        key, attempt, limit + 1, delay, e,
                    )
                    await self._sleep(delay)
                    continue
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", key, attempt)
                return result
        finally:
            self._attempts.pop(key, None)

    def attempts(self, key: str) -> int:
        """Attempts made so far by a run in progress for ``key`` (0 if none)."""
        return self._attempts.get(key, 0)

    def active(self) -> dict[str, int]:
        return dict(self._attempts)
