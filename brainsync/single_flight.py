"""
Single-flight loading: at most one outstanding fetch per resource key.

Concurrent callers asking for the same key while a fetch is running attach
to the running fetch and receive its result, or its exception. The in-flight
entry is removed as soon as the fetch settles, whatever the outcome, so a
failed fetch is never remembered and the next load starts afresh.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Union

from .types import ResourceKey

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]


class SingleFlightLoader:
    """Coalesces concurrent loads of the same key into one fetch."""

    def __init__(self):
        self._in_flight: dict[str, asyncio.Task] = {}
        self.fetches = 0
        self.coalesced = 0

    async def load(self, key: Union[ResourceKey, str], fetch: FetchFn) -> Any:
        """
        Return the value for ``key``, fetching it at most once per flight.

        A caller being cancelled does not cancel the shared fetch; it runs to
        completion for the remaining callers.
        """
        k = key.cache_key if isinstance(key, ResourceKey) else key
        task = self._in_flight.get(k)
        if task is not None and not task.done():
            self.coalesced += 1
            logger.debug("Joining in-flight fetch for %s", k)
            return await asyncio.shield(task)

        self.fetches += 1
        task = asyncio.ensure_future(fetch())
        self._in_flight[k] = task
        task.add_done_callback(lambda t, k=k: self._settle(k, t))
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the outcome as retrieved so an unawaited failure is not
        # reported again by the event loop.
        if not task.cancelled():
            task.exception()

    def in_flight(self, key: Union[ResourceKey, str]) -> bool:
        k = key.cache_key if isinstance(key, ResourceKey) else key
        task = self._in_flight.get(k)
        return task is not None and not task.done()

    def __len__(self) -> int:
        return sum(1 for t in self._in_flight.values() if not t.done())
