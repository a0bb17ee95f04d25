"""
Shared pytest fixtures for brainsync tests.

Provides an in-memory remote store with call counters and failure switches,
a controllable clock and a sleep that records delays instead of waiting.
"""

import asyncio
import copy
from collections import Counter
from typing import Any, Optional

import pytest

from brainsync.backoff import BackoffExecutor
from brainsync.cache import ResourceCache
from brainsync.client import SyncClient
from brainsync.errors import RemoteRejected, RemoteUnavailable
from brainsync.fallback_store import FallbackStore
from brainsync.types import PendingWrite, WriteOp


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that records requested delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeRemoteStore:
    """
    In-memory remote document store.

    Set ``online = False`` to make every call raise RemoteUnavailable, or add
    operation names to ``failing`` to fail just those. ``calls`` counts every
    invocation, successful or not.
    """

    def __init__(self):
        self.docs: dict[tuple[str, str], dict] = {}
        self.online = True
        self.failing: set[str] = set()
        self.calls: Counter = Counter()
        self.batches: list[list[PendingWrite]] = []
        self.fail_batches = 0  # fail this many batch commits, then succeed
        self.get_delay = 0.0
        self._next_id = 0
        self._callbacks = []

    def _check(self, op: str) -> None:
        self.calls[op] += 1
        if not self.online or op in self.failing:
            raise RemoteUnavailable(f"{op}: remote down")

    def put(self, collection: str, id: str, record: dict) -> None:
        """Seed a document directly (not counted as a call)."""
        self.docs[(collection, id)] = dict(record, id=id)

    async def get_doc(self, collection: str, id: str) -> Optional[dict]:
        self._check("get_doc")
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        doc = self.docs.get((collection, id))
        return copy.deepcopy(doc) if doc is not None else None

    async def set_doc(self, collection: str, id: str, record: dict) -> None:
        self._check("set_doc")
        self.docs[(collection, id)] = dict(record, id=id)

    async def add_doc(self, collection: str, record: dict) -> str:
        self._check("add_doc")
        self._next_id += 1
        id = f"r{self._next_id}"
        self.docs[(collection, id)] = dict(record, id=id)
        return id

    async def update_doc(self, collection: str, id: str, partial: dict) -> None:
        self._check("update_doc")
        if (collection, id) not in self.docs:
            raise RemoteRejected(f"update {collection}/{id}: not found", status_code=404)
        self.docs[(collection, id)].update(partial)

    async def delete_doc(self, collection: str, id: str) -> None:
        self._check("delete_doc")
        self.docs.pop((collection, id), None)

    async def query_docs(self, collection: str, filter: dict[str, Any]) -> list[dict]:
        self._check("query_docs")
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        return [
            copy.deepcopy(doc)
            for (c, _), doc in self.docs.items()
            if c == collection and all(doc.get(k) == v for k, v in filter.items())
        ]

    async def batch_commit(self, writes: list[PendingWrite]) -> None:
        self.calls["batch_commit"] += 1
        self.batches.append(list(writes))
        if not self.online or "batch_commit" in self.failing:
            raise RemoteUnavailable("batch_commit: remote down")
        if self.fail_batches > 0:
            self.fail_batches -= 1
            raise RemoteRejected("batch rejected", status_code=409)
        for w in writes:
            key = (w.collection, w.document_id)
            if w.op is WriteOp.DELETE:
                self.docs.pop(key, None)
            elif w.op is WriteOp.UPDATE and key in self.docs:
                self.docs[key].update(w.payload)
            else:
                self.docs[key] = dict(w.payload, id=w.document_id)

    async def ping(self) -> bool:
        self.calls["ping"] += 1
        return self.online

    def on_connectivity_change(self, callback):
        self._callbacks.append(callback)
        return lambda: self._callbacks.remove(callback)

    def set_online(self, online: bool) -> None:
        """Flip reachability and notify subscribers."""
        self.online = online
        for cb in list(self._callbacks):
            cb(online)

    async def close(self) -> None:
        self.calls["close"] += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def fallback(tmp_path):
    store = FallbackStore(tmp_path / "fallback.db")
    yield store
    store.close()


@pytest.fixture
def client(remote, fallback, sleep, clock):
    """SyncClient over the fake remote with instant backoff and a fake clock."""
    return SyncClient(
        remote,
        fallback,
        owner_id="user-1",
        cache=ResourceCache(clock=clock),
        executor=BackoffExecutor(sleep=sleep),
        batch_window=0.02,
    )
