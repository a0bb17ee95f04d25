"""
Reconciliation of local writes the remote store never confirmed.

When the client writes while the remote is unreachable, the fallback store
keeps the document and marks it unsynced. A reconciliation pass pushes the
latest local value of every marked document (or its deletion) to the remote.
Nothing is replayed in order; the newest local state simply overwrites the
remote copy, which is the same last-write-wins rule the client applies
everywhere else.

Documents created offline keep their locally minted ids: the create is
replayed as a set under that id, so the local id becomes canonical.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from .errors import RemoteRejected
from .protocol import Unsubscribe
from .types import UPDATED_FIELD, ResourceKey, WriteOp, strip_id

if TYPE_CHECKING:
    from .client import SyncClient

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


@dataclass
class SyncReport:
    """Outcome of one reconciliation pass."""
    pushed: list[tuple[str, str]] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.failed


StatusListener = Callable[[SyncStatus], None]


class Reconciler:
    """Pushes unsynced local writes to the remote store."""

    def __init__(self, client: "SyncClient"):
        self._client = client
        self.status = SyncStatus.IDLE
        self.last_sync: Optional[float] = None
        self._listeners: list[StatusListener] = []

    def _set_status(self, status: SyncStatus) -> None:
        if status is self.status:
            return
        self.status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error("Error in sync listener: %s", e)

    def on_status_change(self, listener: StatusListener) -> Unsubscribe:
        """Register a listener; it is called at once with the current status."""
        self._listeners.append(listener)
        try:
            listener(self.status)
        except Exception as e:
            logger.error("Error in sync listener: %s", e)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sync_pending(self) -> SyncReport:
        """Push every unsynced document. Concurrent calls are skipped."""
        if self.status is SyncStatus.SYNCING:
            logger.info("Sync already in progress, skipping")
            return SyncReport(skipped=True)

        fallback = self._client.fallback
        pending = fallback.list_unsynced()
        if not pending:
            self._set_status(SyncStatus.SYNCED)
            self.last_sync = time.time()
            return SyncReport()

        self._set_status(SyncStatus.SYNCING)
        logger.info("Syncing %d unsynced document(s)", len(pending))
        report = SyncReport()
        try:
            for collection, id, op in pending:
                try:
                    pushed = await self._push(collection, id, op)
                except Exception as e:
                    logger.warning("Failed to sync %s/%s: %s", collection, id, e)
                    report.failed.append((collection, id))
                    continue
                if pushed:
                    report.pushed.append((collection, id))
        finally:
            if report.failed:
                self._set_status(SyncStatus.ERROR)
            else:
                self._set_status(SyncStatus.SYNCED)
                self.last_sync = time.time()
        logger.info(
            "Sync finished: %d pushed, %d failed", len(report.pushed), len(report.failed),
        )
        return report

    async def _push(self, collection: str, id: str, op: str) -> bool:
        client = self._client
        fallback = client.fallback
        remote = client.remote
        key = ResourceKey(collection, id)

        if op == WriteOp.DELETE.value:
            await client.executor.run(
                lambda: remote.delete_doc(collection, id), key=f"sync_{collection}_{id}",
            )
            fallback.clear_unsynced(collection, id)
            client.invalidate(collection, id)
            return True

        record = fallback.read(key.fallback_key)
        if record is None:
            # Gone locally without a delete marker; nothing to push
            fallback.clear_unsynced(collection, id)
            return False

        stamp = record.get(UPDATED_FIELD)
        payload = strip_id(record)

        async def replay() -> None:
            if op != WriteOp.UPDATE.value:
                await remote.set_doc(collection, id, payload)
                return
            # The local copy of an update may hold only the changed fields
            try:
                await remote.update_doc(collection, id, payload)
            except RemoteRejected as e:
                if e.status_code != 404:
                    raise
                await remote.set_doc(collection, id, payload)

        await client.executor.run(replay, key=f"sync_{collection}_{id}")
        # A newer local write may have landed while we were pushing
        current = fallback.read(key.fallback_key)
        if current is not None and current.get(UPDATED_FIELD) == stamp:
            fallback.clear_unsynced(collection, id)
        client.invalidate(collection, id)
        return True
