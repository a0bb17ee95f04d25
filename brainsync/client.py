"""
Local-first document store client.

SyncClient is the facade every application module reads and writes through.
It composes the resource cache, single-flight loader, backoff executor and
batch writer, and owns the dual-write policy between the remote store and
the local fallback store:

Reads
    cache hit -> return
    miss -> one shared remote fetch (with retries) -> fallback write-through
    -> cache fill -> return. If the remote fails for good, the fallback copy
    is returned (or None / an empty list). Read failures are logged, never
    raised.

Writes
    The fallback store is written first and is never rolled back. The remote
    write is then attempted (with retries, or through the batch writer). A
    remote failure leaves the two stores diverged until a later successful
    write or a reconciliation pass, and is reported in the WriteResult.

Conflicts are settled by last-write-wins on updatedAt: a local write the
remote has not confirmed is preferred over an older remote copy.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from .backoff import BackoffExecutor, classify_retryable
from .batch_writer import DEFAULT_WINDOW, BatchWriter
from .cache import DEFAULT_TTL, ResourceCache
from .config import DEFAULT_COLLECTION_TTLS, SyncConfig, load_or_create_config
from .connection import ConnectionMonitor
from .errors import NotFound, SyncError
from .protocol import FallbackStoreProtocol, RemoteStoreProtocol
from .records import Record
from .single_flight import SingleFlightLoader
from .sync import Reconciler
from .types import (
    CREATED_FIELD,
    ID_FIELD,
    OWNER_FIELD,
    UPDATED_FIELD,
    LocalIdGenerator,
    PendingWrite,
    ResourceKey,
    WriteOp,
    is_newer,
    sort_records,
    stamp_record,
    strip_id,
    validate_collection,
    validate_id,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


@dataclass
class WriteResult:
    """
    Outcome of a write through the client.

    The local write has always happened when a WriteResult exists. ``synced``
    says whether the remote store confirmed it; when it did not, ``error``
    holds the reason.
    """
    collection: str
    document_id: Optional[str]
    record: Optional[dict]
    synced: bool
    error: Optional[BaseException] = None

    def raise_for_sync(self) -> "WriteResult":
        """Raise the remote error if the write did not reach the remote store."""
        if not self.synced:
            if self.error is not None:
                raise self.error
            raise SyncError(f"{self.collection}/{self.document_id} was not synced")
        return self


def _idempotency_key(collection: str, key: str) -> str:
    return f"_idempotency_{collection}_{key}"


def _last_write_wins(remote: dict, local: Optional[dict], pending: Optional[str]) -> dict:
    """
    Choose between a freshly fetched remote copy and the local one.

    The local copy wins when it is newer, or when it holds an unsynced write
    the remote copy is not newer than. A local update, or a local copy that
    was built from a partial update and so lacks createdAt, is laid over the
    remote fields rather than replacing them.
    """
    if local is None:
        return remote
    if not (is_newer(local, remote) or (pending is not None and not is_newer(remote, local))):
        return remote
    if pending == WriteOp.UPDATE.value or CREATED_FIELD not in local:
        return {**remote, **local}
    return local


class SyncClient:
    """
    Document store facade with a local cache and an offline fallback.

    Construct one per application session and hand it to every module.

    Args:
        remote: Authoritative document store
        fallback: Local key-value store used as backup and offline source
        owner_id: Identity stamped onto every record as ownerId
        default_ttl: Cache TTL in seconds for collections without an override
        collection_ttls: Per-collection cache TTL overrides in seconds
        executor: Backoff executor for remote calls
        batch_window: Seconds of quiet that close a write batch
        poll_interval: Health-check period for the connection monitor
        local_only: No remote store exists; the fallback store is the only
            copy, so writes are never marked unsynced
    """

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        fallback: FallbackStoreProtocol,
        *,
        owner_id: str = "local",
        default_ttl: float = DEFAULT_TTL,
        collection_ttls: Optional[dict[str, float]] = None,
        cache: Optional[ResourceCache] = None,
        executor: Optional[BackoffExecutor] = None,
        batch_writer: Optional[BatchWriter] = None,
        batch_window: Optional[float] = None,
        poll_interval: Optional[float] = None,
        id_generator=None,
        local_only: bool = False,
    ):
        self.remote = remote
        self.fallback = fallback
        self.owner_id = owner_id
        self.local_only = local_only
        self.cache = cache if cache is not None else ResourceCache(default_ttl)
        self.loader = SingleFlightLoader()
        self.executor = executor if executor is not None else BackoffExecutor()
        if batch_writer is None:
            batch_writer = BatchWriter(
                remote, DEFAULT_WINDOW if batch_window is None else batch_window,
            )
        self.batch_writer = batch_writer
        self.monitor = ConnectionMonitor(remote, poll_interval=poll_interval)
        self.reconciler = Reconciler(self)
        self.monitor.on_reconnect(self.reconciler.sync_pending)
        self._ttls = dict(DEFAULT_COLLECTION_TTLS if collection_ttls is None else collection_ttls)
        self._new_id = id_generator or LocalIdGenerator()

    @classmethod
    def from_config(cls, config: Optional[SyncConfig] = None, *, owner_id: Optional[str] = None) -> "SyncClient":
        """Build a client from a SyncConfig (loading the default one if omitted)."""
        from .backend import create_stores

        config = config or load_or_create_config()
        bundle = create_stores(config)
        # Nothing to retry against when there is no remote
        executor = BackoffExecutor(
            0 if bundle.is_local else config.max_retries,
            config.base_delay,
            retryable=classify_retryable if config.classify_errors else None,
        )
        return cls(
            bundle.remote,
            bundle.fallback,
            owner_id=owner_id or config.remote.owner_id,
            default_ttl=config.default_ttl,
            collection_ttls=config.collection_ttls,
            executor=executor,
            batch_window=config.batch_window,
            poll_interval=config.poll_interval,
            local_only=bundle.is_local,
        )

    def ttl_for(self, collection: str) -> float:
        return self._ttls.get(collection, self.cache.default_ttl)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start watching remote reachability (needs a running event loop)."""
        self.monitor.start()

    async def flush(self) -> None:
        """Commit any batched writes now."""
        await self.batch_writer.flush()

    async def close(self) -> None:
        await self.batch_writer.flush()
        await self.monitor.stop()
        await self.remote.close()
        self.fallback.close()

    async def __aenter__(self) -> "SyncClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate(self, collection: str, document_id: Optional[str] = None) -> None:
        """
        Drop cached state after a mutation.

        With a document id, drops that document and the collection listing.
        Without one, drops the listing and every cached document of the
        collection; modules call this after writing outside the client.
        """
        if document_id is None:
            self.cache.invalidate_collection(collection)
        else:
            self.cache.invalidate(ResourceKey(collection, document_id))
            self.cache.invalidate(ResourceKey(collection))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_document(
        self,
        collection: str,
        id: str,
        *,
        force_refresh: bool = False,
        ttl: Optional[float] = None,
    ) -> Optional[dict]:
        """Return one document, or None if neither store has it."""
        validate_collection(collection)
        validate_id(id)
        key = ResourceKey(collection, id)

        if not force_refresh:
            entry = self.cache.lookup(key)
            if entry is not None:
                return copy.deepcopy(entry.value)

        try:
            record = await self.loader.load(key, lambda: self._fetch_document(key, ttl))
        except Exception as e:
            logger.warning("Reading %s from fallback store: %s", key, e)
            return self.fallback.read(key.fallback_key)
        return copy.deepcopy(record)

    async def _fetch_document(self, key: ResourceKey, ttl: Optional[float]) -> Optional[dict]:
        collection, id = key
        if self.local_only:
            return self.fallback.read(key.fallback_key)
        pending = self.fallback.is_unsynced(collection, id)
        if pending == WriteOp.DELETE.value:
            return None
        if pending == WriteOp.CREATE.value:
            # Never reached the remote; the local copy is all there is
            local = self.fallback.read(key.fallback_key)
            if local is not None:
                self.cache.set(key, local, ttl if ttl is not None else self.ttl_for(collection))
            return local

        async def fetch() -> dict:
            found = await self.remote.get_doc(collection, id)
            if found is None:
                raise NotFound(collection, id)
            return found

        fetched = await self.executor.run(fetch, key=f"doc_{collection}_{id}")
        fetched = dict(fetched)
        fetched[ID_FIELD] = id

        # Local writes may have landed while the fetch was suspended
        pending = self.fallback.is_unsynced(collection, id)
        if pending == WriteOp.DELETE.value:
            return None
        record = _last_write_wins(fetched, self.fallback.read(key.fallback_key), pending)
        if record is not fetched:
            logger.debug("Keeping local copy of %s over the remote one", key)
        self.fallback.write(key.fallback_key, record)
        self.cache.set(key, record, ttl if ttl is not None else self.ttl_for(collection))
        return record

    async def get_collection(
        self,
        collection: str,
        *,
        force_refresh: bool = False,
        ttl: Optional[float] = None,
    ) -> list[dict]:
        """Return the owner's documents, newest updatedAt first."""
        validate_collection(collection)
        key = ResourceKey(collection)

        if not force_refresh:
            entry = self.cache.lookup(key)
            if entry is not None:
                return copy.deepcopy(entry.value)

        try:
            records = await self.loader.load(key, lambda: self._fetch_collection(key, ttl))
        except Exception as e:
            logger.warning("Reading %s listing from fallback store: %s", collection, e)
            return sort_records(self.fallback.read(key.fallback_key) or [])
        return copy.deepcopy(records)

    async def _fetch_collection(self, key: ResourceKey, ttl: Optional[float]) -> list[dict]:
        collection = key.collection
        if self.local_only:
            return sort_records(self.fallback.read(key.fallback_key) or [])
        filter = {OWNER_FIELD: self.owner_id}
        remote_records = await self.executor.run(
            lambda: self.remote.query_docs(collection, filter),
            key=f"collection_{collection}",
        )

        unsynced = {id: op for _, id, op in self.fallback.list_unsynced(collection)}
        by_id: dict[Any, dict] = {}
        for r in remote_records:
            id = r.get(ID_FIELD)
            op = unsynced.get(str(id)) if id is not None else None
            if op == WriteOp.DELETE.value:
                continue
            local = None
            if id is not None:
                local = self.fallback.read(ResourceKey(collection, str(id)).fallback_key)
            by_id[id] = _last_write_wins(dict(r), local, op)

        # Local creates and updates the remote listing does not know about yet
        for id, op in unsynced.items():
            if op == WriteOp.DELETE.value or id in by_id:
                continue
            local = self.fallback.read(ResourceKey(collection, id).fallback_key)
            if local is not None:
                by_id[id] = local

        records = sort_records(list(by_id.values()))
        for r in records:
            id = r.get(ID_FIELD)
            if id:
                self.fallback.write(ResourceKey(collection, str(id)).fallback_key, r)
        self.fallback.write(key.fallback_key, records)
        self.cache.set(key, records, ttl if ttl is not None else self.ttl_for(collection))
        return records

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _store_local(self, key: ResourceKey, record: dict) -> None:
        """Write a document and keep the local listing in step."""
        self.fallback.write(key.fallback_key, record)
        listing = self.fallback.read(key.collection) or []
        listing = [r for r in listing if r.get(ID_FIELD) != key.document_id]
        listing.append(record)
        self.fallback.write(key.collection, sort_records(listing))

    def _remove_local(self, key: ResourceKey) -> None:
        self.fallback.delete(key.fallback_key)
        listing = self.fallback.read(key.collection)
        if listing is not None:
            self.fallback.write(
                key.collection,
                [r for r in listing if r.get(ID_FIELD) != key.document_id],
            )

    async def _apply(self, write: PendingWrite) -> None:
        """Send one write straight to the remote store."""
        remote = self.remote
        if write.op is WriteOp.UPDATE:
            await remote.update_doc(write.collection, write.document_id, write.payload)
        elif write.op is WriteOp.DELETE:
            await remote.delete_doc(write.collection, write.document_id)
        else:
            await remote.set_doc(write.collection, write.document_id, write.payload)

    async def _send(self, write: PendingWrite, batched: bool) -> Optional[BaseException]:
        """Attempt the remote side of a write; returns the error, if any."""
        try:
            if batched:
                await self.batch_writer.enqueue(write)
            else:
                await self.executor.run(
                    lambda: self._apply(write),
                    key=f"{write.op.value}_{write.collection}_{write.document_id}",
                )
        except Exception as e:
            logger.warning(
                "Remote %s of %s failed; kept locally: %s", write.op.value, write.key, e,
            )
            return e
        return None

    def _settle(self, write: PendingWrite, record: Optional[dict]) -> None:
        """Clear the unsynced marker unless a newer local write superseded this one."""
        key = write.key
        current = self.fallback.read(key.fallback_key)
        if record is None:
            still_current = current is None
        else:
            still_current = current is not None and current.get(UPDATED_FIELD) == record.get(UPDATED_FIELD)
        if still_current:
            self.fallback.clear_unsynced(write.collection, write.document_id)

    async def _write(
        self, write: PendingWrite, record: dict, batched: bool,
    ) -> WriteResult:
        key = write.key
        self._store_local(key, record)
        if self.local_only:
            self.invalidate(key.collection, key.document_id)
            return WriteResult(key.collection, key.document_id, copy.deepcopy(record), synced=True)
        self.fallback.mark_unsynced(key.collection, key.document_id, write.op.value)
        self.invalidate(key.collection, key.document_id)

        error = await self._send(write, batched)
        if error is None:
            self._settle(write, record)
        self.invalidate(key.collection, key.document_id)
        return WriteResult(
            key.collection, key.document_id, copy.deepcopy(record),
            synced=error is None, error=error,
        )

    async def set_document(
        self, collection: str, id: str, data: dict, *, batched: bool = False,
    ) -> WriteResult:
        """Create or replace a document under a known id."""
        validate_collection(collection)
        validate_id(id)
        key = ResourceKey(collection, id)
        existing = self.fallback.read(key.fallback_key)
        record = stamp_record(data, self.owner_id, existing)
        record[ID_FIELD] = id
        write = PendingWrite(WriteOp.SET, collection, id, strip_id(record))
        return await self._write(write, record, batched)

    async def update_document(
        self, collection: str, id: str, partial: dict, *, batched: bool = False,
    ) -> WriteResult:
        """Merge fields into a document; only the changed fields go to the remote."""
        validate_collection(collection)
        validate_id(id)
        key = ResourceKey(collection, id)
        existing = self.fallback.read(key.fallback_key) or {}
        record = stamp_record({**existing, **partial}, self.owner_id, existing)
        if not existing and not self.local_only and CREATED_FIELD not in partial:
            # createdAt belongs to the remote document we have not seen
            record.pop(CREATED_FIELD, None)
        record[ID_FIELD] = id
        payload = strip_id(partial)
        payload[UPDATED_FIELD] = record[UPDATED_FIELD]
        write = PendingWrite(WriteOp.UPDATE, collection, id, payload)
        return await self._write(write, record, batched)

    async def add_document(
        self, collection: str, data: dict, *, idempotency_key: Optional[str] = None,
    ) -> WriteResult:
        """
        Create a document and let the remote assign its id.

        If the remote is unreachable a local id is minted instead; the
        document is replayed under that id when reconciliation runs. Passing
        the same ``idempotency_key`` again rewrites the document created by
        the first call instead of creating another one.
        """
        validate_collection(collection)
        if idempotency_key:
            known = self.fallback.read(_idempotency_key(collection, idempotency_key))
            if known:
                logger.info("Idempotent add to %s resolved to %s", collection, known)
                return await self.set_document(collection, known, data)

        record = stamp_record(data, self.owner_id)
        record.pop(ID_FIELD, None)
        error: Optional[BaseException] = None
        if self.local_only:
            new_id = self._new_id()
        else:
            try:
                new_id = await self.executor.run(
                    lambda: self.remote.add_doc(collection, dict(record)),
                    key=f"add_{collection}",
                )
            except Exception as e:
                new_id = self._new_id()
                error = e
                logger.warning(
                    "Remote add to %s failed; stored locally as %s: %s", collection, new_id, e,
                )

        record[ID_FIELD] = new_id
        key = ResourceKey(collection, new_id)
        self._store_local(key, record)
        if error is not None:
            self.fallback.mark_unsynced(collection, new_id, WriteOp.CREATE.value)
        if idempotency_key:
            self.fallback.write(_idempotency_key(collection, idempotency_key), new_id)
        self.invalidate(collection, new_id)
        return WriteResult(
            collection, new_id, copy.deepcopy(record), synced=error is None, error=error,
        )

    async def delete_document(
        self, collection: str, id: str, *, batched: bool = False,
    ) -> WriteResult:
        """Delete remotely if possible, then locally regardless."""
        validate_collection(collection)
        validate_id(id)
        key = ResourceKey(collection, id)
        write = PendingWrite(WriteOp.DELETE, collection, id)

        if self.local_only:
            self._remove_local(key)
            self.invalidate(collection, id)
            return WriteResult(collection, id, None, synced=True)
        error = await self._send(write, batched)
        self._remove_local(key)
        if error is None:
            self.fallback.clear_unsynced(collection, id)
        else:
            self.fallback.mark_unsynced(collection, id, WriteOp.DELETE.value)
        self.invalidate(collection, id)
        return WriteResult(collection, id, None, synced=error is None, error=error)

    # -------------------------------------------------------------------------
    # Typed records
    # -------------------------------------------------------------------------

    async def get_record(self, model: type[R], id: str, **kwargs: Any) -> Optional[R]:
        data = await self.get_document(model.collection_name, id, **kwargs)
        return None if data is None else model.from_dict(data)

    async def list_records(self, model: type[R], **kwargs: Any) -> list[R]:
        return [model.from_dict(d) for d in await self.get_collection(model.collection_name, **kwargs)]

    async def save_record(self, record: Record, *, batched: bool = False) -> WriteResult:
        """Set a record that has an id, add one that doesn't."""
        if record.id:
            return await self.set_document(
                record.collection_name, record.id, record.to_payload(), batched=batched,
            )
        return await self.add_document(record.collection_name, record.to_payload())

    # -------------------------------------------------------------------------
    # Reconciliation and diagnostics
    # -------------------------------------------------------------------------

    async def sync_pending(self):
        """Push unsynced local writes now; see Reconciler.sync_pending."""
        return await self.reconciler.sync_pending()

    def stats(self) -> dict:
        return {
            "owner_id": self.owner_id,
            "cache_entries": len(self.cache),
            "cache_hits": self.cache.hits,
            "cache_misses": self.cache.misses,
            "in_flight": len(self.loader),
            "coalesced_loads": self.loader.coalesced,
            "pending_writes": self.batch_writer.pending(),
            "unsynced": len(self.fallback.list_unsynced()),
            "retrying": self.executor.active(),
            "connection": self.monitor.status.value,
            "sync": self.reconciler.status.value,
            "last_sync": self.reconciler.last_sync,
        }
