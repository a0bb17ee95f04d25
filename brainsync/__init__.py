"""
brainsync

A local-first document store client: a cached, offline-tolerant facade over
a remote document database, backed by a local SQLite fallback store.

Quick Start:
    from brainsync import SyncClient

    async with SyncClient.from_config() as client:
        await client.set_document("tasks", "42", {"title": "Write report"})
        tasks = await client.get_collection("tasks")

CLI Usage:
    brainsync list tasks
    brainsync put tasks 42 --field title="Write report"
    brainsync sync

Default Store:
    ~/.brainsync/ (override with BRAINSYNC_HOME). Configuration is persisted
    in brainsync.toml within that directory.

Environment Variables:
    BRAINSYNC_HOME       - Override default data directory
    BRAINSYNC_API_URL    - Remote document API (switches to the http backend)
    BRAINSYNC_API_KEY    - Bearer token for the remote API
    BRAINSYNC_OWNER_ID   - Identity stamped onto written records
    BRAINSYNC_VERBOSE    - Set to 1 for debug logging in the CLI
"""

from .backoff import BackoffExecutor
from .batch_writer import BatchWriter
from .cache import CacheEntry, ResourceCache
from .client import SyncClient, WriteResult
from .connection import ConnectionMonitor, ConnectionStatus
from .errors import (
    BatchCommitFailed,
    NotFound,
    RemoteError,
    RemoteRejected,
    RemoteUnavailable,
    RetryExhausted,
    SyncError,
)
from .fallback_store import FallbackStore
from .records import Goal, Habit, Note, Project, Record, Task, Transaction
from .remote import HttpRemoteStore, NullRemoteStore
from .single_flight import SingleFlightLoader
from .sync import Reconciler, SyncReport, SyncStatus
from .types import PendingWrite, ResourceKey, WriteOp

__version__ = "0.1.0"

__all__ = [
    "BackoffExecutor",
    "BatchCommitFailed",
    "BatchWriter",
    "CacheEntry",
    "ConnectionMonitor",
    "ConnectionStatus",
    "FallbackStore",
    "Goal",
    "Habit",
    "HttpRemoteStore",
    "Note",
    "NotFound",
    "NullRemoteStore",
    "PendingWrite",
    "Project",
    "Reconciler",
    "Record",
    "RemoteError",
    "RemoteRejected",
    "RemoteUnavailable",
    "ResourceCache",
    "ResourceKey",
    "RetryExhausted",
    "SingleFlightLoader",
    "SyncClient",
    "SyncError",
    "SyncReport",
    "SyncStatus",
    "Task",
    "Transaction",
    "WriteOp",
    "WriteResult",
]
