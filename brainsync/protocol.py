"""
Protocol definitions for the sync client and its storage backends.

Defines interface contracts at two levels:
- DocumentClientProtocol: the facade every application module calls
- RemoteStoreProtocol / FallbackStoreProtocol: the stores behind it
  (an HTTP document API remotely, SQLite locally)
"""

from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .client import WriteResult
    from .types import PendingWrite


ConnectivityCallback = Callable[[bool], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class RemoteStoreProtocol(Protocol):
    """
    Authoritative document store reached over the network.

    Implemented by:
    - HttpRemoteStore (JSON REST API via httpx)
    - NullRemoteStore (local-only mode; always unavailable)

    All operations are coroutines. get_doc returns None for an absent
    document; every other failure raises.
    """

    async def get_doc(self, collection: str, id: str) -> Optional[dict]: ...

    async def set_doc(self, collection: str, id: str, record: dict) -> None: ...

    async def add_doc(self, collection: str, record: dict) -> str: ...

    async def update_doc(self, collection: str, id: str, partial: dict) -> None: ...

    async def delete_doc(self, collection: str, id: str) -> None: ...

    async def query_docs(self, collection: str, filter: dict[str, Any]) -> list[dict]: ...

    async def batch_commit(self, writes: "list[PendingWrite]") -> None: ...

    async def ping(self) -> bool: ...

    def on_connectivity_change(self, callback: ConnectivityCallback) -> Unsubscribe: ...

    async def close(self) -> None: ...


@runtime_checkable
class FallbackStoreProtocol(Protocol):
    """
    Synchronous local key-value persistence.

    Keys are ``"<collection>_<id>"`` for documents and ``"<collection>"``
    for listings. Also remembers which documents have local writes the
    remote has not confirmed.
    """

    def read(self, key: str) -> Any: ...

    def write(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...

    def mark_unsynced(self, collection: str, id: str, op: str) -> None: ...

    def clear_unsynced(self, collection: str, id: str) -> None: ...

    def is_unsynced(self, collection: str, id: str) -> Optional[str]: ...

    def list_unsynced(self, collection: Optional[str] = None) -> list[tuple[str, str, str]]: ...

    def close(self) -> None: ...


@runtime_checkable
class DocumentClientProtocol(Protocol):
    """The document-store facade exposed to application modules."""

    async def get_document(
        self,
        collection: str,
        id: str,
        *,
        force_refresh: bool = False,
        ttl: Optional[float] = None,
    ) -> Optional[dict]: ...

    async def get_collection(
        self,
        collection: str,
        *,
        force_refresh: bool = False,
        ttl: Optional[float] = None,
    ) -> list[dict]: ...

    async def set_document(
        self, collection: str, id: str, data: dict, *, batched: bool = False,
    ) -> "WriteResult": ...

    async def add_document(
        self, collection: str, data: dict, *, idempotency_key: Optional[str] = None,
    ) -> "WriteResult": ...

    async def update_document(
        self, collection: str, id: str, partial: dict, *, batched: bool = False,
    ) -> "WriteResult": ...

    async def delete_document(
        self, collection: str, id: str, *, batched: bool = False,
    ) -> "WriteResult": ...

    def invalidate(self, collection: str, document_id: Optional[str] = None) -> None: ...
