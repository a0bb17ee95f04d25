"""
Remote document store adapters.

HttpRemoteStore talks to a hosted JSON document API:

    GET    /v1/collections/{collection}/documents/{id}
    PUT    /v1/collections/{collection}/documents/{id}
    PATCH  /v1/collections/{collection}/documents/{id}
    DELETE /v1/collections/{collection}/documents/{id}
    POST   /v1/collections/{collection}/documents        -> {"id": ...}
    GET    /v1/collections/{collection}/documents?k=v    -> {"documents": [...]}
    POST   /v1/batch  {"operations": [...]}
    GET    /v1/health

Every request's outcome feeds the reachability signal: transport failures
flip it offline, any answer from the server flips it online.

Retrying is not done here; the sync client wraps these calls in its
backoff executor.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote, urlparse

import httpx

from .errors import RemoteRejected, RemoteUnavailable
from .protocol import ConnectivityCallback, Unsubscribe
from .types import PendingWrite

logger = logging.getLogger(__name__)

# Timeouts
DEFAULT_TIMEOUT = 30.0
PING_TIMEOUT = 5.0


class _ConnectivitySignal:
    """Fan-out of online/offline transitions to subscribers."""

    def __init__(self):
        self._callbacks: list[ConnectivityCallback] = []
        self.online: Optional[bool] = None

    def subscribe(self, callback: ConnectivityCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def update(self, online: bool) -> None:
        if self.online is online:
            return
        self.online = online
        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception as e:
                logger.error("Error in connectivity callback: %s", e)


class HttpRemoteStore:
    """HTTP client for a hosted document store."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        owner_id: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key

        # Refuse non-HTTPS for remote APIs (bearer token would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"Remote store URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        headers: dict[str, str] = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if owner_id:
            headers["X-Owner-Id"] = owner_id

        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._signal = _ConnectivitySignal()

    @staticmethod
    def _doc_path(collection: str, id: str | None = None) -> str:
        path = f"/v1/collections/{quote(collection, safe='')}/documents"
        if id is not None:
            path += f"/{quote(id, safe='')}"
        return path

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport errors and updating reachability."""
        try:
            resp = await self._client.request(method, path, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            self._signal.update(False)
            raise RemoteUnavailable(f"{method} {path} failed: {e}") from e
        # A server error answers but does not serve
        self._signal.update(resp.status_code < 500)
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response, what: str) -> None:
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if resp.status_code >= 500:
                raise RemoteUnavailable(
                    f"{what}: server error {resp.status_code}"
                ) from e
            raise RemoteRejected(
                f"{what} rejected: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            ) from e

    async def get_doc(self, collection: str, id: str) -> Optional[dict]:
        """GET one document; None if the server says 404."""
        resp = await self._request("GET", self._doc_path(collection, id))
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, f"get {collection}/{id}")
        data = resp.json()
        data.setdefault("id", id)
        return data

    async def set_doc(self, collection: str, id: str, record: dict) -> None:
        resp = await self._request("PUT", self._doc_path(collection, id), json=record)
        self._raise_for_status(resp, f"set {collection}/{id}")

    async def add_doc(self, collection: str, record: dict) -> str:
        """POST a new document; returns the server-assigned id."""
        resp = await self._request("POST", self._doc_path(collection), json=record)
        self._raise_for_status(resp, f"add to {collection}")
        try:
            return str(resp.json()["id"])
        except (KeyError, ValueError) as e:
            raise RemoteRejected(f"add to {collection}: response has no id") from e

    async def update_doc(self, collection: str, id: str, partial: dict) -> None:
        resp = await self._request("PATCH", self._doc_path(collection, id), json=partial)
        self._raise_for_status(resp, f"update {collection}/{id}")

    async def delete_doc(self, collection: str, id: str) -> None:
        resp = await self._request("DELETE", self._doc_path(collection, id))
        # 404 is fine: already gone
        if resp.status_code != 404:
            self._raise_for_status(resp, f"delete {collection}/{id}")

    async def query_docs(self, collection: str, filter: dict[str, Any]) -> list[dict]:
        """GET a listing, filtered by equality on the given fields."""
        params = {k: str(v) for k, v in (filter or {}).items()}
        resp = await self._request("GET", self._doc_path(collection), params=params)
        self._raise_for_status(resp, f"query {collection}")
        return list(resp.json().get("documents", []))

    async def batch_commit(self, writes: list[PendingWrite]) -> None:
        """POST all writes as one atomic batch."""
        payload = {"operations": [w.to_dict() for w in writes]}
        resp = await self._request("POST", "/v1/batch", json=payload)
        self._raise_for_status(resp, f"batch of {len(writes)}")

    async def ping(self) -> bool:
        """True if the service answers its health check."""
        try:
            resp = await self._request("GET", "/v1/health", timeout=PING_TIMEOUT)
        except RemoteUnavailable:
            return False
        return resp.status_code < 500

    def on_connectivity_change(self, callback: ConnectivityCallback) -> Unsubscribe:
        return self._signal.subscribe(callback)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class NullRemoteStore:
    """Remote store for local-only mode: every operation is unavailable."""

    def _unavailable(self, what: str) -> RemoteUnavailable:
        return RemoteUnavailable(f"{what}: no remote store configured")

    async def get_doc(self, collection: str, id: str) -> Optional[dict]:
        raise self._unavailable(f"get {collection}/{id}")

    async def set_doc(self, collection: str, id: str, record: dict) -> None:
        raise self._unavailable(f"set {collection}/{id}")

    async def add_doc(self, collection: str, record: dict) -> str:
        raise self._unavailable(f"add to {collection}")

    async def update_doc(self, collection: str, id: str, partial: dict) -> None:
        raise self._unavailable(f"update {collection}/{id}")

    async def delete_doc(self, collection: str, id: str) -> None:
        raise self._unavailable(f"delete {collection}/{id}")

    async def query_docs(self, collection: str, filter: dict[str, Any]) -> list[dict]:
        raise self._unavailable(f"query {collection}")

    async def batch_commit(self, writes: list[PendingWrite]) -> None:
        raise self._unavailable(f"batch of {len(writes)}")

    async def ping(self) -> bool:
        return False

    def on_connectivity_change(self, callback: ConnectivityCallback) -> Unsubscribe:
        return lambda: None

    async def close(self) -> None:
        pass
