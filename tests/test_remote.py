"""Tests for brainsync.remote: the HTTP document store adapter."""

import json

import httpx
import pytest

from brainsync.errors import RemoteRejected, RemoteUnavailable
from brainsync.remote import HttpRemoteStore, NullRemoteStore
from brainsync.types import PendingWrite, WriteOp


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, responses=None):
        self.requests: list[httpx.Request] = []
        self.responses = responses or {}
        self.default = lambda request: httpx.Response(200, json={})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.responses.get((request.method, request.url.path), self.default)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(request)
        return handler

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def _store(recorder, **kwargs):
    return HttpRemoteStore(
        "https://api.example.com/",
        "test-key",
        owner_id="user-1",
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


class TestHTTPSEnforcement:
    def test_allows_https(self):
        store = HttpRemoteStore("https://api.example.com", "key")
        assert store._api_url == "https://api.example.com"

    def test_allows_localhost(self):
        store = HttpRemoteStore("http://localhost:8000", "key")
        assert store._api_url == "http://localhost:8000"

    def test_allows_127_0_0_1(self):
        HttpRemoteStore("http://127.0.0.1:8000", "key")

    def test_rejects_plain_http(self):
        with pytest.raises(ValueError, match="must use HTTPS"):
            HttpRemoteStore("http://api.example.com", "key")


class TestDocuments:

    @pytest.mark.asyncio
    async def test_get_doc(self):
        rec = Recorder({
            ("GET", "/v1/collections/tasks/documents/42"):
                httpx.Response(200, json={"title": "a"}),
        })
        store = _store(rec)
        doc = await store.get_doc("tasks", "42")
        assert doc == {"title": "a", "id": "42"}
        assert rec.last.headers["Authorization"] == "Bearer test-key"
        assert rec.last.headers["X-Owner-Id"] == "user-1"
        await store.close()

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        rec = Recorder({
            ("GET", "/v1/collections/tasks/documents/42"): httpx.Response(404),
        })
        store = _store(rec)
        assert await store.get_doc("tasks", "42") is None

    @pytest.mark.asyncio
    async def test_ids_are_quoted(self):
        rec = Recorder()
        store = _store(rec)
        await store.set_doc("tasks", "a b", {"title": "x"})
        assert rec.last.url.raw_path == b"/v1/collections/tasks/documents/a%20b"

    @pytest.mark.asyncio
    async def test_set_update_delete_methods(self):
        rec = Recorder()
        store = _store(rec)
        await store.set_doc("tasks", "1", {"title": "x"})
        await store.update_doc("tasks", "1", {"status": "done"})
        await store.delete_doc("tasks", "1")
        assert [r.method for r in rec.requests] == ["PUT", "PATCH", "DELETE"]
        assert json.loads(rec.requests[0].content) == {"title": "x"}
        assert json.loads(rec.requests[1].content) == {"status": "done"}

    @pytest.mark.asyncio
    async def test_delete_missing_is_fine(self):
        rec = Recorder({
            ("DELETE", "/v1/collections/tasks/documents/1"): httpx.Response(404),
        })
        await _store(rec).delete_doc("tasks", "1")

    @pytest.mark.asyncio
    async def test_add_doc_returns_server_id(self):
        rec = Recorder({
            ("POST", "/v1/collections/notes/documents"): httpx.Response(201, json={"id": 7}),
        })
        assert await _store(rec).add_doc("notes", {"title": "x"}) == "7"

    @pytest.mark.asyncio
    async def test_add_doc_without_id_is_rejected(self):
        rec = Recorder({
            ("POST", "/v1/collections/notes/documents"): httpx.Response(201, json={}),
        })
        with pytest.raises(RemoteRejected):
            await _store(rec).add_doc("notes", {})

    @pytest.mark.asyncio
    async def test_query_docs_sends_filter(self):
        rec = Recorder({
            ("GET", "/v1/collections/tasks/documents"):
                httpx.Response(200, json={"documents": [{"id": "1"}, {"id": "2"}]}),
        })
        docs = await _store(rec).query_docs("tasks", {"ownerId": "user-1"})
        assert [d["id"] for d in docs] == ["1", "2"]
        assert rec.last.url.params["ownerId"] == "user-1"

    @pytest.mark.asyncio
    async def test_batch_commit_payload(self):
        rec = Recorder()
        await _store(rec).batch_commit([
            PendingWrite(WriteOp.SET, "tasks", "1", {"title": "x"}),
            PendingWrite(WriteOp.DELETE, "tasks", "2"),
        ])
        assert rec.last.url.path == "/v1/batch"
        assert json.loads(rec.last.content) == {"operations": [
            {"op": "set", "collection": "tasks", "id": "1", "data": {"title": "x"}},
            {"op": "delete", "collection": "tasks", "id": "2"},
        ]}


class TestErrors:

    @pytest.mark.asyncio
    async def test_client_error_is_rejected_with_status(self):
        rec = Recorder({
            ("PUT", "/v1/collections/tasks/documents/1"): httpx.Response(403, text="nope"),
        })
        with pytest.raises(RemoteRejected) as info:
            await _store(rec).set_doc("tasks", "1", {})
        assert info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        rec = Recorder({
            ("PUT", "/v1/collections/tasks/documents/1"): httpx.Response(503),
        })
        with pytest.raises(RemoteUnavailable):
            await _store(rec).set_doc("tasks", "1", {})

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self):
        rec = Recorder({
            ("GET", "/v1/collections/tasks/documents/1"): httpx.ConnectError("refused"),
        })
        with pytest.raises(RemoteUnavailable):
            await _store(rec).get_doc("tasks", "1")


class TestConnectivity:

    @pytest.mark.asyncio
    async def test_signal_follows_request_outcomes(self):
        rec = Recorder({
            ("GET", "/v1/collections/tasks/documents/down"): httpx.ConnectError("refused"),
        })
        store = _store(rec)
        seen = []
        store.on_connectivity_change(seen.append)

        await store.set_doc("tasks", "1", {})
        await store.set_doc("tasks", "2", {})
        with pytest.raises(RemoteUnavailable):
            await store.get_doc("tasks", "down")
        await store.set_doc("tasks", "3", {})
        assert seen == [True, False, True]

    @pytest.mark.asyncio
    async def test_server_error_marks_unreachable(self):
        rec = Recorder({
            ("PUT", "/v1/collections/tasks/documents/2"): httpx.Response(503, text="maintenance"),
        })
        store = _store(rec)
        seen = []
        store.on_connectivity_change(seen.append)

        await store.set_doc("tasks", "1", {})
        with pytest.raises(RemoteUnavailable):
            await store.set_doc("tasks", "2", {})
        assert seen == [True, False]

        # Client errors still mean the server is up
        rec.default = lambda request: httpx.Response(400, text="bad")
        with pytest.raises(RemoteRejected):
            await store.set_doc("tasks", "3", {})
        assert seen == [True, False, True]

    @pytest.mark.asyncio
    async def test_ping(self):
        rec = Recorder({("GET", "/v1/health"): httpx.Response(200, json={"ok": True})})
        assert await _store(rec).ping() is True

    @pytest.mark.asyncio
    async def test_ping_unreachable(self):
        rec = Recorder({("GET", "/v1/health"): httpx.ConnectTimeout("slow")})
        assert await _store(rec).ping() is False

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        store = _store(Recorder())
        seen = []
        unsubscribe = store.on_connectivity_change(seen.append)
        unsubscribe()
        await store.set_doc("tasks", "1", {})
        assert seen == []


class TestNullRemoteStore:

    @pytest.mark.asyncio
    async def test_everything_unavailable(self):
        store = NullRemoteStore()
        with pytest.raises(RemoteUnavailable):
            await store.get_doc("tasks", "1")
        with pytest.raises(RemoteUnavailable):
            await store.batch_commit([])
        assert await store.ping() is False
        store.on_connectivity_change(lambda online: None)()
        await store.close()
