"""Tests for brainsync.batch_writer: rolling-window write batching."""

import asyncio

import pytest

from brainsync.batch_writer import BatchWriter
from brainsync.errors import RemoteUnavailable
from brainsync.types import PendingWrite, WriteOp


def _write(i, op=WriteOp.SET):
    return PendingWrite(op, "tasks", str(i), {"n": i})


class TestBatchWindow:

    @pytest.mark.asyncio
    async def test_writes_in_one_window_commit_together(self, remote):
        writer = BatchWriter(remote, window=0.02)
        futures = [writer.enqueue(_write(i)) for i in range(5)]
        assert writer.pending() == 5
        await asyncio.gather(*futures)

        assert remote.calls["batch_commit"] == 1
        assert [w.document_id for w in remote.batches[0]] == ["0", "1", "2", "3", "4"]
        assert writer.pending() == 0
        assert writer.batches_committed == 1
        assert remote.docs[("tasks", "3")]["n"] == 3

    @pytest.mark.asyncio
    async def test_each_enqueue_restarts_window(self, remote):
        writer = BatchWriter(remote, window=0.1)
        futures = []
        for i in range(4):
            futures.append(writer.enqueue(_write(i)))
            await asyncio.sleep(0.03)
        # 120ms elapsed overall, but never 100ms of quiet
        assert remote.calls["batch_commit"] == 0
        await asyncio.gather(*futures)
        assert remote.calls["batch_commit"] == 1
        assert len(remote.batches[0]) == 4

    @pytest.mark.asyncio
    async def test_separate_windows_make_separate_batches(self, remote):
        writer = BatchWriter(remote, window=0.01)
        await writer.enqueue(_write(1))
        await writer.enqueue(_write(2))
        assert remote.calls["batch_commit"] == 2

    @pytest.mark.asyncio
    async def test_flush_commits_immediately(self, remote):
        writer = BatchWriter(remote, window=10)
        fut = writer.enqueue(_write(1))
        await writer.flush()
        assert fut.done()
        assert remote.calls["batch_commit"] == 1

    @pytest.mark.asyncio
    async def test_flush_with_nothing_queued(self, remote):
        writer = BatchWriter(remote, window=0.01)
        await writer.flush()
        assert remote.calls["batch_commit"] == 0


class TestBatchFallback:

    @pytest.mark.asyncio
    async def test_rejected_batch_retries_each_write(self, remote):
        remote.fail_batches = 1
        writer = BatchWriter(remote, window=0.01)
        futures = [writer.enqueue(_write(i)) for i in range(5)]
        await asyncio.gather(*futures)

        # One atomic attempt, then five single-operation commits
        assert remote.calls["batch_commit"] == 6
        assert [len(b) for b in remote.batches] == [5, 1, 1, 1, 1, 1]
        assert writer.batches_failed == 1
        assert all(("tasks", str(i)) in remote.docs for i in range(5))

    @pytest.mark.asyncio
    async def test_partial_success(self, remote):
        remote.fail_batches = 2  # the batch and the first single write
        writer = BatchWriter(remote, window=0.01)
        futures = [writer.enqueue(_write(i)) for i in range(3)]
        results = await asyncio.gather(*futures, return_exceptions=True)

        assert results[0] is not None and isinstance(results[0], Exception)
        assert results[1] is None
        assert results[2] is None
        assert ("tasks", "0") not in remote.docs
        assert ("tasks", "2") in remote.docs

    @pytest.mark.asyncio
    async def test_offline_fails_every_future(self, remote):
        remote.online = False
        writer = BatchWriter(remote, window=0.01)
        futures = [writer.enqueue(_write(i)) for i in range(2)]
        results = await asyncio.gather(*futures, return_exceptions=True)
        assert all(isinstance(r, RemoteUnavailable) for r in results)
        assert remote.calls["batch_commit"] == 3

    @pytest.mark.asyncio
    async def test_unawaited_failure_is_quiet(self, remote):
        remote.online = False
        writer = BatchWriter(remote, window=0.01)
        writer.enqueue(_write(1))
        await writer.flush()
        assert writer.batches_failed == 1


class TestWireForm:
    def test_delete_has_no_data(self):
        assert PendingWrite(WriteOp.DELETE, "tasks", "1").to_dict() == {
            "op": "delete", "collection": "tasks", "id": "1",
        }

    def test_set_carries_payload(self):
        d = _write(4).to_dict()
        assert d == {"op": "set", "collection": "tasks", "id": "4", "data": {"n": 4}}
