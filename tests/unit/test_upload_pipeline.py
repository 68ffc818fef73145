from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from entryface.api.client import UpsertClient
from entryface.logging.error_log import ErrorLogBuffer
from entryface.models.config_models import ApiConfig
from entryface.models.save_result import SaveMode, SaveState
from entryface.services.upload import CancelToken, ChunkCursor, UploadPipeline, chunk_count
from entryface.store.keyed_store import MemoryStore
from entryface.store.upload_queue import LocalUploadQueue

NETWORK = ApiConfig(base="http://api.test", language="en", tenant="kids")


class RecordingUpsert:
    """MockTransport handler that records each chunk and can fail chosen ones."""

    def __init__(self, fail_first_ids: set[str] | None = None, delay: float = 0.0) -> None:
        self.fail_first_ids = fail_first_ids or set()
        self.delay = delay
        self.bodies: list[dict] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        body = json.loads(request.content)
        first = body["rows"][0]["identifiercode"]
        if first in self.fail_first_ids:
            return httpx.Response(500, text="boom")
        self.bodies.append(body)
        return httpx.Response(200, json={"ok": True})

    @property
    def chunk_sizes(self) -> list[int]:
        return [len(b["rows"]) for b in self.bodies]


def _pipeline(handler, *, store=None, **kwargs) -> UploadPipeline:
    client = UpsertClient(NETWORK, transport=httpx.MockTransport(handler))
    return UploadPipeline(
        NETWORK,
        LocalUploadQueue(store if store is not None else MemoryStore()),
        page="demo",
        client=client,
        **kwargs,
    )


def _save(pipeline: UploadPipeline, model, blocks, cancel=None):
    async def go():
        try:
            return await pipeline.save(model, blocks, cancel)
        finally:
            await pipeline.client.close()
    return asyncio.run(go())


def test_chunk_count():
    assert chunk_count(0, 5000) == 0
    assert chunk_count(1, 5000) == 1
    assert chunk_count(5000, 5000) == 1
    assert chunk_count(12_001, 5000) == 3
    with pytest.raises(ValueError):
        chunk_count(10, 0)


def test_cursor_hands_out_each_chunk_once():
    pairs = [(f"id{i}", str(i)) for i in range(11)]
    cursor = ChunkCursor(pairs, 4)
    claimed = []
    while (c := cursor.claim()) is not None:
        claimed.append(c)
    assert [i for i, _ in claimed] == [0, 1, 2]
    assert [len(chunk) for _, chunk in claimed] == [4, 4, 3]
    assert [p for _, chunk in claimed for p in chunk] == pairs
    assert cursor.remaining == 0
    assert cursor.total_rows == 11


def test_pipeline_rejects_bad_sizes():
    with pytest.raises(ValueError):
        UploadPipeline(NETWORK, LocalUploadQueue(MemoryStore()), page="demo", chunk_size=0)
    with pytest.raises(ValueError):
        UploadPipeline(NETWORK, LocalUploadQueue(MemoryStore()), page="demo", lanes=0)


class TestNetworkSave:
    """Chunked upload over concurrent lanes."""

    def test_12001_rows_go_out_in_three_chunks(self, we_model, rows_block):
        handler = RecordingUpsert()
        percents: list[int] = []
        states: list[SaveState] = []
        pipeline = _pipeline(
            handler,
            on_progress=lambda pct, sent, total: percents.append(pct),
            on_state=states.append,
        )
        result = _save(pipeline, we_model, [rows_block(12_001)])

        assert result.state == SaveState.DONE
        assert result.mode == SaveMode.NETWORK
        assert (result.sent_rows, result.total_rows) == (12_001, 12_001)
        assert (result.sent_chunks, result.total_chunks) == (3, 3)
        assert result.message == "Saved 12,001 row(s)."
        assert sorted(handler.chunk_sizes) == [2001, 5000, 5000]
        assert percents == sorted(percents)
        assert percents[-1] == 100
        assert percents.count(100) == 1
        assert states == [SaveState.PREPARING, SaveState.SENDING, SaveState.DONE]

    def test_every_identifier_sent_exactly_once(self, we_model, rows_block):
        handler = RecordingUpsert(delay=0.001)
        result = _save(_pipeline(handler, chunk_size=7, lanes=3), we_model, [rows_block(50)])
        assert result.state == SaveState.DONE
        sent = [r["identifiercode"] for b in handler.bodies for r in b["rows"]]
        assert sorted(sent) == sorted(f"cat-E-{d}" for d in range(1, 51))
        assert len(set(sent)) == 50

    def test_payload_carries_language_tenant_reason(self, we_model, rows_block):
        handler = RecordingUpsert()
        _save(_pipeline(handler), we_model, [rows_block(2)])
        body = handler.bodies[0]
        assert (body["language"], body["tenant"], body["reason"]) == ("en", "kids", "demo")
        assert body["rows"][0] == {"identifiercode": "cat-E-1", "output_value": "v1", "status": "active"}

    def test_spreadsheet_written_on_success(self, we_model, rows_block, tmp_path: Path):
        result = _save(_pipeline(RecordingUpsert(), export_directory=tmp_path), we_model, [rows_block(3)])
        assert result.export_path == tmp_path / "demo-entry-saved.xls"
        assert "cat-E-3" in result.export_path.read_text(encoding="utf-8")

    def test_chunk_stats_recorded(self, we_model, rows_block):
        result = _save(_pipeline(RecordingUpsert(), chunk_size=2), we_model, [rows_block(5)])
        assert result.avg_chunk_seconds >= 0
        assert result.p95_chunk_seconds >= 0
        assert result.throughput_rows_per_sec > 0


class TestFailure:

    def test_single_lane_stops_at_failed_chunk(self, we_model, rows_block, tmp_path: Path):
        handler = RecordingUpsert(fail_first_ids={"cat-E-5001"})
        error_log = ErrorLogBuffer(tmp_path)
        result = _save(_pipeline(handler, lanes=1, error_log=error_log), we_model, [rows_block(12_001)])

        assert result.state == SaveState.FAILED
        assert result.sent_rows == 5000
        assert result.sent_chunks == 1
        assert result.error == "API POST /stage1/text:upsert 500: boom"
        assert result.message == (
            "Save failed after 5,000 of 12,001 row(s): API POST /stage1/text:upsert 500: boom"
        )
        assert result.export_path is None

        logs = list(tmp_path.glob("upload-errors-*.log"))
        assert len(logs) == 1
        record = json.loads(logs[0].read_text(encoding="utf-8").splitlines()[0])
        assert record["chunk"] == 1
        assert record["first_identifier"] == "cat-E-5001"
        assert record["error_type"] == "UPSERT_FAILED"
        assert record["seq_key"] == "w|e"

    def test_other_lane_keeps_going(self, we_model, rows_block):
        handler = RecordingUpsert(fail_first_ids={"cat-E-5001"})
        result = _save(_pipeline(handler, lanes=2), we_model, [rows_block(12_001)])
        assert result.state == SaveState.FAILED
        # chunks 0 and 2 still go out, nothing is retried or reverted
        assert result.sent_rows == 7001
        assert sorted(handler.chunk_sizes) == [2001, 5000]

    def test_transport_error_fails_save(self, we_model, rows_block):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = _save(_pipeline(handler), we_model, [rows_block(3)])
        assert result.state == SaveState.FAILED
        assert result.sent_rows == 0
        assert "refused" in result.error


class TestCancellation:

    def test_cancel_after_first_chunk(self, we_model, rows_block):
        cancel = CancelToken()
        handler = RecordingUpsert()
        pipeline = _pipeline(handler, lanes=1, on_progress=lambda pct, sent, total: cancel.cancel())
        result = _save(pipeline, we_model, [rows_block(12_001)], cancel)

        assert result.state == SaveState.CANCELLED
        assert result.sent_rows == 5000
        assert result.message == "Save cancelled after 5,000 of 12,001 row(s)."
        assert handler.chunk_sizes == [5000]

    def test_cancel_before_start_sends_nothing(self, we_model, rows_block):
        cancel = CancelToken()
        cancel.cancel()
        handler = RecordingUpsert()
        result = _save(_pipeline(handler), we_model, [rows_block(10)], cancel)
        assert result.state == SaveState.CANCELLED
        assert result.sent_rows == 0
        assert handler.bodies == []

    def test_cancel_after_last_claim_is_done(self, we_model, rows_block):
        cancel = CancelToken()

        def on_progress(pct, sent, total):
            if sent == total:
                cancel.cancel()

        result = _save(_pipeline(RecordingUpsert(), lanes=1, chunk_size=5, on_progress=on_progress),
                       we_model, [rows_block(10)], cancel)
        assert result.state == SaveState.DONE
        assert result.sent_rows == 10


class TestLocalMode:

    def test_local_only_queues_batch(self, we_model, rows_block, tmp_path: Path):
        store = MemoryStore()
        queue = LocalUploadQueue(store)
        pipeline = UploadPipeline(
            ApiConfig(language="en", tenant=None),
            queue,
            page="demo",
            export_directory=tmp_path,
        )

        async def go():
            try:
                return await pipeline.save(we_model, [rows_block(3)])
            finally:
                await pipeline.aclose()

        result = asyncio.run(go())
        assert result.state == SaveState.DONE
        assert result.mode == SaveMode.LOCAL
        assert (result.sent_rows, result.total_rows) == (3, 3)
        assert result.message.startswith("Saved locally.")
        assert (tmp_path / "demo-entry-saved.xls").exists()

        batches = queue.read()
        assert len(batches) == 1
        assert batches[0]["seqKey"] == "w|e"
        assert batches[0]["reason"] == "demo"
        assert [r["identifiercode"] for r in batches[0]["rows"]] == ["cat-E-1", "cat-E-2", "cat-E-3"]
        assert all(r["status"] == "active" for r in batches[0]["rows"])

    def test_local_only_client_falls_back_to_queue(self, we_model, rows_block):
        store = MemoryStore()
        pipeline = UploadPipeline(
            NETWORK,
            LocalUploadQueue(store),
            page="demo",
            client=UpsertClient(ApiConfig()),
        )
        result = asyncio.run(pipeline.save(we_model, [rows_block(4)]))
        assert result.state == SaveState.DONE
        assert result.mode == SaveMode.LOCAL
        assert LocalUploadQueue(store).pending_rows() == 4


class TestEdgeStates:

    def test_nothing_to_save(self, we_model, empty_block):
        handler = RecordingUpsert()
        store = MemoryStore()
        result = _save(_pipeline(handler, store=store), we_model, [empty_block()])
        assert result.state == SaveState.NOTHING_TO_SAVE
        assert result.message == "Nothing to save."
        assert result.ok is True
        assert handler.bodies == []
        assert len(LocalUploadQueue(store)) == 0

    def test_concurrent_save_is_rejected(self, we_model, rows_block):
        handler = RecordingUpsert(delay=0.01)
        pipeline = _pipeline(handler)

        async def go():
            try:
                return await asyncio.gather(
                    pipeline.save(we_model, [rows_block(3)]),
                    pipeline.save(we_model, [rows_block(3)]),
                )
            finally:
                await pipeline.client.close()

        first, second = asyncio.run(go())
        assert first.state == SaveState.DONE
        assert second.state == SaveState.REJECTED
        assert pipeline.saving is False
        assert len(handler.bodies) == 1

    def test_pipeline_reusable_after_save(self, we_model, rows_block):
        handler = RecordingUpsert()
        pipeline = _pipeline(handler)

        async def go():
            try:
                a = await pipeline.save(we_model, [rows_block(2)])
                b = await pipeline.save(we_model, [rows_block(2)])
                return a, b
            finally:
                await pipeline.client.close()

        a, b = asyncio.run(go())
        assert a.state == b.state == SaveState.DONE
        assert len(handler.bodies) == 2
