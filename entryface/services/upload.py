from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import httpx

from ..api.client import LocalOnlyError, UpsertClient, UpsertError, build_payload
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import DEFAULT_CHUNK_SIZE, DEFAULT_LANES, ApiConfig
from ..models.entry import Block
from ..models.error_record import ErrorRecord
from ..models.save_result import ChunkMetrics, ChunkStatsAccumulator, SaveMode, SaveResult, SaveState
from ..models.sequence import SequenceModel
from ..store.upload_queue import LocalUploadQueue, QueueBatch, pairs_to_rows
from .export_filter import collect_pairs
from .export_writer import export_filename, write_excel
from .identifier import DEFAULT_RULE, IdentifierRule
from .progress import UploadProgressTracker, percent_of

"""Upload pipeline.

One save() call runs:

    IDLE → PREPARING → (QUEUING_LOCAL | SENDING) → (DONE | CANCELLED | FAILED)
    PREPARING → NOTHING_TO_SAVE when the export filter yields no pairs

Network mode splits the pairs into chunks of ``chunk_size`` and runs
``lanes`` asyncio tasks. Each lane claims the next chunk from a shared
cursor and POSTs it, until the cursor is exhausted, cancellation is requested
or one of its requests fails. Failed chunks are not retried and sent chunks
are not reverted.

The cursor and the sent counter belong to a single invocation; a second
save() while one is running is rejected.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "CancelToken",
    "ChunkCursor",
    "UploadPipeline",
    "chunk_count",
]

Pair = tuple[str, str]
ProgressCallback = Callable[[int, int, int], None]  # (percent, sent_rows, total_rows)
StateCallback = Callable[[SaveState], None]


def chunk_count(total: int, chunk_size: int) -> int:
    """ceil(total / chunk_size)."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    return -(-total // chunk_size) if total > 0 else 0


class CancelToken:
    """Cooperative cancellation flag shared by reference with every lane."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ChunkCursor:
    """Shared, monotonic chunk claim cursor.

    claim() contains no await, so on one event loop the check-and-advance is
    atomic with respect to lane interleaving: every chunk is handed out once.
    """

    def __init__(self, pairs: Sequence[Pair], chunk_size: int) -> None:
        self.total_chunks = chunk_count(len(pairs), chunk_size)
        self.chunk_size = chunk_size
        self._pairs = pairs
        self._next = 0

    @property
    def total_rows(self) -> int:
        return len(self._pairs)

    @property
    def remaining(self) -> int:
        return self.total_chunks - self._next

    def claim(self) -> tuple[int, list[Pair]] | None:
        """Return (chunk_index, chunk) for the next unclaimed chunk, or None."""
        if self._next >= self.total_chunks:
            return None
        index = self._next
        self._next += 1
        start = index * self.chunk_size
        return index, list(self._pairs[start:start + self.chunk_size])


@dataclass
class _SendTally:
    sent_rows: int = 0
    sent_chunks: int = 0
    error: str | None = None  # first captured lane error
    local_only: bool = False


def _error_type(e: Exception) -> str:
    if isinstance(e.__cause__, httpx.TimeoutException) or isinstance(e, httpx.TimeoutException):
        return "TIMEOUT"
    if isinstance(e, UpsertError):
        return "UPSERT_FAILED"
    return "LANE_ERROR"


class UploadPipeline:
    """Ships the exportable pairs of a sequence to the upsert endpoint or the local queue."""

    def __init__(
        self,
        api_config: ApiConfig,
        queue: LocalUploadQueue,
        *,
        page: str,
        client: UpsertClient | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        lanes: int = DEFAULT_LANES,
        rule: IdentifierRule = DEFAULT_RULE,
        export_directory: Path | None = None,
        error_log: ErrorLogBuffer | None = None,
        on_progress: ProgressCallback | None = None,
        on_state: StateCallback | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if lanes < 1:
            raise ValueError("lanes must be >= 1")
        self.api_config = api_config
        self.queue = queue
        self.page = page
        self._owns_client = client is None
        self.client = client if client is not None else UpsertClient(api_config)
        self.chunk_size = chunk_size
        self.lanes = lanes
        self.rule = rule
        self.export_directory = export_directory
        self.error_log = error_log
        self.on_progress = on_progress
        self.on_state = on_state
        self.state = SaveState.IDLE
        self._saving = False

    @property
    def saving(self) -> bool:
        return self._saving

    async def aclose(self) -> None:
        """Close the upsert client when the pipeline created it."""
        if self._owns_client:
            await self.client.close()

    def _transition(self, state: SaveState) -> None:
        self.state = state
        logger.debug("save state -> %s", state.value)
        if self.on_state is not None:
            self.on_state(state)

    def _emit_progress(self, sent: int, total: int) -> None:
        if self.on_progress is not None:
            self.on_progress(percent_of(sent, total), sent, total)

    def _write_export(self, pairs: Sequence[Pair]) -> Path | None:
        if self.export_directory is None:
            return None
        path = write_excel(self.export_directory / export_filename(self.page, "saved"), pairs)
        logger.info("wrote spreadsheet export: %s", path)
        return path

    # ------------------------------------------------------------------ save

    async def save(
        self,
        model: SequenceModel,
        blocks: Sequence[Block],
        cancel: CancelToken | None = None,
    ) -> SaveResult:
        """Export and ship one sequence.

        Args:
            model: Sequence whose tokens drive identifier composition
            blocks: Current Block list of the sequence
            cancel: Token the operator flips to stop further chunk claims

        Returns:
            SaveResult describing the terminal state
        """
        if self._saving:
            logger.warning("save already in progress; ignoring request for %s", model.seq_key)
            return SaveResult(
                state=SaveState.REJECTED,
                seq_key=model.seq_key,
                mode=SaveMode.NONE,
                total_rows=0,
                sent_rows=0,
                total_chunks=0,
                sent_chunks=0,
                elapsed_seconds=0.0,
                message="Save already in progress.",
            )
        self._saving = True
        started = time.perf_counter()
        try:
            return await self._run(model, blocks, cancel or CancelToken(), started)
        finally:
            self._saving = False

    async def _run(
        self,
        model: SequenceModel,
        blocks: Sequence[Block],
        cancel: CancelToken,
        started: float,
    ) -> SaveResult:
        self._transition(SaveState.PREPARING)
        pairs = collect_pairs(blocks, model.tokens, self.rule)
        if not pairs:
            self._transition(SaveState.NOTHING_TO_SAVE)
            logger.info("Nothing to save.")
            return SaveResult(
                state=SaveState.NOTHING_TO_SAVE,
                seq_key=model.seq_key,
                mode=SaveMode.NONE,
                total_rows=0,
                sent_rows=0,
                total_chunks=0,
                sent_chunks=0,
                elapsed_seconds=time.perf_counter() - started,
                message="Nothing to save.",
            )
        if self.api_config.local_only:
            return self._queue_local(model, pairs, started)
        return await self._send(model, pairs, cancel, started)

    def _queue_local(self, model: SequenceModel, pairs: list[Pair], started: float) -> SaveResult:
        self._transition(SaveState.QUEUING_LOCAL)
        total = len(pairs)
        self.queue.push(QueueBatch(
            seq_key=model.seq_key,
            language=self.api_config.language,
            tenant=self.api_config.tenant or None,
            reason=self.page,
            rows=pairs_to_rows(pairs),
        ))
        logger.info("Queued %s row(s) locally (no server).", f"{total:,}")
        export_path = self._write_export(pairs)
        self._transition(SaveState.DONE)
        return SaveResult(
            state=SaveState.DONE,
            seq_key=model.seq_key,
            mode=SaveMode.LOCAL,
            total_rows=total,
            sent_rows=total,
            total_chunks=1,
            sent_chunks=1,
            elapsed_seconds=time.perf_counter() - started,
            message="Saved locally. Set api.base to your backend to enable network uploads.",
            export_path=export_path,
        )

    async def _send(
        self,
        model: SequenceModel,
        pairs: list[Pair],
        cancel: CancelToken,
        started: float,
    ) -> SaveResult:
        self._transition(SaveState.SENDING)
        total = len(pairs)
        cursor = ChunkCursor(pairs, self.chunk_size)
        tally = _SendTally()
        stats = ChunkStatsAccumulator()
        logger.info(
            "Saving %s row(s) to %s in %d chunk(s) over %d lane(s)...",
            f"{total:,}", self.api_config.base, cursor.total_chunks, self.lanes,
        )

        with UploadProgressTracker(total, description=f"Saving {model.seq_key}") as progress:
            await asyncio.gather(*(
                self._lane(lane, model, cursor, cancel, tally, stats, progress)
                for lane in range(self.lanes)
            ))

        if self.error_log is not None and len(self.error_log):
            try:
                path = self.error_log.flush()
                logger.info("chunk errors written to %s", path)
            except OSError as e:
                logger.warning("failed to write upload error log: %s", e)

        if tally.local_only and tally.sent_rows == 0 and tally.error is None:
            logger.info("upsert client is LOCAL_ONLY; using local queue")
            return self._queue_local(model, pairs, started)

        _, avg, p95 = stats.get_stats()
        sent = tally.sent_rows
        error = tally.error
        if error is None and tally.local_only:
            error = "upsert client refused remaining chunks (LOCAL_ONLY)"

        export_path: Path | None = None
        if cancel.cancelled and cursor.remaining > 0:
            state = SaveState.CANCELLED
            message = f"Save cancelled after {sent:,} of {total:,} row(s)."
            logger.warning(message)
        elif error is not None:
            state = SaveState.FAILED
            message = f"Save failed after {sent:,} of {total:,} row(s): {error}"
            logger.error(message)
        else:
            state = SaveState.DONE
            message = f"Saved {sent:,} row(s)."
            logger.info(message)
            export_path = self._write_export(pairs)

        self._transition(state)
        return SaveResult(
            state=state,
            seq_key=model.seq_key,
            mode=SaveMode.NETWORK,
            total_rows=total,
            sent_rows=sent,
            total_chunks=cursor.total_chunks,
            sent_chunks=tally.sent_chunks,
            elapsed_seconds=time.perf_counter() - started,
            message=message,
            export_path=export_path,
            error=error if state == SaveState.FAILED else None,
            avg_chunk_seconds=avg,
            p95_chunk_seconds=p95,
        )

    async def _lane(
        self,
        lane: int,
        model: SequenceModel,
        cursor: ChunkCursor,
        cancel: CancelToken,
        tally: _SendTally,
        stats: ChunkStatsAccumulator,
        progress: UploadProgressTracker,
    ) -> None:
        total = cursor.total_rows
        while not cancel.cancelled:
            claimed = cursor.claim()
            if claimed is None:
                break
            index, chunk = claimed
            payload = build_payload(
                pairs_to_rows(chunk),
                language=self.api_config.language,
                tenant=self.api_config.tenant or None,
                reason=self.page,
            )
            start_time = time.time()
            try:
                await self.client.upsert(payload)
            except LocalOnlyError:
                tally.local_only = True
                break
            except Exception as e:
                message = str(e) or type(e).__name__
                if tally.error is None:
                    tally.error = message
                logger.error("lane %d: chunk %d failed: %s", lane, index, message)
                if self.error_log is not None:
                    self.error_log.append(ErrorRecord.create(
                        seq_key=model.seq_key,
                        chunk=index,
                        first_identifier=chunk[0][0] if chunk else "",
                        error_type=_error_type(e),
                        message=message,
                    ))
                break
            end_time = time.time()

            tally.sent_rows += len(chunk)
            tally.sent_chunks += 1
            stats.add(ChunkMetrics(
                chunk_index=index,
                chunk_size=len(chunk),
                lane=lane,
                elapsed_seconds=end_time - start_time,
                start_time=start_time,
                end_time=end_time,
            ))
            progress.advance(len(chunk))
            progress.set_postfix(chunks=f"{tally.sent_chunks}/{cursor.total_chunks}")
            self._emit_progress(tally.sent_rows, total)
