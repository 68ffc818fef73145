from __future__ import annotations

import statistics
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

"""Save result models for the upload pipeline.

SaveState lifecycle:
    idle → preparing → (queuing_local | sending) → (done | cancelled | failed)
    preparing → nothing_to_save        (empty export)
    rejected                           (save requested while one is in flight)
"""


class SaveState(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    QUEUING_LOCAL = "queuing_local"
    SENDING = "sending"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"
    NOTHING_TO_SAVE = "nothing_to_save"
    REJECTED = "rejected"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({
    SaveState.DONE,
    SaveState.CANCELLED,
    SaveState.FAILED,
    SaveState.NOTHING_TO_SAVE,
    SaveState.REJECTED,
})


class SaveMode(Enum):
    NONE = "none"  # nothing was shipped
    LOCAL = "local"  # local queue
    NETWORK = "network"  # upsert endpoint


@dataclass(frozen=True)
class ChunkMetrics:
    """Timing for a single successful upsert request."""
    chunk_index: int
    chunk_size: int  # pairs in this chunk
    lane: int  # lane that shipped it
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float  # time.time()


@dataclass(frozen=True)
class SaveResult:
    """Outcome of one save invocation, used for messages and the SUMMARY line."""
    state: SaveState
    seq_key: str
    mode: SaveMode
    total_rows: int  # exportable pairs
    sent_rows: int  # rows confirmed sent (network) or queued (local)
    total_chunks: int
    sent_chunks: int
    elapsed_seconds: float
    message: str  # operator-facing message
    export_path: Path | None = None  # spreadsheet written on success
    error: str | None = None  # captured error text when state is FAILED
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0

    @property
    def throughput_rows_per_sec(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.sent_rows / self.elapsed_seconds

    @property
    def ok(self) -> bool:
        return self.state in (SaveState.DONE, SaveState.NOTHING_TO_SAVE)


class ChunkStatsAccumulator:
    """Accumulates per-chunk request timings for a save.

    Collects individual chunk timing data and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.chunk_times: list[float] = []

    def add(self, metrics: ChunkMetrics) -> None:
        self.chunk_times.append(metrics.elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate chunk statistics.

        Returns:
            tuple: (total_chunks, avg_chunk_seconds, p95_chunk_seconds)
        """
        if not self.chunk_times:
            return (0, 0.0, 0.0)

        total = len(self.chunk_times)
        avg = statistics.mean(self.chunk_times)
        if total == 1:
            p95 = self.chunk_times[0]
        else:
            # 95th percentile (19th out of 20 quantiles, 0-indexed)
            p95 = statistics.quantiles(self.chunk_times, n=20, method='inclusive')[18]
        return (total, avg, p95)
