from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .keyed_store import KeyedStore

"""Local upload queue (no-network fallback).

Append-only list of batch records kept under a fixed store key so work is not
lost when no server is configured. External tooling reads and clears it
through the same key.
"""

__all__ = [
    "QUEUE_KEY",
    "QueueBatch",
    "LocalUploadQueue",
    "pairs_to_rows",
]

QUEUE_KEY = "lf.upload.queue.v1"


def pairs_to_rows(pairs: list[tuple[str, str]]) -> list[dict[str, str]]:
    """Convert (identifier, value) pairs into upsert row records."""
    return [
        {"identifiercode": identifier, "output_value": value, "status": "active"}
        for identifier, value in pairs
    ]


@dataclass(frozen=True)
class QueueBatch:
    seq_key: str
    language: str
    tenant: str | None
    reason: str
    rows: list[dict[str, str]] = field(default_factory=list)
    when: str = ""  # ISO8601 UTC; stamped on push when empty

    def to_dict(self) -> dict[str, Any]:
        return {
            "when": self.when,
            "seqKey": self.seq_key,
            "language": self.language,
            "tenant": self.tenant,
            "reason": self.reason,
            "rows": list(self.rows),
        }


class LocalUploadQueue:
    """Narrow interface over the persisted queue: push / read / clear.

    Every push is a read-modify-write of the whole list; batches are never
    reordered or rewritten.
    """

    def __init__(self, store: KeyedStore, key: str = QUEUE_KEY) -> None:
        self._store = store
        self._key = key

    def read(self) -> list[dict[str, Any]]:
        value = self._store.get(self._key, [])
        return value if isinstance(value, list) else []

    def push(self, batch: QueueBatch) -> int:
        """Append a batch; returns the queue length after the append."""
        record = batch.to_dict()
        if not record["when"]:
            record["when"] = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        queue = self.read()
        queue.append(record)
        self._store.set(self._key, queue)
        return len(queue)

    def clear(self) -> None:
        self._store.delete(self._key)

    def __len__(self) -> int:
        return len(self.read())

    def pending_rows(self) -> int:
        return sum(len(b.get("rows") or []) for b in self.read())
