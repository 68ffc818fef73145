from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for upload error logging.

One record per failed chunk request. ``chunk`` is the 0-based chunk index;
-1 is allowed for save-level failures that are not tied to a chunk.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        seq_key: Sequence being saved
        chunk: Chunk index (0-based). Use -1 when no chunk applies
        first_identifier: identifiercode of the first pair in the chunk ("" if none)
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Error message surfaced by the upsert client
    """
    timestamp: str  # ISO8601 UTC
    seq_key: str
    chunk: int  # 不明な場合 -1 許容
    first_identifier: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(
        seq_key: str, chunk: int, first_identifier: str, error_type: str, message: str
    ) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            seq_key=seq_key,
            chunk=chunk,
            first_identifier=first_identifier,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
