from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

"""Catalog and sequence models.

The catalog maps a catalog key to the token label used in identifiers and to
a human label used in titles. A sequence is a path of catalog keys.
"""

__all__ = [
    "CatalogEntry",
    "Catalog",
    "SequenceModel",
]


@dataclass(frozen=True)
class CatalogEntry:
    key: str  # catalog key (path element)
    token: str  # token label used in identifiers (e.g. "W", "E")
    label: str | None = None  # human label for titles


class Catalog:
    """Typed key -> label lookup over catalog entries."""

    def __init__(self, entries: Iterable[CatalogEntry] = ()) -> None:
        self._entries: dict[str, CatalogEntry] = {e.key: e for e in entries}

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> Catalog:
        """Build a catalog from persisted records.

        Accepts ``key`` or ``bKey`` for the key and ``label`` or ``title`` for
        the human label. Records without a key are ignored.
        """
        entries: list[CatalogEntry] = []
        for rec in records:
            if not isinstance(rec, Mapping):
                continue
            key = rec.get("key", rec.get("bKey"))
            if key is None or str(key) == "":
                continue
            token = rec.get("token")
            label = rec.get("label", rec.get("title"))
            entries.append(CatalogEntry(
                key=str(key),
                token=str(token) if token not in (None, "") else str(key),
                label=str(label) if label not in (None, "") else None,
            ))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def token_for(self, key: str) -> str:
        entry = self._entries.get(key)
        return entry.token if entry is not None else key

    def label_for(self, key: str) -> str:
        entry = self._entries.get(key)
        if entry is None:
            return key
        return entry.label or entry.token

    def to_records(self) -> list[dict[str, Any]]:
        return [
            {"key": e.key, "token": e.token, "label": e.label}
            for e in self._entries.values()
        ]


@dataclass(frozen=True)
class SequenceModel:
    """Derived view of one sequence path."""
    seq_key: str  # path joined by "|" (storage key suffix)
    title: str  # human labels joined by " → "
    tokens: tuple[str, ...]  # one token label per path position
