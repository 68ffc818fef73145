from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

"""Row / Block domain models for the entry composer.

A sequence owns an ordered list of Blocks; each Block owns an ordered list of
Rows (one or more per token position). Instances are frozen: the block engine
builds new lists on every mutation and persists them as a whole document.

Persisted JSON shape (per row):
    {"tokenIndex": 0, "token": "W", "block": 1, "dec": 1,
     "output": "cat", "excluded": false}
"""

__all__ = [
    "PLACEHOLDER",
    "DEFAULT_DEC",
    "Row",
    "Block",
    "effective_dec",
    "blocks_from_json",
    "blocks_to_json",
]

# Sentinel output for a row that has not been filled yet
PLACEHOLDER = "(empty)"

DEFAULT_DEC = 1


def effective_dec(dec: int | None) -> int:
    """Return the decimal number with the ``dec ?? 1`` fallback applied."""
    return DEFAULT_DEC if dec is None else dec


@dataclass(frozen=True)
class Row:
    """One editable value at a token position within a Block.

    Attributes:
        token_index: Position in the sequence token list (0 = headword)
        token: Token label copied from the sequence when the row was created
        block: Number of the owning Block
        dec: Decimal sub-version within (block, token_index); None reads as 1
        output: Entered value, or PLACEHOLDER when not filled
        excluded: Row stays editable but never reaches any export/upload
    """
    token_index: int
    token: str
    block: int
    dec: int | None = DEFAULT_DEC
    output: str = PLACEHOLDER
    excluded: bool = False

    @property
    def decimal(self) -> int:
        return effective_dec(self.dec)

    def with_block(self, block: int) -> Row:
        return replace(self, block=block)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenIndex": self.token_index,
            "token": self.token,
            "block": self.block,
            "dec": self.dec,
            "output": self.output,
            "excluded": self.excluded,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Row:
        # 旧データは dbSkipRow で除外フラグを保持している
        excluded = data.get("excluded", data.get("dbSkipRow", False))
        output = data.get("output")
        return Row(
            token_index=int(data["tokenIndex"]),
            token=str(data.get("token") or ""),
            block=int(data["block"]),
            dec=data.get("dec"),
            output=PLACEHOLDER if output is None else str(output),
            excluded=bool(excluded),
        )


@dataclass(frozen=True)
class Block:
    """One full pass of values across the tokens of a sequence."""
    block: int
    rows: tuple[Row, ...] = ()

    def rows_for(self, token_index: int) -> list[Row]:
        """Rows at ``token_index`` in storage order."""
        return [r for r in self.rows if r.token_index == token_index]

    @property
    def token_indices(self) -> set[int]:
        return {r.token_index for r in self.rows}

    def renumbered(self, block: int) -> Block:
        """Copy of this Block (and every row) carrying a new block number."""
        return Block(block=block, rows=tuple(r.with_block(block) for r in self.rows))

    def to_dict(self) -> dict[str, Any]:
        return {"block": self.block, "rows": [r.to_dict() for r in self.rows]}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Block:
        return Block(
            block=int(data["block"]),
            rows=tuple(Row.from_dict(r) for r in data.get("rows") or []),
        )


def blocks_from_json(value: Any) -> list[Block]:
    """Decode a persisted per-sequence record; anything but a list reads as empty."""
    if not isinstance(value, list):
        return []
    return [Block.from_dict(b) for b in value]


def blocks_to_json(blocks: list[Block]) -> list[dict[str, Any]]:
    return [b.to_dict() for b in blocks]
