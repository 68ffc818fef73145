from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace

from ..models.entry import DEFAULT_DEC, PLACEHOLDER, Block, Row, blocks_from_json, blocks_to_json
from ..models.sequence import SequenceModel
from ..store.keyed_store import KeyedStore, PageKeys

"""Block/Row engine.

Owns the per-sequence Block list. Every operation reads the current list,
builds a new one and writes it back wholesale under ``PageKeys.entry``;
there is no partial write and no rollback. Store faults propagate.

Single writer: callers must not mutate the same sequence concurrently.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "EngineError",
    "BlockNotFoundError",
    "RowNotFoundError",
    "InvalidTokenIndexError",
    "BlockEngine",
    "COMPOSER_JOINER",
]

COMPOSER_JOINER = "; "


class EngineError(Exception):
    """Base exception for block engine operations."""


class BlockNotFoundError(EngineError):
    pass


class RowNotFoundError(EngineError):
    pass


class InvalidTokenIndexError(EngineError):
    pass


def _seed_row(token_index: int, token: str, block: int, excluded: bool = False) -> Row:
    return Row(
        token_index=token_index,
        token=token,
        block=block,
        dec=DEFAULT_DEC,
        output=PLACEHOLDER,
        excluded=excluded,
    )


class BlockEngine:
    """Mutation operations over the Block lists of one page."""

    def __init__(self, store: KeyedStore, keys: PageKeys) -> None:
        self.store = store
        self.keys = keys

    # ------------------------------------------------------------------ io

    def load(self, seq_key: str) -> list[Block]:
        """Current Block list (empty when nothing is persisted yet)."""
        return blocks_from_json(self.store.get(self.keys.entry(seq_key)))

    def _save(self, seq_key: str, blocks: list[Block]) -> list[Block]:
        self.store.set(self.keys.entry(seq_key), blocks_to_json(blocks))
        return blocks

    def _find(self, blocks: list[Block], block_num: int) -> int:
        for i, b in enumerate(blocks):
            if b.block == block_num:
                return i
        raise BlockNotFoundError(f"block {block_num} not found")

    # ---------------------------------------------------------- seed/repair

    def ensure(self, model: SequenceModel) -> list[Block]:
        """Seed Block 1 or append rows for token indices that are missing.

        Repaired rows start at dec=1, PLACEHOLDER and excluded=False. Writes
        only when something changed.
        """
        blocks = self.load(model.seq_key)
        if not blocks:
            seeded = [Block(
                block=1,
                rows=tuple(_seed_row(i, t, 1) for i, t in enumerate(model.tokens)),
            )]
            logger.debug("seeded %s with %d row(s)", model.seq_key, len(model.tokens))
            return self._save(model.seq_key, seeded)

        mutated = False
        repaired: list[Block] = []
        for b in blocks:
            have = b.token_indices
            missing = [
                _seed_row(i, model.tokens[i], b.block)
                for i in range(len(model.tokens))
                if i not in have
            ]
            if missing:
                mutated = True
                repaired.append(Block(block=b.block, rows=b.rows + tuple(missing)))
            else:
                repaired.append(b)
        if mutated:
            logger.debug("repaired token rows for %s", model.seq_key)
            return self._save(model.seq_key, repaired)
        return blocks

    def sync(self, models: Iterable[SequenceModel]) -> dict[str, list[Block]]:
        """ensure() every sequence; returns seq_key -> Block list."""
        return {m.seq_key: self.ensure(m) for m in models}

    # ---------------------------------------------------------------- blocks

    def add_block(self, model: SequenceModel) -> Block:
        """Append a Block numbered max+1.

        Each row's excluded flag is inherited from Block 1's row at the same
        token index (False when Block 1 lacks that index).
        """
        blocks = self.load(model.seq_key)
        number = max((b.block for b in blocks), default=0) + 1

        ref_flags: dict[int, bool] = {}
        ref = next((b for b in blocks if b.block == 1), None)
        if ref is not None:
            for r in ref.rows:
                ref_flags[r.token_index] = r.excluded

        new_block = Block(
            block=number,
            rows=tuple(
                _seed_row(i, t, number, excluded=ref_flags.get(i, False))
                for i, t in enumerate(model.tokens)
            ),
        )
        self._save(model.seq_key, [*blocks, new_block])
        logger.info("added block %d to %s", number, model.seq_key)
        return new_block

    def duplicate_block(self, seq_key: str, block_num: int) -> Block:
        """Copy Block ``block_num`` (every field) into a new Block numbered max+1."""
        blocks = self.load(seq_key)
        src = blocks[self._find(blocks, block_num)]
        number = max(b.block for b in blocks) + 1
        copy = src.renumbered(number)
        self._save(seq_key, [*blocks, copy])
        logger.info("duplicated block %d of %s as block %d", block_num, seq_key, number)
        return copy

    def delete_block(self, seq_key: str, block_num: int) -> list[Block]:
        """Remove a Block and renumber the rest densely 1..N."""
        blocks = self.load(seq_key)
        self._find(blocks, block_num)
        keep = [
            b.renumbered(i + 1)
            for i, b in enumerate(b for b in blocks if b.block != block_num)
        ]
        logger.info("deleted block %d of %s", block_num, seq_key)
        return self._save(seq_key, keep)

    # ------------------------------------------------------------------ rows

    def add_decimal(self, seq_key: str, block_num: int, token_index: int) -> Row:
        """Insert a new decimal variant for ``token_index`` within a Block.

        dec = 1 + max(dec of existing rows for the token, default 0). The row
        goes right after the last existing row for the token (end of list if
        none) and copies token label / excluded flag from the first one.
        """
        if token_index < 0:
            raise InvalidTokenIndexError(f"token index must be >= 0, got {token_index}")
        blocks = self.load(seq_key)
        bi = self._find(blocks, block_num)
        b = blocks[bi]
        rows = list(b.rows)
        for_token = b.rows_for(token_index)
        dec = max((r.decimal for r in for_token), default=0) + 1
        first = for_token[0] if for_token else None

        insert_at = len(rows)
        for i, r in enumerate(rows):
            if r.token_index == token_index:
                insert_at = i + 1

        new_row = Row(
            token_index=token_index,
            token=first.token if first is not None else "",
            block=b.block,
            dec=dec,
            output=PLACEHOLDER,
            excluded=first.excluded if first is not None else False,
        )
        rows.insert(insert_at, new_row)
        blocks[bi] = Block(block=b.block, rows=tuple(rows))
        self._save(seq_key, blocks)
        return new_row

    def _update_row(self, seq_key: str, block_num: int, row_index: int, **changes) -> Row:
        blocks = self.load(seq_key)
        bi = self._find(blocks, block_num)
        b = blocks[bi]
        if not 0 <= row_index < len(b.rows):
            raise RowNotFoundError(f"row {row_index} not found in block {block_num}")
        rows = list(b.rows)
        rows[row_index] = replace(rows[row_index], **changes)
        blocks[bi] = Block(block=b.block, rows=tuple(rows))
        self._save(seq_key, blocks)
        return rows[row_index]

    def set_output(self, seq_key: str, block_num: int, row_index: int, value: str) -> Row:
        """Set the output of the row at storage index ``row_index``."""
        return self._update_row(seq_key, block_num, row_index, output=value)

    def set_excluded(self, seq_key: str, block_num: int, row_index: int, excluded: bool) -> Row:
        return self._update_row(seq_key, block_num, row_index, excluded=bool(excluded))

    def fill_column(self, seq_key: str, token_index: int, value: str) -> list[Block]:
        """Set ``value`` on every row of every Block at ``token_index`` (one write)."""
        blocks = [
            Block(
                block=b.block,
                rows=tuple(
                    replace(r, output=value) if r.token_index == token_index else r
                    for r in b.rows
                ),
            )
            for b in self.load(seq_key)
        ]
        return self._save(seq_key, blocks)

    def clear_column(self, seq_key: str, token_index: int) -> list[Block]:
        return self.fill_column(seq_key, token_index, "")

    # -------------------------------------------------------------- composer

    def composer_text(
        self, models: Sequence[SequenceModel], joiner: str = COMPOSER_JOINER
    ) -> str:
        """One line per (sequence, Block) joining every non-empty output.

        Placeholder outputs are kept, so unfinished rows stay visible.
        """
        parts: list[str] = []
        for model in models:
            for b in self.load(model.seq_key):
                joined = joiner.join(r.output for r in b.rows if r.output)
                prefix = f"{model.title} — Block {b.block}"
                parts.append(f"{prefix}: {joined}" if joined else prefix)
        return "\n".join(parts)
