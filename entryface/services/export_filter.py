from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..models.entry import Block, Row
from .identifier import DEFAULT_RULE, IdentifierRule, export_value_for, headword_override, is_filled_output, make_id

"""Export filter (collect_pairs).

Selects exportable rows and materializes (identifier, value) pairs.

Order contract (CSV / spreadsheet / upload consumers diff on it):
    Blocks in storage order -> token_index ascending -> dec ascending
Within equal decimals storage order is kept (stable sort).
"""

__all__ = [
    "BlockTotals",
    "block_totals",
    "collect_pairs",
    "group_by_token",
]


@dataclass(frozen=True)
class BlockTotals:
    rows: int
    filled: int
    excluded: int
    exportable: int


def group_by_token(block: Block) -> list[tuple[int, list[tuple[int, Row]]]]:
    """Group a Block's rows by token index.

    Returns:
        [(token_index, [(storage_index, row), ...]), ...] with token indices
        ascending and each group sorted by decimal (``dec`` None reads as 1).
        The storage index addresses the row for set_output / set_excluded.
    """
    groups: dict[int, list[tuple[int, Row]]] = {}
    for idx, row in enumerate(block.rows):
        groups.setdefault(row.token_index, []).append((idx, row))
    return [
        (token_index, sorted(groups[token_index], key=lambda item: item[1].decimal))
        for token_index in sorted(groups)
    ]


def _labels_for(block: Block, tokens: Sequence[str]) -> list[str]:
    # token list が縮んだ場合は行に保存された token ラベルで補う
    labels = list(tokens)
    highest = max((r.token_index for r in block.rows), default=-1)
    if highest < len(labels):
        return labels
    stored: dict[int, str] = {}
    for r in block.rows:
        stored.setdefault(r.token_index, r.token)
    labels.extend(stored.get(i, "") for i in range(len(labels), highest + 1))
    return labels


def collect_pairs(
    blocks: Sequence[Block],
    tokens: Sequence[str],
    rule: IdentifierRule = DEFAULT_RULE,
) -> list[tuple[str, str]]:
    """Materialize exportable (identifier, value) pairs for one sequence.

    A row is exported when it is not excluded and its output is filled.
    The headword is resolved once per Block, even when the headword row
    itself is excluded.
    """
    out: list[tuple[str, str]] = []
    for block in blocks or []:
        headword = headword_override(block)
        labels = _labels_for(block, tokens)
        for _token_index, rows in group_by_token(block):
            for _idx, row in rows:
                if row.excluded:
                    continue
                if not is_filled_output(row.output):
                    continue
                out.append((
                    make_id(labels, row.token_index, row.block, row.dec, headword, rule),
                    export_value_for(row.output),
                ))
    return out


def block_totals(block: Block) -> BlockTotals:
    """Row counters shown next to each Block."""
    rows = filled = excluded = exportable = 0
    for r in block.rows:
        rows += 1
        f = is_filled_output(r.output)
        if f:
            filled += 1
        if r.excluded:
            excluded += 1
            continue
        if f:
            exportable += 1
    return BlockTotals(rows=rows, filled=filled, excluded=excluded, exportable=exportable)
