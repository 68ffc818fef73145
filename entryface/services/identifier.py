from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models.config_models import DEFAULT_DECIMAL_KEYED_TOKENS
from ..models.entry import PLACEHOLDER, Block, effective_dec

"""Identifier composition.

make_id walks token positions 0..token_index:

    position 0      -> headword (override when given, else the token label)
    position i >= 1 -> "{token_i}-{suffix}"

where suffix is the row decimal for decimal-keyed tokens and the block number
for every other token. Segments are joined with "-". Identifiers are the
primary key on the remote store, so the function is pure.

    >>> make_id(["W", "E"], 1, 1, 2, "cat")
    'cat-E-2'
"""

__all__ = [
    "IdentifierError",
    "IdentifierRule",
    "DEFAULT_RULE",
    "is_filled_output",
    "export_value_for",
    "headword_override",
    "make_id",
]


class IdentifierError(Exception):
    pass


@dataclass(frozen=True)
class IdentifierRule:
    """Per-token suffix rule: decimal-keyed tokens use dec, others use block."""
    decimal_keyed_tokens: frozenset[str] = frozenset(DEFAULT_DECIMAL_KEYED_TOKENS)

    @classmethod
    def from_tokens(cls, tokens: Iterable[str]) -> IdentifierRule:
        return cls(decimal_keyed_tokens=frozenset(tokens))

    def suffix_for(self, label: str, block: int, dec: int) -> int:
        return dec if label in self.decimal_keyed_tokens else block


DEFAULT_RULE = IdentifierRule()


def is_filled_output(value: str | None) -> bool:
    """True when ``value`` is neither None, empty, nor the placeholder."""
    return value is not None and value != "" and value != PLACEHOLDER


def export_value_for(value: str | None) -> str:
    return "" if value is None else str(value)


def headword_override(block: Block) -> str | None:
    """Resolve the headword of a Block.

    The first filled row at token position 0, ordered by ascending decimal
    (ties keep storage order). None when no such row exists; callers then
    fall back to the literal token label.
    """
    head_rows = sorted(block.rows_for(0), key=lambda r: r.decimal)
    for row in head_rows:
        if is_filled_output(row.output):
            return str(row.output)
    return None


def make_id(
    tokens: Sequence[str],
    token_index: int,
    block: int,
    dec: int | None,
    headword: str | None,
    rule: IdentifierRule = DEFAULT_RULE,
) -> str:
    """Compose the hierarchical identifier for one row.

    Args:
        tokens: Token labels of the sequence
        token_index: Row position; must be < len(tokens)
        block: Block number of the row
        dec: Row decimal (None reads as 1)
        headword: Resolved headword override, or None for the token label
        rule: Suffix rule for decimal-keyed tokens

    Raises:
        IdentifierError: token_index is negative or outside ``tokens``
    """
    if token_index < 0 or token_index >= len(tokens):
        raise IdentifierError(
            f"token index {token_index} outside token list of length {len(tokens)}"
        )
    d = effective_dec(dec)
    parts: list[str] = []
    for i in range(token_index + 1):
        label = tokens[i]
        if i == 0:
            parts.append(headword if headword is not None else label)
        else:
            parts.append(f"{label}-{rule.suffix_for(label, block, d)}")
    return "-".join(parts)
