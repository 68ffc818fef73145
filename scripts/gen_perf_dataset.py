#!/usr/bin/env python3
"""Dataset generation script for upload performance testing.

Generates a synthetic page into a JsonFileStore:
- a catalog with one headword key plus ``--depth - 1`` token keys
- one sequence path over those keys
- ``--blocks`` Blocks whose rows are all filled, so every row exports

Rows exported = blocks * depth * decimals (token 0 keeps a single decimal,
so the exact count is blocks * (1 + (depth - 1) * decimals)).
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

import numpy as np

from entryface.models.entry import Block, Row, blocks_to_json
from entryface.services.sequence_builder import SEQ_KEY_DELIMITER
from entryface.store.keyed_store import JsonFileStore, KeyedStore, PageKeys

TOKEN_LABELS = ["W", "E", "S", "N", "P", "R", "X", "G"]


def exported_row_count(blocks: int, depth: int, decimals: int) -> int:
    return blocks * (1 + (depth - 1) * decimals)


def generate_page(
    store: KeyedStore,
    page: str,
    *,
    blocks: int,
    depth: int = 2,
    decimals: int = 1,
    seed: int = 42,
) -> dict[str, Any]:
    """Write catalog, sequences and Block list for one synthetic page.

    Args:
        store: Target store
        page: Page slug used for the storage keys
        blocks: Number of Blocks in the sequence
        depth: Tokens per sequence (2..len(TOKEN_LABELS))
        decimals: Decimal variants per non-head token
        seed: Random seed for reproducible outputs

    Returns:
        Summary dict (seq_key, rows)
    """
    if not 2 <= depth <= len(TOKEN_LABELS):
        raise ValueError(f"depth must be between 2 and {len(TOKEN_LABELS)}")
    rng = np.random.default_rng(seed)
    keys = PageKeys(page)

    catalog = [{"key": f"k{i}", "token": TOKEN_LABELS[i], "label": f"Level {i}"} for i in range(depth)]
    path = [c["key"] for c in catalog]
    seq_key = SEQ_KEY_DELIMITER.join(path)
    tokens = [c["token"] for c in catalog]

    # headwords は衝突しにくいよう乱数 + 連番
    heads = rng.integers(10_000, 99_999, size=blocks)
    out: list[Block] = []
    for b in range(1, blocks + 1):
        rows: list[Row] = [Row(token_index=0, token=tokens[0], block=b, output=f"w{heads[b - 1]}x{b}")]
        for ti in range(1, depth):
            for d in range(1, decimals + 1):
                rows.append(Row(
                    token_index=ti,
                    token=tokens[ti],
                    block=b,
                    dec=d,
                    output=f"{tokens[ti].lower()}{b}.{d}",
                ))
        out.append(Block(block=b, rows=tuple(rows)))

    store.set(keys.catalog, catalog)
    store.set(keys.sequences, [path])
    store.set(keys.entry(seq_key), blocks_to_json(out))
    return {"seq_key": seq_key, "rows": exported_row_count(blocks, depth, decimals)}


def main() -> int:
    """Main CLI interface for dataset generation."""
    parser = argparse.ArgumentParser(
        description="Generate a synthetic entry page for upload performance testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 6,001 exported rows (3 chunks at the default chunk size)
  %(prog)s ./data/store --page perf --blocks 3001

  # deeper sequences with decimal variants
  %(prog)s ./data/store --page perf --blocks 1000 --depth 4 --decimals 3
        """
    )
    parser.add_argument("store", type=Path, help="JsonFileStore directory")
    parser.add_argument("--page", default="perf", help="Page slug (default: perf)")
    parser.add_argument("--blocks", type=int, default=5_000, help="Number of Blocks (default: 5,000)")
    parser.add_argument("--depth", type=int, default=2, help="Tokens per sequence (default: 2)")
    parser.add_argument("--decimals", type=int, default=1, help="Decimals per token (default: 1)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--dry-run", action="store_true", help="Show the plan without writing")
    args = parser.parse_args()

    if args.blocks <= 0:
        print("Error: --blocks must be positive", file=sys.stderr)
        return 1
    if args.decimals <= 0:
        print("Error: --decimals must be positive", file=sys.stderr)
        return 1

    print("Dataset generation plan:")
    print(f"  Store: {args.store}")
    print(f"  Page: {args.page}")
    print(f"  Blocks: {args.blocks:,}")
    print(f"  Exported rows: {exported_row_count(args.blocks, args.depth, args.decimals):,}")
    if args.dry_run:
        print("\n[DRY RUN] Would generate the page but not write it.")
        return 0

    try:
        info = generate_page(
            JsonFileStore(args.store),
            args.page,
            blocks=args.blocks,
            depth=args.depth,
            decimals=args.decimals,
            seed=args.seed,
        )
    except (ValueError, OSError) as e:
        print(f"\nError generating dataset: {e}", file=sys.stderr)
        return 1
    print(f"\nGenerated seq={info['seq_key']} rows={info['rows']:,}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
