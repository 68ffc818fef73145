# Shared pytest fixtures
from __future__ import annotations
import json
import tempfile
from pathlib import Path

import pytest

from entryface.logging.init import reset_logging
from entryface.models.entry import PLACEHOLDER, Block, Row
from entryface.models.sequence import SequenceModel
from entryface.services.block_engine import BlockEngine
from entryface.store.keyed_store import MemoryStore, PageKeys

CATALOG_RECORDS = [
    {"key": "w", "token": "W", "label": "Word"},
    {"key": "e", "token": "E", "label": "Example"},
]
SEQUENCE_PATHS = [["w", "e"]]


@pytest.fixture(autouse=True)
def _fresh_logging():
    # setup_logging は stdout をハンドラ作成時に掴むので毎回作り直す
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """page: demo
api:
  base: LOCAL_ONLY
  language: en
upload:
  chunk_size: 5000
  lanes: 2
  timeout_seconds: 5
storage:
  path: ./data/store
  export_directory: ./exports
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "entryface.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def import_files(temp_workdir: Path) -> tuple[Path, Path]:
    catalog = temp_workdir / "data" / "catalog.json"
    sequences = temp_workdir / "data" / "sequences.json"
    catalog.write_text(json.dumps(CATALOG_RECORDS), encoding="utf-8")
    sequences.write_text(json.dumps(SEQUENCE_PATHS), encoding="utf-8")
    return catalog, sequences


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def keys() -> PageKeys:
    return PageKeys("demo")


@pytest.fixture()
def engine(memory_store: MemoryStore, keys: PageKeys) -> BlockEngine:
    return BlockEngine(memory_store, keys)


@pytest.fixture()
def we_model() -> SequenceModel:
    return SequenceModel(seq_key="w|e", title="Word → Example", tokens=("W", "E"))


def make_rows_block(n: int, headword: str = "cat", block: int = 1) -> Block:
    """Block with an excluded headword row and ``n`` filled E rows (dec 1..n).

    Exports exactly ``n`` pairs: cat-E-1 .. cat-E-n.
    """
    rows = [Row(token_index=0, token="W", block=block, output=headword, excluded=True)]
    rows.extend(
        Row(token_index=1, token="E", block=block, dec=d, output=f"v{d}")
        for d in range(1, n + 1)
    )
    return Block(block=block, rows=tuple(rows))


def placeholder_block(block: int = 1) -> Block:
    return Block(block=block, rows=(
        Row(token_index=0, token="W", block=block, output=PLACEHOLDER),
        Row(token_index=1, token="E", block=block, output=PLACEHOLDER),
    ))


@pytest.fixture()
def rows_block():
    return make_rows_block


@pytest.fixture()
def empty_block():
    return placeholder_block
