from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from entryface.api.client import UpsertClient
from entryface.config.loader import DEFAULT_CONFIG_PATH, ConfigError, apply_env_overrides, load_config
from entryface.logging.error_log import ErrorLogBuffer
from entryface.logging.init import log_summary, setup_logging
from entryface.models.config_models import AppConfig
from entryface.models.save_result import SaveResult
from entryface.models.sequence import Catalog, SequenceModel
from entryface.services.block_engine import COMPOSER_JOINER, BlockEngine, EngineError
from entryface.services.export_filter import block_totals, collect_pairs, group_by_token
from entryface.services.export_writer import export_filename, write_csv, write_excel, write_text
from entryface.services.identifier import IdentifierError, IdentifierRule, headword_override, make_id
from entryface.services.sequence_builder import SequenceNotFoundError, build_sequence_models, resolve_sequence
from entryface.services.summary import render_summary_line
from entryface.services.upload import CancelToken, UploadPipeline
from entryface.store.keyed_store import JsonFileStore, KeyedStore, PageKeys, StoreError
from entryface.store.upload_queue import LocalUploadQueue

"""CLI entrypoint.

Every command:
- loads ``.env`` (override) and the YAML config
- opens the page workspace (store, catalog, sequences) and seeds/repairs
  every sequence's Block list
- runs one composer / export / save operation

Exit codes: 0 success, 1 fatal (config / lookup errors), 2 save failed or
cancelled.
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_SAVE_INCOMPLETE = 2


class UsageError(Exception):
    pass


@dataclass
class Workspace:
    config: AppConfig
    store: KeyedStore
    keys: PageKeys
    engine: BlockEngine
    models: list[SequenceModel]
    rule: IdentifierRule

    def sequence(self, ref: str) -> SequenceModel:
        return resolve_sequence(self.models, ref)


def open_workspace(config: AppConfig, store: KeyedStore | None = None) -> Workspace:
    """Load catalog + sequences for the configured page and seed/repair blocks."""
    if store is None:
        store = JsonFileStore(config.storage.path)
    keys = PageKeys(config.page)
    catalog = Catalog.from_records(store.get(keys.catalog, []) or [])
    paths = store.get(keys.sequences, []) or []
    models = build_sequence_models(paths, catalog)
    engine = BlockEngine(store, keys)
    engine.sync(models)
    return Workspace(
        config=config,
        store=store,
        keys=keys,
        engine=engine,
        models=models,
        rule=IdentifierRule.from_tokens(config.identifier.decimal_keyed_tokens),
    )


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv; ENTRYFACE_* values then override the config."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="entryface", description="Entry composer and uploader")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--page", help="Page slug (overrides config)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Store catalog and sequence paths for the page")
    imp.add_argument("--catalog", type=Path, required=True, help="JSON/YAML list of catalog records")
    imp.add_argument("--sequences", type=Path, required=True, help="JSON/YAML list of key paths")

    ls = sub.add_parser("list", help="List sequences and their blocks")
    ls.add_argument("--rows", action="store_true", help="Show every row with its index and identifier")

    ab = sub.add_parser("add-block", help="Append a block")
    ab.add_argument("seq")

    db = sub.add_parser("duplicate-block", help="Copy a block")
    db.add_argument("seq")
    db.add_argument("block", type=int)

    rb = sub.add_parser("delete-block", help="Delete a block and renumber")
    rb.add_argument("seq")
    rb.add_argument("block", type=int)

    ad = sub.add_parser("add-dec", help="Add a decimal variant for a token in a block")
    ad.add_argument("seq")
    ad.add_argument("block", type=int)
    ad.add_argument("token_index", type=int)

    so = sub.add_parser("set-output", help="Set the output of one row")
    so.add_argument("seq")
    so.add_argument("block", type=int)
    so.add_argument("row_index", type=int)
    so.add_argument("value")

    ex = sub.add_parser("exclude", help="Exclude one row from every export")
    ex.add_argument("seq")
    ex.add_argument("block", type=int)
    ex.add_argument("row_index", type=int)
    ex.add_argument("--include", action="store_true", help="Clear the exclusion instead")

    fl = sub.add_parser("fill", help="Fill a token column across all blocks")
    fl.add_argument("seq")
    fl.add_argument("token_index", type=int)
    fl.add_argument("value")

    cl = sub.add_parser("clear", help="Clear a token column across all blocks")
    cl.add_argument("seq")
    cl.add_argument("token_index", type=int)

    pv = sub.add_parser("preview", help="Print the pairs that would be exported")
    pv.add_argument("seq")

    xp = sub.add_parser("export", help="Write CSV or spreadsheet export")
    xp.add_argument("seq")
    xp.add_argument("--format", choices=("csv", "xls"), default="csv")

    cp = sub.add_parser("compose", help="Print the composer text of every sequence")
    cp.add_argument("--joiner", default=COMPOSER_JOINER)
    cp.add_argument(
        "--out", nargs="?", const="",
        help="Also write the text to a file (default path: <export_directory>/<page>-entry.md)",
    )

    sv = sub.add_parser("save", help="Upload (or queue locally) the pairs of a sequence")
    sv.add_argument("seq")

    qu = sub.add_parser("queue", help="Inspect or clear the local upload queue")
    qu.add_argument("action", choices=("show", "clear"))
    return p.parse_args(argv)


def _read_structured(path: Path) -> Any:
    if not path.exists():
        raise UsageError(f"file not found: {path}")
    try:
        # YAML は JSON の上位互換なので両方読める
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise UsageError(f"cannot parse {path}: {e}") from e


def _cmd_import(ws: Workspace, args: argparse.Namespace, logger) -> int:
    records = _read_structured(args.catalog)
    paths = _read_structured(args.sequences)
    if not isinstance(records, list):
        raise UsageError("catalog file must contain a list of records")
    if not isinstance(paths, list) or not all(isinstance(p, list) for p in paths):
        raise UsageError("sequences file must contain a list of key lists")
    catalog = Catalog.from_records(records)
    ws.store.set(ws.keys.catalog, catalog.to_records())
    ws.store.set(ws.keys.sequences, [[str(k) for k in p] for p in paths])
    models = build_sequence_models(paths, catalog)
    ws.engine.sync(models)
    logger.info(f"imported {len(catalog)} catalog entries and {len(models)} sequence(s)")
    return EXIT_SUCCESS


def _print_rows(ws: Workspace, model: SequenceModel) -> None:
    for b in ws.engine.load(model.seq_key):
        headword = headword_override(b)
        for _token_index, rows in group_by_token(b):
            for idx, r in rows:
                label = headword if r.token_index == 0 and headword else r.token
                ident = make_id(model.tokens, r.token_index, r.block, r.dec, headword, ws.rule) \
                    if r.token_index < len(model.tokens) else "?"
                flag = " (excluded)" if r.excluded else ""
                print(f"      [{idx}] {r.block}.{r.decimal} {label:<12} {ident:<32} {r.output}{flag}")


def _cmd_list(ws: Workspace, args: argparse.Namespace, logger) -> int:
    if not ws.models:
        print("no sequences (use 'import')")
        return EXIT_SUCCESS
    for pos, model in enumerate(ws.models, start=1):
        blocks = ws.engine.load(model.seq_key)
        print(f"[{pos}] {model.title}  seq={model.seq_key} blocks={len(blocks)}")
        for b in blocks:
            t = block_totals(b)
            print(
                f"    Block {b.block}: rows={t.rows} filled={t.filled} "
                f"excluded={t.excluded} will_export={t.exportable}"
            )
        if args.rows:
            _print_rows(ws, model)
    return EXIT_SUCCESS


def _pairs(ws: Workspace, model: SequenceModel) -> list[tuple[str, str]]:
    return collect_pairs(ws.engine.load(model.seq_key), model.tokens, ws.rule)


def _cmd_preview(ws: Workspace, args: argparse.Namespace, logger) -> int:
    model = ws.sequence(args.seq)
    pairs = _pairs(ws, model)
    for identifier, value in pairs:
        print(f"{identifier}\t{value}")
    logger.info(f"{len(pairs)} pair(s) will export for {model.seq_key}")
    return EXIT_SUCCESS


def _cmd_export(ws: Workspace, args: argparse.Namespace, logger) -> int:
    model = ws.sequence(args.seq)
    pairs = _pairs(ws, model)
    out_dir = ws.config.storage.export_directory
    if args.format == "csv":
        path = write_csv(out_dir / export_filename(ws.config.page, "csv"), pairs)
    else:
        path = write_excel(out_dir / export_filename(ws.config.page, "xls"), pairs)
    logger.info(f"exported {len(pairs)} pair(s) to {path}")
    return EXIT_SUCCESS


def _cmd_compose(ws: Workspace, args: argparse.Namespace, logger) -> int:
    text = ws.engine.composer_text(ws.models, joiner=args.joiner)
    print(text or "(nothing to preview yet)")
    if args.out is not None:
        out = Path(args.out) if args.out else ws.config.storage.export_directory / export_filename(ws.config.page, "md")
        write_text(out, text)
        logger.info(f"composer text written to {out}")
    return EXIT_SUCCESS


def _cmd_mutation(ws: Workspace, args: argparse.Namespace, logger) -> int:
    model = ws.sequence(args.seq)
    engine = ws.engine
    if args.command == "add-block":
        b = engine.add_block(model)
        print(f"block {b.block}")
    elif args.command == "duplicate-block":
        b = engine.duplicate_block(model.seq_key, args.block)
        print(f"block {b.block}")
    elif args.command == "delete-block":
        engine.delete_block(model.seq_key, args.block)
    elif args.command == "add-dec":
        r = engine.add_decimal(model.seq_key, args.block, args.token_index)
        print(f"row {r.block}.{r.decimal}")
    elif args.command == "set-output":
        engine.set_output(model.seq_key, args.block, args.row_index, args.value)
    elif args.command == "exclude":
        engine.set_excluded(model.seq_key, args.block, args.row_index, not args.include)
    elif args.command == "fill":
        engine.fill_column(model.seq_key, args.token_index, args.value)
    elif args.command == "clear":
        engine.clear_column(model.seq_key, args.token_index)
    else:  # pragma: no cover - argparse restricts choices
        raise UsageError(f"unknown command: {args.command}")
    return EXIT_SUCCESS


async def _run_save(ws: Workspace, model: SequenceModel, logger) -> SaveResult:
    cfg = ws.config
    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):  # pragma: no cover - non-unix loops
        handler_installed = False

    def on_progress(percent: int, sent: int, total: int) -> None:
        logger.debug(f"progress {percent}% ({sent}/{total})")

    try:
        async with UpsertClient(cfg.api, timeout=cfg.upload.timeout_seconds) as client:
            pipeline = UploadPipeline(
                cfg.api,
                LocalUploadQueue(ws.store),
                page=cfg.page,
                client=client,
                chunk_size=cfg.upload.chunk_size,
                lanes=cfg.upload.lanes,
                rule=ws.rule,
                export_directory=cfg.storage.export_directory,
                error_log=ErrorLogBuffer(),
                on_progress=on_progress,
            )
            return await pipeline.save(model, ws.engine.load(model.seq_key), cancel)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _cmd_save(ws: Workspace, args: argparse.Namespace, logger) -> int:
    model = ws.sequence(args.seq)
    result = asyncio.run(_run_save(ws, model, logger))
    # log_summary が "SUMMARY " を付けるので接頭辞を落とす
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return EXIT_SUCCESS if result.ok else EXIT_SAVE_INCOMPLETE


def _cmd_queue(ws: Workspace, args: argparse.Namespace, logger) -> int:
    queue = LocalUploadQueue(ws.store)
    if args.action == "clear":
        queue.clear()
        logger.info("local upload queue cleared")
        return EXIT_SUCCESS
    batches = queue.read()
    for b in batches:
        rows = b.get("rows") or []
        print(f"{b.get('when')} seq={b.get('seqKey')} reason={b.get('reason')} rows={len(rows)}")
    logger.info(f"{len(batches)} batch(es), {queue.pending_rows()} row(s) queued")
    return EXIT_SUCCESS


_HANDLERS = {
    "import": _cmd_import,
    "list": _cmd_list,
    "preview": _cmd_preview,
    "export": _cmd_export,
    "compose": _cmd_compose,
    "save": _cmd_save,
    "queue": _cmd_queue,
}


def main(argv: list[str] | None = None) -> int:
    # None のときのみ sys.argv を読む (テストから [] を渡せるように)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = apply_env_overrides(load_config(args.config))
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    if args.page:
        cfg = replace(cfg, page=args.page)

    handler = _HANDLERS.get(args.command, _cmd_mutation)
    try:
        ws = open_workspace(cfg)
        return handler(ws, args, logger)
    except (UsageError, SequenceNotFoundError, EngineError, IdentifierError) as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL
    except StoreError as e:
        logger.error(f"store: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
