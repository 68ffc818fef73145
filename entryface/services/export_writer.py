from __future__ import annotations

import csv
from collections.abc import Sequence
from pathlib import Path

import pandas as pd

"""Export writers for identifier/value pairs.

- CSV: header ``identifiercode,output value`` (unquoted), every data field
  quoted with internal quotes doubled, ``\\n`` between lines
- Spreadsheet: minimal HTML document with one table; spreadsheet
  applications open it when saved with an ``.xls`` extension
- Composer text: plain text / markdown dump of the global composer

Rows are written in the order given (collect_pairs order).
"""

__all__ = [
    "EXPORT_HEADER",
    "pairs_to_frame",
    "render_csv",
    "render_excel_html",
    "write_csv",
    "write_excel",
    "write_text",
    "export_filename",
]

EXPORT_HEADER = ("identifiercode", "output value")

_EXCEL_HTML_TEMPLATE = (
    '<html xmlns:o="urn:schemas-microsoft-com:office:office" '
    'xmlns:x="urn:schemas-microsoft-com:office:excel" '
    'xmlns="http://www.w3.org/TR/REC-html40">'
    '<head><meta charset="utf-8"></head>'
    "<body>{table}</body></html>"
)


def pairs_to_frame(pairs: Sequence[tuple[str, str]]) -> pd.DataFrame:
    return pd.DataFrame(
        [[str(identifier), str(value)] for identifier, value in pairs],
        columns=list(EXPORT_HEADER),
        dtype=object,
    )


def render_csv(pairs: Sequence[tuple[str, str]]) -> str:
    header = ",".join(EXPORT_HEADER)
    if not pairs:
        return header
    body = pairs_to_frame(pairs).to_csv(
        header=False,
        index=False,
        quoting=csv.QUOTE_ALL,
        lineterminator="\n",
    )
    if body.endswith("\n"):
        body = body[:-1]
    return f"{header}\n{body}"


def render_excel_html(pairs: Sequence[tuple[str, str]]) -> str:
    table = pairs_to_frame(pairs).to_html(index=False, escape=True, border=1, na_rep="")
    return _EXCEL_HTML_TEMPLATE.format(table=table)


def export_filename(page: str, kind: str) -> str:
    """File names used for exports of a page.

    kind: "csv" | "xls" | "saved" | "md"
    """
    names = {
        "csv": f"{page}-entry.csv",
        "xls": f"{page}-entry.xls",
        "saved": f"{page}-entry-saved.xls",
        "md": f"{page}-entry.md",
    }
    try:
        return names[kind]
    except KeyError:
        raise ValueError(f"unknown export kind: {kind}") from None


def write_text(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    # newline="" でプラットフォーム改行変換を抑止
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write(text)
    return path


def write_csv(path: Path, pairs: Sequence[tuple[str, str]]) -> Path:
    return write_text(path, render_csv(pairs))


def write_excel(path: Path, pairs: Sequence[tuple[str, str]]) -> Path:
    return write_text(path, render_excel_html(pairs))
