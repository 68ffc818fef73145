from __future__ import annotations

from ..models.save_result import SaveResult

"""SUMMARY line rendering for a save.

Format:
    SUMMARY seq={seq_key} state={state} mode={mode} rows={sent}/{total}
    chunks={sent}/{total} elapsed_sec={elapsed} throughput_rps={throughput}
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Render a metric without scientific notation or a trailing '.0'."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return f"{value:.3f}".rstrip('0').rstrip('.')


def render_summary_line(result: SaveResult) -> str:
    """Render a SUMMARY line from a SaveResult.

    Examples:
        >>> from entryface.models.save_result import SaveMode, SaveResult, SaveState
        >>> result = SaveResult(
        ...     state=SaveState.DONE, seq_key="w|e", mode=SaveMode.NETWORK,
        ...     total_rows=12001, sent_rows=12001, total_chunks=3, sent_chunks=3,
        ...     elapsed_seconds=2.0, message="Saved 12,001 row(s).",
        ... )
        >>> render_summary_line(result)
        'SUMMARY seq=w|e state=done mode=network rows=12001/12001 chunks=3/3 elapsed_sec=2 throughput_rps=6000.5'
    """
    return (
        f"SUMMARY seq={result.seq_key} "
        f"state={result.state.value} "
        f"mode={result.mode.value} "
        f"rows={result.sent_rows}/{result.total_rows} "
        f"chunks={result.sent_chunks}/{result.total_chunks} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_rps={format_number(result.throughput_rows_per_sec)}"
    )
