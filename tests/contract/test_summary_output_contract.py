from __future__ import annotations

import re

from entryface.models.save_result import SaveMode, SaveResult, SaveState
from entryface.services.summary import render_summary_line

"""SUMMARY 行フォーマット契約テスト

SUMMARY seq=<key> state=<state> mode=<mode> rows=<sent>/<total>
        chunks=<sent>/<total> elapsed_sec=<s> throughput_rps=<r>
"""

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY\s+seq=(\S+)\s+state=(idle|preparing|queuing_local|sending|done|cancelled|failed|"
    r"nothing_to_save|rejected)\s+mode=(none|local|network)\s+rows=([0-9]+)/([0-9]+)\s+"
    r"chunks=([0-9]+)/([0-9]+)\s+elapsed_sec=([0-9]+\.?[0-9]*)\s+"
    r"throughput_rps=([0-9]+\.?[0-9]*)$"
)


def test_summary_pattern_example_line():
    line = (
        "SUMMARY seq=w|e state=done mode=network rows=12001/12001 chunks=3/3 "
        "elapsed_sec=2.52 throughput_rps=4762.302"
    )
    m = SUMMARY_PATTERN.match(line)
    assert m, "SUMMARY line should match contract regex"


def test_rendered_lines_match_contract():
    for state, mode, sent, total, chunks, elapsed in [
        (SaveState.DONE, SaveMode.NETWORK, 12_001, 12_001, (3, 3), 2.5),
        (SaveState.DONE, SaveMode.LOCAL, 2, 2, (1, 1), 0.000123),
        (SaveState.FAILED, SaveMode.NETWORK, 5000, 12_001, (1, 3), 1.0),
        (SaveState.CANCELLED, SaveMode.NETWORK, 0, 10, (0, 1), 0.0),
        (SaveState.NOTHING_TO_SAVE, SaveMode.NONE, 0, 0, (0, 0), 0.01),
    ]:
        result = SaveResult(
            state=state, seq_key="w|s|e", mode=mode,
            total_rows=total, sent_rows=sent,
            total_chunks=chunks[1], sent_chunks=chunks[0],
            elapsed_seconds=elapsed, message="",
        )
        line = render_summary_line(result)
        m = SUMMARY_PATTERN.match(line)
        assert m, line
        assert m.group(1) == "w|s|e"
        assert (int(m.group(4)), int(m.group(5))) == (sent, total)
        assert "e-" not in line.split("elapsed_sec=")[1]  # no scientific notation
