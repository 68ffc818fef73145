from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..models.sequence import Catalog, SequenceModel

"""Sequence model builder.

Turns catalog paths into SequenceModel views (seq_key, title, tokens).
Pure; recomputed whenever the path list or the catalog changes.
"""

__all__ = [
    "SEQ_KEY_DELIMITER",
    "TITLE_SEPARATOR",
    "SequenceNotFoundError",
    "build_sequence_models",
    "resolve_sequence",
]

SEQ_KEY_DELIMITER = "|"
TITLE_SEPARATOR = " → "


class SequenceNotFoundError(Exception):
    pass


def build_sequence_models(
    paths: Iterable[Sequence[str]], catalog: Catalog
) -> list[SequenceModel]:
    """Build one SequenceModel per non-empty path, in path order."""
    models: list[SequenceModel] = []
    for path in paths or []:
        keys = [str(k) for k in path]
        if not keys:
            continue
        models.append(SequenceModel(
            seq_key=SEQ_KEY_DELIMITER.join(keys),
            title=TITLE_SEPARATOR.join(catalog.label_for(k) for k in keys),
            tokens=tuple(catalog.token_for(k) for k in keys),
        ))
    return models


def resolve_sequence(models: Sequence[SequenceModel], ref: str) -> SequenceModel:
    """Find a model by seq_key, or by 1-based position when ``ref`` is numeric."""
    for model in models:
        if model.seq_key == ref:
            return model
    if ref.isdigit():
        pos = int(ref)
        if 1 <= pos <= len(models):
            return models[pos - 1]
    raise SequenceNotFoundError(f"unknown sequence: {ref}")
