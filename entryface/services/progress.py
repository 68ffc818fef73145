from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Upload progress display with tqdm (TTY only).

- Single tqdm instance per save, disabled in non-TTY environments (CI) to
  avoid ANSI control sequence spam
- The bar counts rows confirmed sent; percentage callbacks are emitted by
  the upload pipeline itself
"""

__all__ = [
    "UploadProgressTracker",
    "is_tty_enabled",
    "percent_of",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


def percent_of(sent: int, total: int) -> int:
    """Whole percentage of ``sent`` over ``total``, rounded down.

    Rounding down keeps 100 for the moment every row is confirmed.
    """
    if total <= 0:
        return 100
    return min(100, (sent * 100) // total)


class UploadProgressTracker:
    """Progress tracker using tqdm for chunked uploads."""

    def __init__(self, total_rows: int, *, description: str = "Uploading rows") -> None:
        """Initialize progress tracker.

        Args:
            total_rows: Total number of rows to send
            description: Description for the progress bar
        """
        self.total_rows = total_rows
        self.description = description
        self.sent_rows = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, rows: int) -> None:
        """Record ``rows`` more rows as confirmed sent."""
        self.sent_rows += rows
        if self.enabled and self.pbar is not None:
            self.pbar.update(rows)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> UploadProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
