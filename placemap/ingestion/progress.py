"""
Download Progress

Byte counter shared by every shard task of one ingestion run. All updates
happen on the event loop, so no locking is needed.
"""

from __future__ import annotations
from typing import Tuple
import math

_BAR = "#" * 50 + " " * 50


class ProgressTracker:
    """Bytes received versus bytes announced, across all shards."""

    def __init__(self):
        self._progress = 0
        self._total = 0

    def add_total(self, amount: int) -> None:
        self._total += amount

    def add_progress(self, amount: int) -> None:
        self._progress += amount

    def snapshot(self) -> Tuple[int, int]:
        return self._progress, self._total

    def __str__(self) -> str:
        progress, total = self.snapshot()
        if total <= 0:
            return "(unknown)"

        percent = progress * 100 // total
        offset = min(max(50 - percent // 2, 0), 50)

        div, unit = 1 << 20, "MiB"
        if total > 1 << 30:
            div, unit = 1 << 30, "GiB"
        done, whole = progress / div, total / div

        width = max(int(math.ceil(math.log10(whole))) if whole > 1 else 1, 1) + 3  # ".00"
        return f"{percent:3d}% [{_BAR[offset:offset + 50]}] {done:{width}.2f}/{whole:.2f} {unit}"
