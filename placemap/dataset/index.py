"""
Spatial-Temporal Index
======================

The finalized, chunked, per-pixel event history of a canvas.

LAYOUT:
=======
- The canvas is partitioned into 256x256 chunks, row-major, ``chunk_stride``
  chunks per row. Edge chunks have a smaller effective width/height but
  still address the full 65536 cells.
- Each chunk stores its events column-wise: ``cell_offsets[c]:cell_offsets[c+1]``
  is the event range of cell ``c = row * 256 + col`` in the parallel
  ``delta_millis`` / ``user_index`` / ``color_index`` arrays.
- Within a cell, events are sorted ascending by delta-time; equal delta-times
  keep their ingestion arrival order.

INVARIANT: a CanvasIndex is never mutated once built. Its arrays are
flagged read-only so every consumer can share them without locking.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, List, NamedTuple, Tuple

import numpy as np

from ..contracts.events import Color, PixelEvent


INDEX_VERSION = "placemap-index-v1"

CHUNK_SIZE = 256
CELLS_PER_CHUNK = CHUNK_SIZE * CHUNK_SIZE

_ONE_MILLI = timedelta(milliseconds=1)


def chunk_grid(width: int, height: int) -> Tuple[int, int]:
    """Number of chunk columns (the stride) and rows covering a canvas."""
    stride = (width + CHUNK_SIZE - 1) // CHUNK_SIZE
    rows = (height + CHUNK_SIZE - 1) // CHUNK_SIZE
    return stride, rows


def chunk_extent(index: int, stride: int, width: int, height: int) -> Tuple[int, int]:
    """Effective width and height of the chunk at ``index``."""
    cx, cy = index % stride, index // stride
    return (
        min(CHUNK_SIZE, width - cx * CHUNK_SIZE),
        min(CHUNK_SIZE, height - cy * CHUNK_SIZE),
    )


def _frozen(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


# =============================================================================
# CHUNK
# =============================================================================

@dataclass(frozen=True, eq=False)
class Chunk:
    """Fixed-capacity cell grid with column-wise event storage."""
    width: int
    height: int
    cell_offsets: np.ndarray  # int64, CELLS_PER_CHUNK + 1 entries
    delta_millis: np.ndarray  # int32
    user_index: np.ndarray    # int32
    color_index: np.ndarray   # uint8

    def __post_init__(self):
        if len(self.cell_offsets) != CELLS_PER_CHUNK + 1:
            raise ValueError(
                f"cell_offsets has {len(self.cell_offsets)} entries, "
                f"want {CELLS_PER_CHUNK + 1}"
            )
        n = int(self.cell_offsets[-1])
        for name in ("delta_millis", "user_index", "color_index"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"{name} has {len(getattr(self, name))} events, want {n}")
        for array in (self.cell_offsets, self.delta_millis, self.user_index, self.color_index):
            _frozen(array)

    @classmethod
    def empty(cls, width: int, height: int) -> Chunk:
        return cls(
            width=width,
            height=height,
            cell_offsets=np.zeros(CELLS_PER_CHUNK + 1, dtype=np.int64),
            delta_millis=np.zeros(0, dtype=np.int32),
            user_index=np.zeros(0, dtype=np.int32),
            color_index=np.zeros(0, dtype=np.uint8),
        )

    @property
    def event_count(self) -> int:
        return int(self.cell_offsets[-1])

    def cell_range(self, col: int, row: int) -> Tuple[int, int]:
        cell = row * CHUNK_SIZE + col
        return int(self.cell_offsets[cell]), int(self.cell_offsets[cell + 1])

    def events(self, col: int, row: int) -> List[PixelEvent]:
        """Ordered event history of one cell."""
        lo, hi = self.cell_range(col, row)
        return [
            PixelEvent(int(d), int(u), int(c))
            for d, u, c in zip(
                self.delta_millis[lo:hi],
                self.user_index[lo:hi],
                self.color_index[lo:hi],
            )
        ]

    def cell_ids(self) -> np.ndarray:
        """Cell number of every stored event, in storage order."""
        return np.repeat(
            np.arange(CELLS_PER_CHUNK, dtype=np.int64),
            np.diff(self.cell_offsets),
        )


# =============================================================================
# CANVAS INDEX
# =============================================================================

class CanvasEvents(NamedTuple):
    """Every event of the canvas flattened to absolute pixel positions."""
    position: np.ndarray      # y * width + x, int64
    delta_millis: np.ndarray  # int32
    color_index: np.ndarray   # uint8


@dataclass(frozen=True, eq=False)
class CanvasIndex:
    """
    Finalized index of a canvas history.

    Built once per process (ingested or loaded) and shared read-only.
    """
    version: str
    width: int
    height: int
    palette: Tuple[Color, ...]
    epoch: datetime
    start: datetime
    end: datetime
    chunk_stride: int
    chunks: Tuple[Chunk, ...]
    user_ids: Tuple[str, ...]

    # =========================================================================
    # COORDINATES & TIME
    # =========================================================================

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def chunk_at(self, x: int, y: int) -> Chunk:
        return self.chunks[(y // CHUNK_SIZE) * self.chunk_stride + x // CHUNK_SIZE]

    def events_at(self, x: int, y: int) -> List[PixelEvent]:
        """Ordered event history of pixel (x, y)."""
        if not self.in_bounds(x, y):
            raise IndexError(f"({x}, {y}) outside {self.width}x{self.height} canvas")
        return self.chunk_at(x, y).events(x % CHUNK_SIZE, y % CHUNK_SIZE)

    def time_after(self, delta_millis: int) -> datetime:
        return self.epoch + timedelta(milliseconds=int(delta_millis))

    def millis_since_epoch(self, ts: datetime) -> int:
        return (ts - self.epoch) // _ONE_MILLI

    @property
    def start_millis(self) -> int:
        return self.millis_since_epoch(self.start)

    @property
    def end_millis(self) -> int:
        return self.millis_since_epoch(self.end)

    @property
    def event_count(self) -> int:
        return sum(c.event_count for c in self.chunks)

    # =========================================================================
    # BULK ACCESS (for renderers)
    # =========================================================================

    def iter_chunks(self) -> Iterator[Tuple[int, int, Chunk]]:
        """Yield (origin_x, origin_y, chunk) for every chunk."""
        for i, chunk in enumerate(self.chunks):
            yield (
                (i % self.chunk_stride) * CHUNK_SIZE,
                (i // self.chunk_stride) * CHUNK_SIZE,
                chunk,
            )

    def canvas_events(self) -> CanvasEvents:
        """
        Flatten all chunks to absolute pixel positions.

        Events are grouped by cell; each cell's run keeps its sorted order.
        """
        positions, deltas, colors = [], [], []
        for origin_x, origin_y, chunk in self.iter_chunks():
            if chunk.event_count == 0:
                continue
            cells = chunk.cell_ids()
            xs = origin_x + cells % CHUNK_SIZE
            ys = origin_y + cells // CHUNK_SIZE
            positions.append(ys * self.width + xs)
            deltas.append(chunk.delta_millis)
            colors.append(chunk.color_index)
        if not positions:
            return CanvasEvents(
                position=np.zeros(0, dtype=np.int64),
                delta_millis=np.zeros(0, dtype=np.int32),
                color_index=np.zeros(0, dtype=np.uint8),
            )
        return CanvasEvents(
            position=np.concatenate(positions),
            delta_millis=np.concatenate(deltas),
            color_index=np.concatenate(colors),
        )
