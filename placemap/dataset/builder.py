"""
Index Builder
=============

Mutable construction state for a CanvasIndex.

OWNERSHIP:
==========
An IndexBuilder is owned exclusively by the ingestion coordinator and
mutated from one logical thread of control, so it carries no locks.
The palette and user dictionaries live here and nowhere else; ``finalize``
freezes them into tuples exactly once.
"""

from __future__ import annotations
from array import array
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging
import time

import numpy as np

from ..contracts.base import Error, ErrorCode, IngestionError, PaletteOverflowError
from ..contracts.events import Color, RawEvent
from .index import (
    CELLS_PER_CHUNK,
    CHUNK_SIZE,
    INDEX_VERSION,
    CanvasIndex,
    Chunk,
    chunk_extent,
    chunk_grid,
)

logger = logging.getLogger(__name__)

MAX_PALETTE = 256  # color index is one byte

_INT32_MIN, _INT32_MAX = -(2 ** 31), 2 ** 31 - 1
_ONE_MILLI = timedelta(milliseconds=1)


class IndexBuilder:
    """
    Accumulates raw events into per-chunk columns.

    Events are appended in arrival order; sorting happens once in
    ``finalize``.
    """

    def __init__(self, width: int, height: int, epoch: datetime):
        if width <= 0 or height <= 0:
            raise ValueError(f"canvas size {width}x{height} must be positive")
        self._width = width
        self._height = height
        self._epoch = epoch
        self._stride, rows = chunk_grid(width, height)
        n = self._stride * rows

        self._colors: Dict[Color, int] = {}
        self._users: Dict[str, int] = {}

        # Column buffers per chunk, in arrival order
        self._cells: List[array] = [array('H') for _ in range(n)]
        self._deltas: List[array] = [array('i') for _ in range(n)]
        self._user_idx: List[array] = [array('i') for _ in range(n)]
        self._color_idx: List[array] = [array('B') for _ in range(n)]

        self._first: Optional[int] = None
        self._last: Optional[int] = None
        self._finalized = False
        self.event_count = 0

    @property
    def palette_size(self) -> int:
        return len(self._colors)

    @property
    def user_count(self) -> int:
        return len(self._users)

    def add(self, event: RawEvent) -> None:
        """Record one event. Raises IngestionError on unrepresentable input."""
        if self._finalized:
            raise RuntimeError("IndexBuilder already finalized")

        x, y = event.x, event.y
        if not (0 <= x < self._width and 0 <= y < self._height):
            raise IngestionError(Error.now(
                ErrorCode.COORDINATE_OUT_OF_BOUNDS,
                f"coordinate ({x}, {y}) outside {self._width}x{self._height} canvas",
            ))

        delta = (event.timestamp - self._epoch) // _ONE_MILLI
        if not (_INT32_MIN <= delta <= _INT32_MAX):
            raise IngestionError(Error.now(
                ErrorCode.TIMESTAMP_OUT_OF_RANGE,
                f"timestamp {event.timestamp.isoformat()} is {delta}ms from epoch, "
                f"outside 32-bit range",
            ))

        color = self._colors.get(event.color)
        if color is None:
            if len(self._colors) >= MAX_PALETTE:
                raise PaletteOverflowError(Error.now(
                    ErrorCode.PALETTE_OVERFLOW,
                    f"color {event.color.hex} would be palette entry "
                    f"{len(self._colors) + 1}, max {MAX_PALETTE}",
                ))
            color = self._colors[event.color] = len(self._colors)

        user = self._users.get(event.user_id)
        if user is None:
            user = self._users[event.user_id] = len(self._users)

        chunk = (y // CHUNK_SIZE) * self._stride + x // CHUNK_SIZE
        self._cells[chunk].append((y % CHUNK_SIZE) * CHUNK_SIZE + x % CHUNK_SIZE)
        self._deltas[chunk].append(delta)
        self._user_idx[chunk].append(user)
        self._color_idx[chunk].append(color)

        if self._first is None or delta < self._first:
            self._first = delta
        if self._last is None or delta > self._last:
            self._last = delta
        self.event_count += 1

    def finalize(self) -> CanvasIndex:
        """
        Freeze dictionaries, sort every cell and produce the index.

        Runs exactly once. Equal delta-times within a cell keep their
        arrival order (the sort is stable).
        """
        if self._finalized:
            raise RuntimeError("IndexBuilder.finalize called twice")
        self._finalized = True
        started = time.monotonic()

        if len(self._colors) > MAX_PALETTE:
            raise PaletteOverflowError(Error.now(
                ErrorCode.PALETTE_OVERFLOW,
                f"color palette ({len(self._colors)}) exceeds one byte ({MAX_PALETTE})",
            ))

        palette = tuple(self._colors)  # dicts keep first-seen order
        user_ids = tuple(self._users)

        chunks = []
        for i in range(len(self._cells)):
            width, height = chunk_extent(i, self._stride, self._width, self._height)
            chunks.append(self._freeze_chunk(i, width, height))

        first = self._first if self._first is not None else 0
        last = self._last if self._last is not None else 0
        index = CanvasIndex(
            version=INDEX_VERSION,
            width=self._width,
            height=self._height,
            palette=palette,
            epoch=self._epoch,
            start=self._epoch + timedelta(milliseconds=first),
            end=self._epoch + timedelta(milliseconds=last),
            chunk_stride=self._stride,
            chunks=tuple(chunks),
            user_ids=user_ids,
        )

        # Drop construction buffers
        self._cells = self._deltas = self._user_idx = self._color_idx = []
        self._colors, self._users = {}, {}

        logger.info("Index finalized in %.3fs", time.monotonic() - started)
        logger.info("  %d pixels placed", self.event_count)
        logger.info("  %d users recorded", len(user_ids))
        logger.info("  %d palette colors", len(palette))
        logger.info("  Epoch:       %s", index.epoch.isoformat())
        logger.info("  First Pixel: %s", index.start.isoformat())
        logger.info("  Final Pixel: %s", index.end.isoformat())
        return index

    def _freeze_chunk(self, i: int, width: int, height: int) -> Chunk:
        if not self._cells[i]:
            return Chunk.empty(width, height)

        cells = np.frombuffer(self._cells[i], dtype=np.uint16).astype(np.int64)
        deltas = np.frombuffer(self._deltas[i], dtype=np.intc).astype(np.int32)
        users = np.frombuffer(self._user_idx[i], dtype=np.intc).astype(np.int32)
        colors = np.frombuffer(self._color_idx[i], dtype=np.uint8)

        # Primary key cell, secondary key delta; lexsort is stable
        order = np.lexsort((deltas, cells))

        offsets = np.zeros(CELLS_PER_CHUNK + 1, dtype=np.int64)
        np.cumsum(np.bincount(cells, minlength=CELLS_PER_CHUNK), out=offsets[1:])

        return Chunk(
            width=width,
            height=height,
            cell_offsets=offsets,
            delta_millis=deltas[order],
            user_index=users[order],
            color_index=colors[order],
        )
