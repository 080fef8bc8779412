"""
Tile Renderer
=============

Samples a finalized CanvasIndex into zoomable raster tiles.

SAMPLING:
=========
- Tile pixel (x, y) has absolute coordinate (tile_x * w + x, tile_y * h + y)
- Canvas coordinate per axis is ``floor(abs * GLOBAL_SCALE / 2**z)``
  (nearest-neighbor decimation, one canvas pixel spans 2**z / 4 tile pixels)
- Canvas coordinates outside the canvas render fully transparent
- Cells with no event at or before the whitening cutoff render the opaque
  background color

WHITENING:
==========
Late in a canvas's life the whole surface gets painted over with a neutral
color. The cutoff is the delta-time of the last event whose color is NOT
neutral; every cell renders its latest event at or before that moment.
"""

from __future__ import annotations
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, Tuple
import logging
import time

import numpy as np
from PIL import Image

from ..contracts.events import TRANSPARENT, WHITE, Color
from ..dataset.index import CanvasIndex
from .raster import Bounds

logger = logging.getLogger(__name__)

GLOBAL_SCALE = 4

MAX_ZOOM = 24
MAX_TILE_DIMENSION = 4096
MAX_TILE_ORIGIN = 1 << 40

BACKGROUND = WHITE

EMPTY = -1  # no event before the cutoff


def whitening_cutoff(index: CanvasIndex, neutral: Iterable[Color] = (WHITE,)) -> int:
    """Delta-time of the latest event whose color is not neutral."""
    neutral = set(neutral)
    neutral_slots = [i for i, c in enumerate(index.palette) if c in neutral]
    latest = None
    for chunk in index.chunks:
        if chunk.event_count == 0:
            continue
        deltas = chunk.delta_millis[~np.isin(chunk.color_index, neutral_slots)]
        if len(deltas):
            chunk_latest = int(deltas.max())
            if latest is None or chunk_latest > latest:
                latest = chunk_latest
    if latest is None:
        return index.end_millis
    return latest


def last_per_position(positions: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Unique positions and the index of the LAST occurrence of each."""
    reversed_positions = positions[::-1]
    unique, first_in_reversed = np.unique(reversed_positions, return_index=True)
    return unique, len(positions) - 1 - first_in_reversed


# =============================================================================
# SNAPSHOT (computed once per index)
# =============================================================================

@dataclass(frozen=True, eq=False)
class TileSnapshot:
    """
    Latest pre-cutoff palette slot of every canvas cell.

    ``pixels`` is a read-only (height, width) int16 array; EMPTY marks a
    cell without any event at or before the cutoff.
    """
    width: int
    height: int
    palette: Tuple[Color, ...]
    cutoff_millis: int
    pixels: np.ndarray

    def __post_init__(self):
        self.pixels.flags.writeable = False
        # Slot EMPTY (-1) indexes the trailing background row
        lut = np.array([tuple(c) for c in self.palette] + [tuple(BACKGROUND)], dtype=np.uint8)
        lut.flags.writeable = False
        object.__setattr__(self, '_lut', lut)

    @property
    def lut(self) -> np.ndarray:
        """RGBA row per palette slot, background last."""
        return self._lut

    def color_of(self, x: int, y: int) -> Color:
        slot = int(self.pixels[y, x])
        if slot == EMPTY:
            return BACKGROUND
        return self.palette[slot]


def compute_tile_snapshot(
    index: CanvasIndex,
    neutral: Iterable[Color] = (WHITE,)
) -> TileSnapshot:
    """Resolve every cell to its latest event at or before the whitening cutoff."""
    started = time.monotonic()
    cutoff = whitening_cutoff(index, neutral)

    pixels = np.full((index.height, index.width), EMPTY, dtype=np.int16)
    flat = pixels.reshape(-1)

    events = index.canvas_events()
    keep = events.delta_millis <= cutoff
    positions = events.position[keep]
    colors = events.color_index[keep]
    # Each cell's run is sorted, so its last kept event is the latest
    unique, last = last_per_position(positions)
    flat[unique] = colors[last]

    logger.info(
        "Tile data ready in %.3fs (cutoff %s, %d cells painted)",
        time.monotonic() - started, index.time_after(cutoff).isoformat(), len(unique),
    )
    return TileSnapshot(
        width=index.width,
        height=index.height,
        palette=index.palette,
        cutoff_millis=cutoff,
        pixels=pixels,
    )


# =============================================================================
# TILE WINDOW
# =============================================================================

def validate_tile_params(
    zoom: int,
    tile_width: int,
    tile_height: int,
    tile_x: int = 0,
    tile_y: int = 0
) -> None:
    """Raise ValueError for a zoom, tile size or tile position the renderer will not serve."""
    if not 0 <= zoom <= MAX_ZOOM:
        raise ValueError(f"zoom {zoom} outside [0, {MAX_ZOOM}]")
    for name, value in (("width", tile_width), ("height", tile_height)):
        if not 0 < value <= MAX_TILE_DIMENSION:
            raise ValueError(f"tile {name} {value} outside [1, {MAX_TILE_DIMENSION}]")
    # Keeps every sampled coordinate inside int64
    for axis, tile, size in (("x", tile_x, tile_width), ("y", tile_y, tile_height)):
        if abs(tile * size) > MAX_TILE_ORIGIN:
            raise ValueError(f"tile {axis} {tile} puts the tile origin beyond +/-{MAX_TILE_ORIGIN}")


@dataclass(frozen=True)
class TileWindow:
    """One requested tile, viewed through a TileSnapshot."""
    snapshot: TileSnapshot
    tile_x: int
    tile_y: int
    tile_width: int
    tile_height: int
    zoom: int

    def __post_init__(self):
        validate_tile_params(self.zoom, self.tile_width, self.tile_height, self.tile_x, self.tile_y)

    @property
    def pixel_scale(self) -> int:
        return 1 << self.zoom

    @property
    def bounds(self) -> Bounds:
        x0 = self.tile_x * self.tile_width
        y0 = self.tile_y * self.tile_height
        return x0, y0, x0 + self.tile_width, y0 + self.tile_height

    def canvas_coordinate(self, x: int, y: int) -> Tuple[int, int]:
        return x * GLOBAL_SCALE // self.pixel_scale, y * GLOBAL_SCALE // self.pixel_scale

    def color_at(self, x: int, y: int) -> Color:
        """Color at absolute tile-space coordinate (x, y)."""
        cx, cy = self.canvas_coordinate(x, y)
        if not (0 <= cx < self.snapshot.width and 0 <= cy < self.snapshot.height):
            return TRANSPARENT
        return self.snapshot.color_of(cx, cy)

    def to_rgba_array(self) -> np.ndarray:
        """(tile_height, tile_width, 4) uint8 pixels."""
        x0, y0, x1, y1 = self.bounds
        xs = np.arange(x0, x1, dtype=np.int64) * GLOBAL_SCALE // self.pixel_scale
        ys = np.arange(y0, y1, dtype=np.int64) * GLOBAL_SCALE // self.pixel_scale
        x_ok = (xs >= 0) & (xs < self.snapshot.width)
        y_ok = (ys >= 0) & (ys < self.snapshot.height)

        slots = self.snapshot.pixels[np.ix_(
            np.clip(ys, 0, self.snapshot.height - 1),
            np.clip(xs, 0, self.snapshot.width - 1),
        )]
        rgba = self.snapshot.lut[slots]
        rgba[~(y_ok[:, None] & x_ok[None, :])] = 0
        return rgba

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.to_rgba_array())


def encode_png(raster) -> bytes:
    """Encode any Raster as PNG."""
    buf = BytesIO()
    raster.to_image().save(buf, format="PNG")
    return buf.getvalue()
