"""
Timelapse Renderer
==================

Replays a finalized CanvasIndex into time-bucketed frames and encodes them
as an animation.

FRAMES:
=======
- Frame k shows every event with ``delta < (k + 1) * bucket`` (the bucket's
  upper edge is exclusive)
- Frames run from the epoch through the index end: ``end // bucket + 1``
- A trailer of duplicate last frames holds the final state on screen

All per-cell histories are merged into one time-ordered cursor that drains
into a single mutable palette buffer; each frame is a read-only copy of
that buffer. Frames whose bucket holds no events share the previous array.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import List, Tuple
import logging
import time

import numpy as np
from PIL import Image

from ..contracts.events import Color
from ..dataset.index import CanvasIndex
from .raster import Bounds
from .tiles import BACKGROUND, last_per_position

logger = logging.getLogger(__name__)

DEFAULT_TRAILER_FRAMES = 100
DEFAULT_FRAME_DELAY_MS = 33
MAX_PALETTE_SLOTS = 256


class AnimationKind(Enum):
    GIF = "gif"
    APNG = "apng"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"


@dataclass(frozen=True, eq=False)
class TimelapseFrame:
    """One paletted canvas snapshot."""
    pixels: np.ndarray  # (height, width) uint8 palette slots, read-only
    palette: Tuple[Color, ...]
    until_millis: int   # exclusive upper edge of the frame's bucket

    @property
    def bounds(self) -> Bounds:
        height, width = self.pixels.shape
        return 0, 0, width, height

    def color_at(self, x: int, y: int) -> Color:
        return self.palette[int(self.pixels[y, x])]

    def to_image(self) -> Image.Image:
        image = Image.fromarray(self.pixels)
        image.putpalette([channel for color in self.palette for channel in color[:3]])
        return image


@dataclass(frozen=True)
class Timelapse:
    """Rendered frames, trailer included."""
    frames: Tuple[TimelapseFrame, ...]
    bucket_millis: int
    trailer_frames: int
    background_slot: int

    @property
    def timeline_frames(self) -> int:
        return len(self.frames) - self.trailer_frames


def frame_palette(index: CanvasIndex) -> Tuple[Tuple[Color, ...], int]:
    """
    Palette used by every frame and the slot of the background color.

    The background is appended when the index palette lacks it and has
    room; a full palette without it falls back to slot 0.
    """
    palette = tuple(index.palette)
    if BACKGROUND in palette:
        return palette, palette.index(BACKGROUND)
    if len(palette) < MAX_PALETTE_SLOTS:
        return palette + (BACKGROUND,), len(palette)
    return palette, 0


def render_frames(
    index: CanvasIndex,
    bucket_millis: int,
    trailer_frames: int = DEFAULT_TRAILER_FRAMES
) -> Timelapse:
    """Replay the index into one frame per bucket plus the trailer."""
    if bucket_millis <= 0:
        raise ValueError(f"bucket {bucket_millis}ms must be positive")
    if trailer_frames < 0:
        raise ValueError(f"trailer {trailer_frames} must not be negative")

    started = time.monotonic()
    palette, background = frame_palette(index)

    events = index.canvas_events()
    # Stable, so equal delta-times keep their per-cell order
    order = np.argsort(events.delta_millis, kind="stable")
    deltas = events.delta_millis[order]
    positions = events.position[order]
    colors = events.color_index[order]

    frame_count = max(index.end_millis, 0) // bucket_millis + 1
    buffer = np.full(index.width * index.height, background, dtype=np.uint8)

    frames: List[TimelapseFrame] = []
    cursor = 0
    for k in range(frame_count):
        until = (k + 1) * bucket_millis
        stop = int(np.searchsorted(deltas, until, side="left"))
        if stop > cursor or not frames:
            unique, last = last_per_position(positions[cursor:stop])
            buffer[unique] = colors[cursor:stop][last]
            pixels = buffer.reshape(index.height, index.width).copy()
            pixels.flags.writeable = False
        else:
            pixels = frames[-1].pixels
        cursor = stop
        frames.append(TimelapseFrame(pixels, palette, until))

    # Freeze at the end for a little
    frames.extend([frames[-1]] * trailer_frames)

    logger.info(
        "Timelapse complete: rendered %d frames (%d trailer) in %.3fs",
        len(frames), trailer_frames, time.monotonic() - started,
    )
    return Timelapse(
        frames=tuple(frames),
        bucket_millis=bucket_millis,
        trailer_frames=trailer_frames,
        background_slot=background,
    )


# =============================================================================
# ENCODING
# =============================================================================

def encode_animation(
    timelapse: Timelapse,
    kind: AnimationKind,
    frame_delay_ms: int = DEFAULT_FRAME_DELAY_MS
) -> bytes:
    """Encode every frame (trailer included) as an endlessly looping animation."""
    started = time.monotonic()
    images = [frame.to_image() for frame in timelapse.frames]

    buf = BytesIO()
    options = dict(
        save_all=True,
        append_images=images[1:],
        duration=frame_delay_ms,
        loop=0,
        optimize=False,
    )
    if kind is AnimationKind.GIF:
        images[0].save(buf, format="GIF", **options)
    else:
        images[0].save(buf, format="PNG", **options)

    data = buf.getvalue()
    logger.info(
        "Rendered %d %s frames (%.2fMiB) in %.3fs",
        len(images), kind.name, len(data) / (1 << 20), time.monotonic() - started,
    )
    return data


def encode_gif(timelapse: Timelapse, frame_delay_ms: int = DEFAULT_FRAME_DELAY_MS) -> bytes:
    return encode_animation(timelapse, AnimationKind.GIF, frame_delay_ms)


def encode_apng(timelapse: Timelapse, frame_delay_ms: int = DEFAULT_FRAME_DELAY_MS) -> bytes:
    return encode_animation(timelapse, AnimationKind.APNG, frame_delay_ms)
