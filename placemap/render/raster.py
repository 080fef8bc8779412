"""
Raster capability shared by tiles and timelapse frames.

Anything exposing ``bounds`` and ``color_at`` can be sampled pixel by
pixel; ``to_image`` is the bulk path used for encoding.
"""

from __future__ import annotations
from typing import Protocol, Tuple, runtime_checkable

from PIL import Image

from ..contracts.events import Color


Bounds = Tuple[int, int, int, int]  # x0, y0, x1, y1 (x1/y1 exclusive)


@runtime_checkable
class Raster(Protocol):
    """Bounded, pixel-addressable image."""

    @property
    def bounds(self) -> Bounds:
        ...

    def color_at(self, x: int, y: int) -> Color:
        ...

    def to_image(self) -> Image.Image:
        ...


def size_of(raster: Raster) -> Tuple[int, int]:
    x0, y0, x1, y1 = raster.bounds
    return x1 - x0, y1 - y0
