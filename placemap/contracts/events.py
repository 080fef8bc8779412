"""
Event Contracts

Immutable records flowing from a raw event source into the index.

RawEvent is ephemeral: produced by a line parser and consumed immediately
by the index builder. PixelEvent is the compact form stored per cell.
"""

from __future__ import annotations
from datetime import datetime
from typing import NamedTuple


class Color(NamedTuple):
    """True-color RGBA value."""
    r: int
    g: int
    b: int
    a: int = 255

    @classmethod
    def from_hex(cls, value: str) -> Color:
        """Parse ``#RRGGBB``."""
        if len(value) != 7:
            raise ValueError(f"length = {len(value)}, want 7 (format #rrggbb)")
        if value[0] != "#":
            raise ValueError(f"color[0] = {value[0]!r}, want '#'")
        try:
            numeric = bytes.fromhex(value[1:])
        except ValueError as e:
            raise ValueError(f"invalid hex: {e}") from None
        return cls(numeric[0], numeric[1], numeric[2], 255)

    @property
    def hex(self) -> str:
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"


TRANSPARENT = Color(0, 0, 0, 0)
WHITE = Color(0xFF, 0xFF, 0xFF)


class RawEvent(NamedTuple):
    """One pixel placement as parsed from a source line."""
    timestamp: datetime
    user_id: str
    x: int
    y: int
    color: Color


class PixelEvent(NamedTuple):
    """One placement as stored in a cell."""
    delta_millis: int  # since the index epoch
    user_index: int    # into CanvasIndex.user_ids
    color_index: int   # into CanvasIndex.palette
