"""
Shared contracts: error records, exceptions and event types.
"""

from .base import (
    ErrorCode,
    Error,
    PlacemapError,
    IngestionError,
    HeaderMismatchError,
    PaletteOverflowError,
    IndexLoadError,
    PromiseTimeout,
)
from .events import Color, RawEvent, PixelEvent, TRANSPARENT, WHITE

__all__ = [
    'ErrorCode',
    'Error',
    'PlacemapError',
    'IngestionError',
    'HeaderMismatchError',
    'PaletteOverflowError',
    'IndexLoadError',
    'PromiseTimeout',
    'Color',
    'RawEvent',
    'PixelEvent',
    'TRANSPARENT',
    'WHITE',
]
