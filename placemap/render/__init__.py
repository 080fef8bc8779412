"""
Render layer: read-only views over a finalized CanvasIndex.
"""

from .raster import Bounds, Raster, size_of
from .tiles import (
    BACKGROUND,
    GLOBAL_SCALE,
    TileSnapshot,
    TileWindow,
    compute_tile_snapshot,
    encode_png,
    validate_tile_params,
    whitening_cutoff,
)
from .timelapse import (
    AnimationKind,
    Timelapse,
    TimelapseFrame,
    encode_animation,
    encode_apng,
    encode_gif,
    render_frames,
)

__all__ = [
    'Bounds',
    'Raster',
    'size_of',
    'BACKGROUND',
    'GLOBAL_SCALE',
    'TileSnapshot',
    'TileWindow',
    'compute_tile_snapshot',
    'encode_png',
    'validate_tile_params',
    'whitening_cutoff',
    'AnimationKind',
    'Timelapse',
    'TimelapseFrame',
    'encode_animation',
    'encode_apng',
    'encode_gif',
    'render_frames',
]
