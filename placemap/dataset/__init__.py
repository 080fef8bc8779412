"""
Spatial-Temporal Index Layer
============================

- index: finalized, read-only chunked per-pixel history (CanvasIndex)
- builder: mutable construction state, owned by the ingestion coordinator
- codec: versioned compressed persistence of a finalized index
"""

from .index import (
    INDEX_VERSION,
    CHUNK_SIZE,
    CELLS_PER_CHUNK,
    CanvasIndex,
    CanvasEvents,
    Chunk,
    chunk_grid,
)
from .builder import IndexBuilder, MAX_PALETTE
from .codec import FILE_SUFFIX, save_index, load_index, encode_index, decode_index

__all__ = [
    'INDEX_VERSION',
    'CHUNK_SIZE',
    'CELLS_PER_CHUNK',
    'CanvasIndex',
    'CanvasEvents',
    'Chunk',
    'chunk_grid',
    'IndexBuilder',
    'MAX_PALETTE',
    'FILE_SUFFIX',
    'save_index',
    'load_index',
    'encode_index',
    'decode_index',
]
