"""
Persisted Store Codec
=====================

Versioned, compressed on-disk form of a CanvasIndex.

FORMAT:
=======
A numpy compressed archive (``.npz``) holding:
- ``meta``          JSON record: version, canvas size, epoch/start/end,
                    chunk stride, per-chunk extents, palette
- ``user_ids``      unicode array, by user index
- ``cell_offsets``  (chunks, 65537) int64, per-chunk cell offsets
- ``chunk_starts``  (chunks + 1) int64, chunk ranges in the event columns
- ``delta_millis`` / ``user_index`` / ``color_index``  concatenated columns

GUARANTEES:
===========
1. Writes are atomic: temp file in the target directory, then os.replace
2. Any decode problem or version mismatch raises IndexLoadError so the
   caller can re-ingest instead of serving incompatible data
"""

from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Union
import json
import logging
import os
import tempfile
import time
import zipfile
import zlib

import numpy as np

from ..contracts.base import Error, ErrorCode, IndexLoadError
from ..contracts.events import Color
from .index import CELLS_PER_CHUNK, INDEX_VERSION, CanvasIndex, Chunk

logger = logging.getLogger(__name__)

FILE_SUFFIX = ".npz"

PathLike = Union[str, Path]


def _check_suffix(path: Path) -> None:
    if path.suffix != FILE_SUFFIX:
        raise IndexLoadError(Error.now(
            ErrorCode.STORE_BAD_SUFFIX,
            f"file {str(path)!r} does not have required suffix {FILE_SUFFIX!r}",
            path=path,
        ))


# =============================================================================
# ENCODE
# =============================================================================

def encode_index(index: CanvasIndex, stream) -> None:
    """Write ``index`` to a binary stream."""
    meta = {
        'version': index.version,
        'width': index.width,
        'height': index.height,
        'epoch': index.epoch.isoformat(),
        'start': index.start.isoformat(),
        'end': index.end.isoformat(),
        'chunk_stride': index.chunk_stride,
        'chunk_extents': [[c.width, c.height] for c in index.chunks],
        'palette': [list(c) for c in index.palette],
    }

    counts = [c.event_count for c in index.chunks]
    chunk_starts = np.zeros(len(index.chunks) + 1, dtype=np.int64)
    np.cumsum(counts, out=chunk_starts[1:])

    def column(name, dtype):
        parts = [getattr(c, name) for c in index.chunks]
        return np.concatenate(parts) if parts else np.zeros(0, dtype=dtype)

    np.savez_compressed(
        stream,
        meta=np.array(json.dumps(meta)),
        user_ids=np.array(index.user_ids, dtype=str),
        cell_offsets=np.stack([c.cell_offsets for c in index.chunks]),
        chunk_starts=chunk_starts,
        delta_millis=column('delta_millis', np.int32),
        user_index=column('user_index', np.int32),
        color_index=column('color_index', np.uint8),
    )


def save_index(index: CanvasIndex, path: PathLike) -> Path:
    """
    Atomically write ``index`` to ``path``.

    A crash mid-write leaves at most a stray temp file, never a truncated
    cache file under the final name.
    """
    path = Path(path)
    _check_suffix(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    started = time.monotonic()
    fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, 'wb') as f:
            encode_index(index, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.info(
        "Wrote index to %s (%.2fMiB) in %.3fs",
        path, path.stat().st_size / (1 << 20), time.monotonic() - started,
    )
    return path


# =============================================================================
# DECODE
# =============================================================================

def decode_index(stream, source: str = "<stream>") -> CanvasIndex:
    """Read an index written by ``encode_index``."""
    try:
        with np.load(stream, allow_pickle=False) as archive:
            meta = json.loads(archive['meta'].item())
            version = meta.get('version')
            if version != INDEX_VERSION:
                raise IndexLoadError(Error.now(
                    ErrorCode.STORE_VERSION_MISMATCH,
                    f"version = {version!r}, want {INDEX_VERSION!r}",
                    source=source,
                ))

            user_ids = tuple(str(u) for u in archive['user_ids'])
            cell_offsets = archive['cell_offsets']
            chunk_starts = archive['chunk_starts']
            deltas = archive['delta_millis']
            users = archive['user_index']
            colors = archive['color_index']
    except IndexLoadError:
        raise
    except (OSError, EOFError, ValueError, KeyError, TypeError, AttributeError,
            IndexError, zipfile.BadZipFile, zlib.error) as e:
        raise IndexLoadError(Error.now(
            ErrorCode.STORE_DECODE_FAILED,
            f"decoding index from {source}: {e}",
            source=source,
        )) from e

    try:
        extents = meta['chunk_extents']
        if cell_offsets.shape != (len(extents), CELLS_PER_CHUNK + 1):
            raise ValueError(f"cell_offsets shape {cell_offsets.shape} does not match {len(extents)} chunks")
        chunks = []
        for i, (width, height) in enumerate(extents):
            lo, hi = int(chunk_starts[i]), int(chunk_starts[i + 1])
            chunks.append(Chunk(
                width=int(width),
                height=int(height),
                cell_offsets=np.array(cell_offsets[i], dtype=np.int64),
                delta_millis=np.array(deltas[lo:hi], dtype=np.int32),
                user_index=np.array(users[lo:hi], dtype=np.int32),
                color_index=np.array(colors[lo:hi], dtype=np.uint8),
            ))
        return CanvasIndex(
            version=version,
            width=int(meta['width']),
            height=int(meta['height']),
            palette=tuple(Color(*c) for c in meta['palette']),
            epoch=datetime.fromisoformat(meta['epoch']),
            start=datetime.fromisoformat(meta['start']),
            end=datetime.fromisoformat(meta['end']),
            chunk_stride=int(meta['chunk_stride']),
            chunks=tuple(chunks),
            user_ids=user_ids,
        )
    except (ValueError, KeyError, TypeError, IndexError) as e:
        raise IndexLoadError(Error.now(
            ErrorCode.STORE_DECODE_FAILED,
            f"decoding index from {source}: {e}",
            source=source,
        )) from e


def load_index(path: PathLike) -> CanvasIndex:
    """Load a persisted index; raises IndexLoadError on any problem."""
    path = Path(path)
    _check_suffix(path)

    started = time.monotonic()
    try:
        with path.open('rb') as f:
            index = decode_index(f, source=str(path))
    except OSError as e:
        raise IndexLoadError(Error.now(
            ErrorCode.STORE_DECODE_FAILED,
            f"opening {str(path)!r}: {e}",
            path=path,
        )) from e

    logger.info(
        "Loaded %d events from %s in %.3fs",
        index.event_count, path, time.monotonic() - started,
    )
    return index
