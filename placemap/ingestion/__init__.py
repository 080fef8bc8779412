"""
Ingestion layer: raw shard logs in, CanvasIndex out.

Components:
- sources: per-year dataset descriptions and line parsers
- fetcher: shard readers (HTTP, file, memory) with incremental gunzip
- progress: byte progress shared across shard tasks
- service: the coordinator that drives shards into an IndexBuilder
"""

from .fetcher import BytesShard, FileShard, HttpShard, Shard
from .progress import ProgressTracker
from .service import IngestionConfig, IngestionCoordinator
from .sources import (
    EventSource,
    HEADER_2017,
    HEADER_2022,
    PALETTE_2017,
    SOURCE_2017,
    SOURCE_2022,
    SOURCES,
    parse_line_2017,
    parse_line_2022,
    format_timestamp,
    parse_timestamp,
    source_for_year,
)

__all__ = [
    'BytesShard',
    'FileShard',
    'HttpShard',
    'Shard',
    'ProgressTracker',
    'IngestionConfig',
    'IngestionCoordinator',
    'EventSource',
    'HEADER_2017',
    'HEADER_2022',
    'PALETTE_2017',
    'SOURCE_2017',
    'SOURCE_2022',
    'SOURCES',
    'parse_line_2017',
    'parse_line_2022',
    'format_timestamp',
    'parse_timestamp',
    'source_for_year',
]
