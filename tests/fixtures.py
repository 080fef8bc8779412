"""
Shared Test Fixtures

Small hand-built canvases, source lines and shards.
All fixtures are explicit - no random generation.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Sequence
import gzip

from placemap.contracts.events import Color, RawEvent, WHITE
from placemap.dataset.builder import IndexBuilder
from placemap.dataset.index import CanvasIndex
from placemap.ingestion.fetcher import BytesShard
from placemap.ingestion.sources import HEADER_2022, EventSource, parse_line_2022


# =============================================================================
# FIXED TIMES & COLORS
# =============================================================================

EPOCH = datetime(2022, 4, 1, tzinfo=timezone.utc)

RED = Color(0xFF, 0x45, 0x00)
BLUE = Color(0x24, 0x50, 0xA4)
GREEN = Color(0x00, 0xA3, 0x68)
BLACK = Color(0x00, 0x00, 0x00)


def at(millis: int) -> datetime:
    """Timestamp ``millis`` after EPOCH."""
    return EPOCH + timedelta(milliseconds=millis)


def event(millis: int, x: int, y: int, color: Color = RED, user: str = "user-a") -> RawEvent:
    return RawEvent(at(millis), user, x, y, color)


def build_index(
    events: Iterable[RawEvent],
    width: int = 8,
    height: int = 8,
    epoch: datetime = EPOCH
) -> CanvasIndex:
    builder = IndexBuilder(width, height, epoch)
    for ev in events:
        builder.add(ev)
    return builder.finalize()


# =============================================================================
# SOURCE LINES & SHARDS (2022 format)
# =============================================================================

def line_2022(millis: int, user: str, color: Color, *coords: int) -> str:
    """Format one 2022 row; four coords make a rectangle fill."""
    ts = at(millis)
    stamp = ts.strftime("%Y-%m-%d %H:%M:%S") + f".{ts.microsecond // 1000:03d} UTC"
    return f'{stamp},{user},{color.hex},"{",".join(str(c) for c in coords)}"'


def shard_bytes(lines: Sequence[str], header: str = HEADER_2022, compress: bool = False) -> bytes:
    data = "\n".join([header, *lines]).encode("utf-8") + b"\n"
    return gzip.compress(data) if compress else data


def bytes_shards(*shards: Sequence[str], compress: bool = False) -> List[BytesShard]:
    return [
        BytesShard(shard_bytes(lines, compress=compress), gzipped=compress, name=f"shard-{i}")
        for i, lines in enumerate(shards)
    ]


def small_source(size: int = 16) -> EventSource:
    """2022-format source on a small canvas, no remote shards."""
    return EventSource(
        year=2022,
        canvas_size=size,
        urls=(),
        header=HEADER_2022,
        parse_line=parse_line_2022,
    )


def sample_index() -> CanvasIndex:
    """
    A 4x4 canvas with a late whitening pass.

    (0,0): RED @1000, BLUE @2000, WHITE @9000
    (1,0): GREEN @1500
    (3,3): BLACK @5000, WHITE @9500
    """
    return build_index([
        event(1000, 0, 0, RED, "alice"),
        event(1500, 1, 0, GREEN, "bob"),
        event(2000, 0, 0, BLUE, "bob"),
        event(5000, 3, 3, BLACK, "carol"),
        event(9000, 0, 0, WHITE, "mod"),
        event(9500, 3, 3, WHITE, "mod"),
    ], width=4, height=4)
