"""
Raw Event Sources

Per-vintage description of a canvas history dataset: where the shards live,
how they are compressed, which header they start with, and how one line
becomes zero or more RawEvents.

PARSER CONTRACT:
================
- ``parse_line(line) -> List[RawEvent]``
- Rows with blank coordinates or color yield no events
- Anything unparseable raises ValueError; the coordinator attaches the
  shard index, line number and line text
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Tuple

from ..contracts.events import Color, RawEvent
from .fetcher import HttpShard, Shard


LineParser = Callable[[str], List[RawEvent]]

_TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class EventSource:
    """Configuration for one canvas vintage."""
    year: int
    canvas_size: int  # every canvas so far has been square
    urls: Tuple[str, ...]
    header: str
    parse_line: LineParser
    gzipped: bool = False

    @property
    def width(self) -> int:
        return self.canvas_size

    @property
    def height(self) -> int:
        return self.canvas_size

    @property
    def epoch(self) -> datetime:
        return datetime(self.year, 4, 1, tzinfo=timezone.utc)

    def shards(self) -> List[Shard]:
        return [HttpShard(url, gzipped=self.gzipped) for url in self.urls]


def parse_timestamp(value: str) -> datetime:
    """Parse ``2022-04-04 00:55:57.168 UTC`` (fraction optional)."""
    if not value.endswith(" UTC"):
        raise ValueError(f"timestamp {value!r} invalid: missing UTC suffix")
    body = value[:-4]
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(body, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError(f"timestamp {value!r} invalid")


def format_timestamp(ts: datetime) -> str:
    """Inverse of parse_timestamp: millisecond precision, trailing zeros dropped."""
    ts = ts.astimezone(timezone.utc)
    text = ts.strftime("%Y-%m-%d %H:%M:%S")
    millis = f"{ts.microsecond // 1000:03d}".rstrip("0")
    if millis:
        text += "." + millis
    return text + " UTC"


def _parse_int(value: str, what: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{what} {value!r} invalid") from None


# =============================================================================
# 2017
# =============================================================================

HEADER_2017 = "ts,user_hash,x_coordinate,y_coordinate,color"

PALETTE_2017 = (
    Color(0xFF, 0xFF, 0xFF),
    Color(0xE4, 0xE4, 0xE4),
    Color(0x88, 0x88, 0x88),
    Color(0x22, 0x22, 0x22),
    Color(0xFF, 0xA7, 0xD1),
    Color(0xE5, 0x00, 0x00),
    Color(0xE5, 0x95, 0x00),
    Color(0xA0, 0x6A, 0x42),
    Color(0xE5, 0xD9, 0x00),
    Color(0x94, 0xE0, 0x44),
    Color(0x02, 0xBE, 0x01),
    Color(0x00, 0xE5, 0xF0),
    Color(0x00, 0x83, 0xC7),
    Color(0x00, 0x00, 0xEA),
    Color(0xE0, 0x4A, 0xFF),
    Color(0x82, 0x00, 0x80),
)


def parse_line_2017(line: str) -> List[RawEvent]:
    fields = line.split(",")
    if len(fields) != 5:
        raise ValueError(f"columns = {len(fields)}, want 5")
    ts_str, user_hash, x_str, y_str, color_str = fields
    if not x_str or not y_str or not color_str:
        return []

    ts = parse_timestamp(ts_str)
    x = _parse_int(x_str, "x coordinate")
    y = _parse_int(y_str, "y coordinate")
    color_index = _parse_int(color_str, "color")
    if not 0 <= color_index < len(PALETTE_2017):
        raise ValueError(f"color {color_str!r} invalid: not in 2017 palette")

    return [RawEvent(ts, user_hash, x, y, PALETTE_2017[color_index])]


# =============================================================================
# 2022
# =============================================================================

HEADER_2022 = "timestamp,user_id,pixel_color,coordinate"


def parse_line_2022(line: str) -> List[RawEvent]:
    """
    Parse one 2022 row.

    Example:
      2022-04-04 00:55:57.168 UTC,tPcrtm7O...==,#6A5CFF,"1908,1854"

    Moderator rectangle fills carry ``"x1,y1,x2,y2"`` and expand to one
    event per covered pixel (both corners inclusive).
    """
    fields = line.split(",")
    if len(fields) not in (5, 7):
        raise ValueError(f"columns = {len(fields)}, want 5 or 7")
    ts_str, user_id, color_str = fields[0], fields[1], fields[2]
    coords = [f.strip('"') for f in fields[3:]]
    if any(not c for c in coords) or not color_str:
        return []

    ts = parse_timestamp(ts_str)
    try:
        color = Color.from_hex(color_str)
    except ValueError as e:
        raise ValueError(f"color {color_str!r} invalid: {e}") from None

    if len(coords) == 2:
        x = _parse_int(coords[0], "x coordinate")
        y = _parse_int(coords[1], "y coordinate")
        return [RawEvent(ts, user_id, x, y, color)]

    x1, y1, x2, y2 = (_parse_int(c, "rectangle coordinate") for c in coords)
    if x2 < x1 or y2 < y1:
        raise ValueError(f"rectangle ({x1},{y1})-({x2},{y2}) is inverted")
    return [
        RawEvent(ts, user_id, x, y, color)
        for y in range(y1, y2 + 1)
        for x in range(x1, x2 + 1)
    ]


def _urls_2022() -> Tuple[str, ...]:
    return tuple(
        f"https://placedata.reddit.com/data/canvas-history/2022_place_canvas_history-{i:012d}.csv.gzip"
        for i in range(78)
    )


# =============================================================================
# REGISTRY
# =============================================================================

SOURCE_2017 = EventSource(
    year=2017,
    canvas_size=1001,
    urls=("https://storage.googleapis.com/justin_bassett/place_tiles",),
    header=HEADER_2017,
    parse_line=parse_line_2017,
)

SOURCE_2022 = EventSource(
    year=2022,
    canvas_size=2000,
    urls=_urls_2022(),
    header=HEADER_2022,
    parse_line=parse_line_2022,
    gzipped=True,
)

SOURCES: Dict[int, EventSource] = {
    2017: SOURCE_2017,
    2022: SOURCE_2022,
}


def source_for_year(year: int) -> EventSource:
    try:
        return SOURCES[year]
    except KeyError:
        raise ValueError(f"no known data source for year {year}") from None
