"""
Line Parser Tests

2017 and 2022 row formats, rectangle fills and malformed input.
"""

from datetime import datetime, timezone

import pytest

from placemap.contracts.events import Color
from placemap.ingestion.sources import (
    PALETTE_2017,
    SOURCE_2017,
    SOURCE_2022,
    format_timestamp,
    parse_line_2017,
    parse_line_2022,
    parse_timestamp,
    source_for_year,
)


class TestTimestamps:

    def test_fractional_seconds(self):
        assert parse_timestamp("2022-04-04 00:55:57.168 UTC") == datetime(
            2022, 4, 4, 0, 55, 57, 168000, tzinfo=timezone.utc)

    def test_whole_seconds(self):
        assert parse_timestamp("2017-04-03 17:38:20 UTC") == datetime(
            2017, 4, 3, 17, 38, 20, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["2022-04-04 00:55:57.168", "yesterday UTC", ""])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_timestamp(value)

    @pytest.mark.parametrize("value", [
        "2022-04-04 00:55:57.168 UTC",
        "2022-04-04 00:55:57.1 UTC",
        "2022-04-04 00:55:57 UTC",
    ])
    def test_format_round_trips(self, value):
        assert format_timestamp(parse_timestamp(value)) == value


class TestParse2022:

    def test_single_pixel(self):
        events = parse_line_2022('2022-04-04 00:55:57.168 UTC,tPcrtm7O==,#6A5CFF,"1908,1854"')

        assert len(events) == 1
        ev = events[0]
        assert (ev.x, ev.y) == (1908, 1854)
        assert ev.user_id == "tPcrtm7O=="
        assert ev.color == Color(0x6A, 0x5C, 0xFF)

    def test_rectangle_expands_inclusive(self):
        events = parse_line_2022('2022-04-04 01:00:00.000 UTC,mod,#FFFFFF,"10,20,12,21"')

        assert [(e.x, e.y) for e in events] == [
            (10, 20), (11, 20), (12, 20),
            (10, 21), (11, 21), (12, 21),
        ]
        assert len({e.timestamp for e in events}) == 1

    def test_single_cell_rectangle(self):
        assert len(parse_line_2022('2022-04-04 01:00:00.000 UTC,mod,#000000,"5,5,5,5"')) == 1

    def test_blank_coordinate_yields_nothing(self):
        assert parse_line_2022('2022-04-04 01:00:00.000 UTC,u,#000000,""') == []

    @pytest.mark.parametrize("line", [
        'garbage',
        '2022-04-04 01:00:00.000 UTC,u,#00000,"1,2"',
        '2022-04-04 01:00:00.000 UTC,u,000000F,"1,2"',
        '2022-04-04 01:00:00.000 UTC,u,#000000,"1,b"',
        'not a time,u,#000000,"1,2"',
        '2022-04-04 01:00:00.000 UTC,u,#000000,"5,5,4,5"',
        '2022-04-04 01:00:00.000 UTC,u,#000000,"1,2,3"',
    ])
    def test_malformed_raises_value_error(self, line):
        with pytest.raises(ValueError):
            parse_line_2022(line)


class TestParse2017:

    def test_palette_index(self):
        events = parse_line_2017("2017-04-03 17:38:20.540 UTC,abc==,42,7,5")

        assert len(events) == 1
        assert (events[0].x, events[0].y) == (42, 7)
        assert events[0].color == PALETTE_2017[5]

    def test_blank_fields_yield_nothing(self):
        assert parse_line_2017("2017-04-03 17:38:20.540 UTC,abc==,,,") == []

    @pytest.mark.parametrize("line", [
        "2017-04-03 17:38:20.540 UTC,abc==,1,2,16",
        "2017-04-03 17:38:20.540 UTC,abc==,1,2",
        "2017-04-03 17:38:20.540 UTC,abc==,x,2,3",
    ])
    def test_malformed_raises_value_error(self, line):
        with pytest.raises(ValueError):
            parse_line_2017(line)


class TestRegistry:

    def test_known_years(self):
        assert source_for_year(2017) is SOURCE_2017
        assert source_for_year(2022) is SOURCE_2022

    def test_unknown_year(self):
        with pytest.raises(ValueError):
            source_for_year(2019)

    def test_2022_source(self):
        assert SOURCE_2022.gzipped
        assert len(SOURCE_2022.shards()) == 78
        assert SOURCE_2022.epoch == datetime(2022, 4, 1, tzinfo=timezone.utc)
        assert (SOURCE_2022.width, SOURCE_2022.height) == (2000, 2000)
