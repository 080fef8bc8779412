"""
Index Builder Tests

Record-to-cell mapping, finalize ordering and fail-closed validation.
"""

import pytest

from placemap.contracts.base import ErrorCode, IngestionError, PaletteOverflowError
from placemap.contracts.events import Color, PixelEvent
from placemap.dataset.builder import MAX_PALETTE, IndexBuilder
from placemap.dataset.index import CHUNK_SIZE, chunk_grid

from ..fixtures import BLUE, EPOCH, GREEN, RED, at, build_index, event


# =============================================================================
# MAPPING
# =============================================================================

class TestRecordMapping:
    """Events land in chunk (x // 256, y // 256), cell (x % 256, y % 256)."""

    def test_chunk_grid_rounds_up(self):
        assert chunk_grid(256, 256) == (1, 1)
        assert chunk_grid(257, 256) == (2, 1)
        assert chunk_grid(1001, 1001) == (4, 4)
        assert chunk_grid(2000, 2000) == (8, 8)

    def test_event_lands_in_expected_chunk_and_cell(self):
        index = build_index([event(10, 257, 3, RED)], width=300, height=300)

        assert index.chunk_stride == 2
        chunk = index.chunks[1]
        assert chunk.event_count == 1
        assert chunk.events(1, 3) == [PixelEvent(10, 0, 0)]
        assert index.events_at(257, 3) == [PixelEvent(10, 0, 0)]
        assert index.chunks[0].event_count == 0

    def test_edge_chunks_have_reduced_extent(self):
        index = build_index([], width=300, height=260)

        extents = [(c.width, c.height) for c in index.chunks]
        assert extents == [
            (CHUNK_SIZE, CHUNK_SIZE), (44, CHUNK_SIZE),
            (CHUNK_SIZE, 4), (44, 4),
        ]

    def test_counts_every_event(self):
        events = [event(i, i % 8, i // 8) for i in range(64)]
        index = build_index(events)

        assert index.event_count == 64
        assert all(len(index.events_at(x, y)) == 1 for x in range(8) for y in range(8))


# =============================================================================
# FINALIZE
# =============================================================================

class TestFinalize:

    def test_cells_sorted_by_delta(self):
        index = build_index([
            event(300, 2, 2, RED),
            event(100, 2, 2, BLUE),
            event(200, 2, 2, GREEN),
        ])

        assert [e.delta_millis for e in index.events_at(2, 2)] == [100, 200, 300]

    def test_equal_timestamps_keep_arrival_order(self):
        index = build_index([
            event(500, 1, 1, RED),
            event(500, 1, 1, BLUE),
            event(100, 1, 1, GREEN),
            event(500, 1, 1, GREEN),
        ])

        palette = index.palette
        colors = [palette[e.color_index] for e in index.events_at(1, 1)]
        assert colors == [GREEN, RED, BLUE, GREEN]

    def test_palette_and_users_in_first_seen_order(self):
        index = build_index([
            event(1, 0, 0, BLUE, "zed"),
            event(2, 1, 0, RED, "amy"),
            event(3, 2, 0, BLUE, "amy"),
        ])

        assert index.palette == (BLUE, RED)
        assert index.user_ids == ("zed", "amy")

    def test_start_and_end_are_extreme_events(self):
        index = build_index([event(700, 0, 0), event(50, 1, 1), event(300, 2, 2)])

        assert index.start == at(50)
        assert index.end == at(700)
        assert index.start_millis == 50
        assert index.end_millis == 700

    def test_empty_index_spans_epoch_only(self):
        index = build_index([])

        assert index.event_count == 0
        assert index.start == index.end == EPOCH
        assert index.palette == ()

    def test_finalize_runs_once(self):
        builder = IndexBuilder(4, 4, EPOCH)
        builder.finalize()

        with pytest.raises(RuntimeError):
            builder.finalize()
        with pytest.raises(RuntimeError):
            builder.add(event(1, 0, 0))

    def test_index_arrays_are_read_only(self):
        index = build_index([event(1, 0, 0)])

        with pytest.raises(ValueError):
            index.chunks[0].delta_millis[0] = 99


# =============================================================================
# FAIL-CLOSED VALIDATION
# =============================================================================

class TestValidation:

    @pytest.mark.parametrize("x,y", [(-1, 0), (0, -1), (8, 0), (0, 8), (1000, 1000)])
    def test_out_of_bounds_coordinate_rejected(self, x, y):
        builder = IndexBuilder(8, 8, EPOCH)

        with pytest.raises(IngestionError) as exc:
            builder.add(event(1, x, y))
        assert exc.value.code == ErrorCode.COORDINATE_OUT_OF_BOUNDS
        assert builder.event_count == 0

    def test_timestamp_outside_int32_rejected(self):
        builder = IndexBuilder(8, 8, EPOCH)

        with pytest.raises(IngestionError) as exc:
            builder.add(event(2 ** 31, 0, 0))
        assert exc.value.code == ErrorCode.TIMESTAMP_OUT_OF_RANGE

    def test_palette_of_256_is_accepted(self):
        builder = IndexBuilder(16, 16, EPOCH)
        for i in range(MAX_PALETTE):
            builder.add(event(i, i % 16, i // 16, Color(i, 0, 0)))

        assert len(builder.finalize().palette) == MAX_PALETTE

    def test_palette_overflow_is_fatal(self):
        builder = IndexBuilder(16, 16, EPOCH)
        for i in range(MAX_PALETTE):
            builder.add(event(i, i % 16, i // 16, Color(i, 0, 0)))

        with pytest.raises(PaletteOverflowError) as exc:
            builder.add(event(999, 0, 0, Color(0, 1, 0)))
        assert exc.value.code == ErrorCode.PALETTE_OVERFLOW

    def test_non_positive_canvas_rejected(self):
        with pytest.raises(ValueError):
            IndexBuilder(0, 10, EPOCH)
