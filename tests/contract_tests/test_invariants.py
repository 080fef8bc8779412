"""
Property Tests for Index and Renderer Invariants

Each property is checked against a naive reference computed directly
from the raw event list.
"""

from datetime import timedelta
from io import BytesIO

from hypothesis import given, settings, strategies as st
from hypothesis.strategies import composite

from placemap.contracts.events import TRANSPARENT, WHITE
from placemap.dataset.codec import decode_index, encode_index
from placemap.render.tiles import TileWindow, compute_tile_snapshot, whitening_cutoff
from placemap.render.timelapse import render_frames

from ..fixtures import BLACK, BLUE, EPOCH, GREEN, RED, build_index, event

COLORS = [RED, BLUE, GREEN, BLACK, WHITE]
USERS = ["alice", "bob", "carol"]


# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

@composite
def canvases(draw, max_size=6, max_events=40):
    """A canvas size plus an arrival-ordered event list on it."""
    width = draw(st.integers(min_value=1, max_value=max_size))
    height = draw(st.integers(min_value=1, max_value=max_size))
    raw = draw(st.lists(
        st.tuples(
            st.integers(min_value=0, max_value=3000),
            st.integers(min_value=0, max_value=width - 1),
            st.integers(min_value=0, max_value=height - 1),
            st.sampled_from(COLORS),
            st.sampled_from(USERS),
        ),
        max_size=max_events,
    ))
    events = [event(ms, x, y, color, user) for ms, x, y, color, user in raw]
    return width, height, events


def history(events, x, y):
    """Events of one cell, stable-sorted by time (arrival order on ties)."""
    return sorted((e for e in events if (e.x, e.y) == (x, y)), key=lambda e: e.timestamp)


def millis(ev):
    return (ev.timestamp - EPOCH) // timedelta(milliseconds=1)


# =============================================================================
# PROPERTIES
# =============================================================================

@given(canvases())
@settings(deadline=None)
def test_cells_hold_stable_sorted_history(canvas):
    width, height, events = canvas
    index = build_index(events, width, height)

    assert index.event_count == len(events)
    for y in range(height):
        for x in range(width):
            expected = history(events, x, y)
            stored = index.events_at(x, y)
            assert [e.delta_millis for e in stored] == [millis(e) for e in expected]
            assert [index.palette[e.color_index] for e in stored] == [e.color for e in expected]
            assert [index.user_ids[e.user_index] for e in stored] == [e.user_id for e in expected]


@given(canvases())
@settings(deadline=None)
def test_codec_round_trip(canvas):
    width, height, events = canvas
    index = build_index(events, width, height)

    stream = BytesIO()
    encode_index(index, stream)
    stream.seek(0)
    loaded = decode_index(stream)

    assert loaded.palette == index.palette
    assert loaded.user_ids == index.user_ids
    assert (loaded.epoch, loaded.start, loaded.end) == (index.epoch, index.start, index.end)
    for y in range(height):
        for x in range(width):
            assert loaded.events_at(x, y) == index.events_at(x, y)


@given(canvases())
@settings(deadline=None)
def test_tile_color_is_last_event_before_cutoff(canvas):
    width, height, events = canvas
    index = build_index(events, width, height)
    cutoff = whitening_cutoff(index)
    window = TileWindow(compute_tile_snapshot(index), 0, 0, width, height, 2)

    for y in range(height):
        for x in range(width):
            before = [e for e in history(events, x, y) if millis(e) <= cutoff]
            expected = before[-1].color if before else WHITE
            assert window.color_at(x, y) == expected


@given(
    canvases(),
    st.integers(min_value=-3, max_value=3),
    st.integers(min_value=-3, max_value=3),
    st.integers(min_value=1, max_value=9),
    st.integers(min_value=1, max_value=9),
    st.integers(min_value=0, max_value=5),
)
@settings(max_examples=50, deadline=None)
def test_tile_array_matches_pointwise_sampling(canvas, tx, ty, tw, th, zoom):
    width, height, events = canvas
    window = TileWindow(compute_tile_snapshot(build_index(events, width, height)), tx, ty, tw, th, zoom)

    pixels = window.to_rgba_array()
    x0, y0, _, _ = window.bounds
    for y in range(th):
        for x in range(tw):
            color = window.color_at(x0 + x, y0 + y)
            cx, cy = window.canvas_coordinate(x0 + x, y0 + y)
            if not (0 <= cx < width and 0 <= cy < height):
                assert color == TRANSPARENT
            assert tuple(int(v) for v in pixels[y, x]) == tuple(color)


@given(canvases(max_events=25), st.sampled_from([250, 700, 1000]))
@settings(max_examples=50, deadline=None)
def test_timelapse_frames_replay_history(canvas, bucket):
    width, height, events = canvas
    index = build_index(events, width, height)
    timelapse = render_frames(index, bucket_millis=bucket, trailer_frames=1)

    assert timelapse.timeline_frames == index.end_millis // bucket + 1
    for frame in timelapse.frames[:timelapse.timeline_frames]:
        for y in range(height):
            for x in range(width):
                before = [e for e in history(events, x, y) if millis(e) < frame.until_millis]
                expected = before[-1].color if before else WHITE
                assert frame.color_at(x, y) == expected
