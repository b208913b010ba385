"""Tests for EventSource: chunked loading, find_events and frame delegation."""
import logging

import numpy as np
import pytest

from spatialevents.config import EventSourceConfig
from spatialevents.controller.file_source import FileEventSource
from spatialevents.controller.frames import FrameRange, SourceType
from spatialevents.model.geometry_primitives import AABB
from spatialevents.model.io import EventFileFormat
from spatialevents.model.spatial_index import NullSpatialIndex, RTreeIndex

from .conftest import ChunkedSource


def brute_force_values(source, box: AABB) -> np.ndarray:
    lo, hi = box.to_arrays()
    inside = np.all((source.buffer.positions >= lo) & (source.buffer.positions <= hi), axis=1)
    return np.sort(source.values[inside])


# ── Chunked loading ──

def test_load_window(source):
    assert source.num_chunks == 4
    assert source.load(1, 2) == 20
    assert source.calls == [(1, 2)]
    assert source.num_events == 20
    np.testing.assert_array_equal(source.values, source.values_all[10:30])


def test_load_all(source):
    assert source.load() == 40
    assert source.calls == [(0, 4)]
    assert source.num_events == 40


@pytest.mark.parametrize("chunk_index, num_chunks", [(0, 0), (1, -1)])
def test_load_non_positive_count_raises(source, chunk_index, num_chunks):
    with pytest.raises(ValueError):
        source.load(chunk_index, num_chunks)
    assert source.calls == []
    assert source.num_events == 0


@pytest.mark.parametrize("chunk_index, num_chunks", [(-1, 1), (3, 2), (4, 1), (0, 5)])
def test_load_out_of_range_raises(source, chunk_index, num_chunks):
    source.load(0, 1)
    before = source.values.copy()

    with pytest.raises(IndexError):
        source.load(chunk_index, num_chunks)

    assert source.calls == [(0, 1)]
    np.testing.assert_array_equal(source.values, before)


def test_load_last_chunk_is_valid(source):
    assert source.load(3, 1) == 10


def test_load_requires_both_arguments(source):
    with pytest.raises(TypeError):
        source.load(1)


def test_negative_backend_count_is_returned(caplog):
    failing = ChunkedSource(fail=True)
    with caplog.at_level(logging.WARNING, logger="spatialevents"):
        assert failing.load(0, 1) == -1
    assert "failed" in caplog.text


# ── Buffer delegation ──

def test_buffer_delegation(source):
    source.resize(2)
    assert source.update(0, (1.0, 2.0, 3.0), 4.0, 5.0)
    assert source.assign(1, [(6.0, 7.0, 8.0)], [0.5], [9.0])
    assert source.num_events == 2
    np.testing.assert_array_equal(source.positions_x, [1.0, 6.0])
    np.testing.assert_array_equal(source.positions_y, [2.0, 7.0])
    np.testing.assert_array_equal(source.positions_z, [3.0, 8.0])
    np.testing.assert_allclose(source.radii, [0.25, 2.0])
    assert source[1] == 9.0

    source[1] = 11.0
    assert source.values[1] == 11.0
    source.mutable_values[0] = -1.0
    assert source[0] == -1.0


def test_bounding_box_delegation(source):
    source.load()
    box = source.bounding_box
    assert box == AABB.from_points(source.buffer.positions)

    bigger = AABB.from_bounds((-1000, -1000, -1000), (1000, 1000, 1000))
    source.set_bounding_box(bigger)
    assert source.bounding_box == bigger


def test_cutoff_distance_comes_from_config():
    assert ChunkedSource(config=EventSourceConfig(cutoff_distance=42.0)).cutoff_distance == 42.0


# ── Spatial queries ──

def test_find_events_before_build_warns_once(source, caplog):
    source.load()
    box = AABB.from_points(source.buffer.positions)
    with caplog.at_level(logging.WARNING, logger="spatialevents"):
        assert source.find_events(box).size == 0
        assert source.find_events(box).size == 0
    assert caplog.text.count("RTree not available") == 1


def test_find_events_matches_brute_force(source):
    source.load()
    source.build_index()
    rng = np.random.default_rng(3)
    for _ in range(10):
        corners = rng.uniform(-100.0, 100.0, size=(2, 3))
        box = AABB.from_bounds(corners.min(axis=0), corners.max(axis=0))
        np.testing.assert_array_equal(np.sort(source.find_events(box)), brute_force_values(source, box))


def test_find_events_is_inclusive(source):
    source.resize(3)
    source.update(0, (0.0, 0.0, 0.0), 1.0, 1.0)
    source.update(1, (1.0, 1.0, 1.0), 1.0, 2.0)
    source.update(2, (1.0, 1.0, 1.5), 1.0, 3.0)
    source.build_index()
    result = source.find_events(AABB.from_bounds((0, 0, 0), (1, 1, 1)))
    assert sorted(result.tolist()) == [1.0, 2.0]


def test_update_after_build_invalidates_and_rebuilds(source):
    source.load()
    source.build_index()
    index = source.spatial_index
    assert not index.is_empty

    source.update(0, (500.0, 500.0, 500.0), 1.0, 123.0)
    assert index.is_empty

    result = source.find_events(AABB.from_bounds((499, 499, 499), (501, 501, 501)))
    assert result.tolist() == [123.0]
    assert not index.is_empty


def test_reload_after_build_rebuilds(source):
    source.load(0, 1)
    source.build_index()
    source.load(2, 1)
    box = AABB.from_bounds((-100, -100, -100), (100, 100, 100))
    np.testing.assert_array_equal(np.sort(source.find_events(box)), np.sort(source.values_all[20:30]))


def test_value_writes_keep_index(source):
    source.load()
    source.build_index()
    source.mutable_values[:] = 1.0
    assert not source.spatial_index.is_empty


def test_before_generate_builds_requested_index(source):
    source.load()
    source.build_index()
    source.update(0, (0.0, 0.0, 0.0), 1.0, 1.0)
    assert source.spatial_index.is_empty

    source.before_generate()

    assert not source.spatial_index.is_empty


def test_before_generate_without_request_does_nothing(source):
    source.load()
    source.before_generate()
    assert source.spatial_index.is_empty


def test_disabled_spatial_index(caplog):
    source = ChunkedSource(config=EventSourceConfig(spatial_index=False))
    assert isinstance(source.spatial_index, NullSpatialIndex)
    source.load()
    source.build_index()
    with caplog.at_level(logging.WARNING, logger="spatialevents"):
        assert source.find_events(AABB.from_points(source.buffer.positions)).size == 0
    assert "RTree not available" in caplog.text


def test_enabled_spatial_index_type(source):
    assert isinstance(source.spatial_index, RTreeIndex)


# ── Frames ──

def test_frame_delegation():
    source = ChunkedSource(config=EventSourceConfig(dt=2.0, duration=3.0), time_range=(0.0, 10.0))
    assert source.source_type == SourceType.EVENT
    assert source.time_range == (0.0, 10.0)
    assert source.get_frame_range() == FrameRange(0, 4)
    assert source.is_in_frame_range(3)
    assert not source.is_in_frame_range(4)
    assert source.current_time is None

    assert source.set_frame(2)
    assert source.current_time == pytest.approx(4.0)
    assert not source.set_frame(4)
    assert source.current_time == pytest.approx(4.0)

    source.set_time(99.0)
    assert source.current_time == 99.0


def test_set_dt_changes_frame_range():
    source = ChunkedSource(config=EventSourceConfig(dt=2.0, duration=3.0),
                           time_range=(0.0, 10.0), source_type=SourceType.FRAME)
    assert source.get_frame_range() == FrameRange(0, 5)
    source.set_dt(5.0)
    assert source.dt == 5.0
    assert source.get_frame_range() == FrameRange(0, 2)


# ── File source ──

def test_file_source_loads_file(tmp_path, source):
    source.load()
    path = tmp_path / "events.txt"
    assert source.write(path, EventFileFormat.TEXT)

    file_source = FileEventSource(path, config=EventSourceConfig(dt=5.0))
    assert file_source.num_chunks == 1
    assert file_source.source_type == SourceType.FRAME
    assert file_source.time_range == (0.0, 5.0)
    assert file_source.get_frame_range() == FrameRange(0, 1)

    assert file_source.load() == 40
    np.testing.assert_allclose(file_source.values, source.values)


def test_file_source_missing_file(tmp_path, caplog):
    file_source = FileEventSource(tmp_path / "missing.bin")
    with caplog.at_level(logging.WARNING, logger="spatialevents"):
        assert file_source.load() == -1
    assert "Could not load events" in caplog.text
    assert file_source.num_events == 0


def test_file_source_window_checked(tmp_path):
    file_source = FileEventSource(tmp_path / "missing.bin")
    with pytest.raises(IndexError):
        file_source.load(1, 1)
