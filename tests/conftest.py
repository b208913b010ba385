"""Shared fixtures for the event store tests."""
from __future__ import annotations

from typing import Optional

import numpy as np
import pytest

from spatialevents.config import EventSourceConfig
from spatialevents.controller.frames import SourceType, TimeInterval
from spatialevents.controller.source import EventSource


# Fixed seed so generated events are reproducible across runs
SEED = 42


def generate_events(
    n: int,
    seed: int = SEED,
    extent: float = 100.0
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Random (positions, radii, values) with radii well away from zero."""
    rng = np.random.default_rng(seed)
    positions = rng.uniform(-extent, extent, size=(n, 3)).astype(np.float32)
    radii = rng.uniform(0.5, 5.0, size=n).astype(np.float32)
    values = rng.uniform(-1.0, 1.0, size=n).astype(np.float32)
    return positions, radii, values


class ChunkedSource(EventSource):
    """
    In-memory backend splitting pre-generated events into equally sized chunks.

    Records every window handed to _load so tests can check what reached the
    backend.
    """

    def __init__(
        self,
        num_chunks: int = 4,
        events_per_chunk: int = 10,
        config: Optional[EventSourceConfig] = None,
        time_range: TimeInterval = (0.0, 100.0),
        source_type: SourceType = SourceType.EVENT,
        fail: bool = False
    ) -> None:
        super().__init__(config)
        self._num_chunks = num_chunks
        self._events_per_chunk = events_per_chunk
        self._time_range = time_range
        self._source_type = source_type
        self._fail = fail
        self.positions_all, self.radii_all, self.values_all = generate_events(num_chunks * events_per_chunk)
        self.calls: list[tuple[int, int]] = []

    def _get_num_chunks(self) -> int:
        return self._num_chunks

    def _load(self, chunk_index: int, num_chunks: int) -> int:
        self.calls.append((chunk_index, num_chunks))
        if self._fail:
            return -1
        start = chunk_index * self._events_per_chunk
        stop = start + num_chunks * self._events_per_chunk
        self.resize(stop - start)
        self.assign(0, self.positions_all[start:stop], self.radii_all[start:stop], self.values_all[start:stop])
        return stop - start

    def _get_time_range(self) -> TimeInterval:
        return self._time_range

    def _get_type(self) -> SourceType:
        return self._source_type


@pytest.fixture
def events():
    return generate_events(200)


@pytest.fixture
def source():
    return ChunkedSource()
