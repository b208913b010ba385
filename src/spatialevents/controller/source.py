"""
Event Source (Chunked Load Protocol)
====================================
The owner of one event store: configuration, event buffer, spatial index and
frame controller.

Why is this file needed?
------------------------
1. Contract: Backends (simulation reports, spike files, ...) subclass
   EventSource and only implement four hooks. They report how many chunks
   their data has and fill the buffer for a window of chunks on request.
   The store never learns anything about the backend.
2. Validation: load() rejects malformed chunk windows before any backend code
   runs, so a bad request can never leave the buffer half written.
3. Wiring: Buffer mutations clear the spatial index; find_events() rebuilds
   it on demand (invalidate-on-write, rebuild-on-read).

Subclass hooks:
    _get_num_chunks() -> int
    _load(chunk_index, num_chunks) -> int   events loaded, < 0 on soft failure
    _get_time_range() -> (t0, t1)
    _get_type() -> SourceType
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Union, TYPE_CHECKING

import numpy as np

from spatialevents.config import EventSourceConfig
from spatialevents.controller.frames import FrameController, FrameRange, SourceType, TimeInterval
from spatialevents.model.buffer import EventBuffer
from spatialevents.model.io import EventIO, EventFileFormat, PathLike
from spatialevents.model.spatial_index import SpatialIndex, make_spatial_index

if TYPE_CHECKING:
    import numpy.typing as npt
    from spatialevents.model.geometry_primitives import AABB, PositionLike

logger = logging.getLogger(__name__)


class EventSource(ABC):
    """
    Abstract base class of everything that provides events to samplers.

    A single writer is assumed: column reads are only safe while no update,
    resize or load is running. Only the spatial index is internally locked.
    """

    def __init__(self, config: Optional[EventSourceConfig] = None) -> None:
        """
        Initialize an empty source.

        Args:
            config: dt, duration, cutoff distance and spatial index switch.
                Defaults are used when omitted.
        """
        self.config = config if config is not None else EventSourceConfig()
        self._buffer = EventBuffer()
        self._frames = FrameController(self.config.dt, self.config.duration)
        self._index: SpatialIndex = make_spatial_index(self.config.spatial_index, lambda: self._buffer.positions)
        # every buffer mutation drops the index
        self._buffer.add_listener(self._index.clear)
        self._index_requested = False
        self._index_warning_emitted = False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(num_events={self.num_events}, dt={self.dt}, duration={self.duration})"

    # --- BACKEND HOOKS ---

    @abstractmethod
    def _get_num_chunks(self) -> int:
        """Number of chunks the backend splits its data into."""
        pass

    @abstractmethod
    def _load(self, chunk_index: int, num_chunks: int) -> int:
        """
        Populate the buffer with chunks [chunk_index, chunk_index + num_chunks).

        Called with an already validated window. Implementations fill the
        buffer through resize(), update() or assign().

        Returns:
            Number of events loaded, negative on a soft failure.
        """
        pass

    @abstractmethod
    def _get_time_range(self) -> TimeInterval:
        """Time interval [t0, t1] covered by the data."""
        pass

    @abstractmethod
    def _get_type(self) -> SourceType:
        pass

    # --- CHUNKED LOADING ---

    @property
    def num_chunks(self) -> int:
        return self._get_num_chunks()

    def load(self, chunk_index: Optional[int] = None, num_chunks: Optional[int] = None) -> int:
        """
        Load a window of chunks, or every chunk when called without arguments.

        Args:
            chunk_index: First chunk to load.
            num_chunks: Number of chunks to load, > 0.

        Returns:
            The backend's count of loaded events, negative on soft failure.

        Raises:
            ValueError: If num_chunks is 0.
            IndexError: If the window reaches past the reported chunk count.
        """
        if chunk_index is None and num_chunks is None:
            return self.load(0, self.num_chunks)
        if chunk_index is None or num_chunks is None:
            raise TypeError("load() takes either no arguments or both chunk_index and num_chunks")

        if num_chunks <= 0:
            raise ValueError(f"{self.__class__.__name__}.load: num_chunks must be > 0, got {num_chunks}")
        total = self.num_chunks
        if chunk_index < 0 or chunk_index + num_chunks > total:
            raise IndexError(f"{self.__class__.__name__}.load: chunks [{chunk_index}, "
                             f"{chunk_index + num_chunks}) out of range (0, {total})")

        loaded = self._load(chunk_index, num_chunks)
        if loaded < 0:
            logger.warning(f"Loading chunks [{chunk_index}, {chunk_index + num_chunks}) failed ({loaded}).")
        else:
            logger.debug(f"Loaded {loaded} events from chunks [{chunk_index}, {chunk_index + num_chunks}).")
        return loaded

    def before_generate(self) -> None:
        """
        Called by samplers right before a voxelization pass.

        Makes sure a requested spatial index reflects the current events so
        the pass itself does not pay for the rebuild. Backends overriding this
        should call the base implementation last.
        """
        if self._index_requested:
            self._index.build()

    # --- BUFFER ---

    @property
    def buffer(self) -> EventBuffer:
        return self._buffer

    @property
    def num_events(self) -> int:
        return self._buffer.num_events

    def resize(self, num_events: int) -> None:
        self._buffer.resize(num_events)

    def update(self, index: int, position: PositionLike, radius: float, value: float) -> bool:
        return self._buffer.update(index, position, radius, value)

    def assign(self, start: int, positions: npt.ArrayLike, radii: npt.ArrayLike, values: npt.ArrayLike) -> bool:
        return self._buffer.assign(start, positions, radii, values)

    @property
    def positions_x(self) -> npt.NDArray[np.float32]:
        return self._buffer.positions_x

    @property
    def positions_y(self) -> npt.NDArray[np.float32]:
        return self._buffer.positions_y

    @property
    def positions_z(self) -> npt.NDArray[np.float32]:
        return self._buffer.positions_z

    @property
    def radii(self) -> npt.NDArray[np.float32]:
        """Stored radii, 1/radius (see EventBuffer)."""
        return self._buffer.radii

    @property
    def values(self) -> npt.NDArray[np.float32]:
        return self._buffer.values

    @property
    def mutable_values(self) -> npt.NDArray[np.float32]:
        return self._buffer.mutable_values

    def __getitem__(self, index: int) -> float:
        return float(self._buffer.values[index])

    def __setitem__(self, index: int, value: float) -> None:
        self._buffer.mutable_values[index] = value

    @property
    def bounding_box(self) -> AABB:
        return self._buffer.bounding_box

    def set_bounding_box(self, box: AABB) -> None:
        self._buffer.set_bounding_box(box)

    @property
    def cutoff_distance(self) -> float:
        return self.config.cutoff_distance

    # --- PERSISTENCE ---

    def read(self, filepath: PathLike) -> bool:
        return EventIO.read(self._buffer, filepath)

    def write(self, filepath: PathLike, file_format: Union[EventFileFormat, str] = EventFileFormat.BINARY) -> bool:
        return EventIO.write(self._buffer, filepath, file_format)

    # --- SPATIAL INDEX ---

    @property
    def spatial_index(self) -> SpatialIndex:
        return self._index

    def build_index(self) -> None:
        """
        Build the spatial index now and keep it up to date from here on.

        After this call any query following a mutation rebuilds the index.
        """
        self._index_requested = True
        self._index.build()

    def find_events(self, box: AABB) -> npt.NDArray[np.float32]:
        """
        Values of the events whose position lies inside box (inclusive).

        Returns an empty array, with a one-time warning, while no index is
        available: spatial queries disabled, build_index() never called, or
        no events. The order of the values is unspecified.
        """
        ordinals = self._index.query(box, rebuild=self._index_requested)
        if ordinals is None:
            if not self._index_warning_emitted:
                self._index_warning_emitted = True
                logger.warning("RTree not available for find_events. No events will be returned")
            return np.empty(0, dtype=np.float32)
        return self._buffer.values[ordinals]

    # --- FRAMES & TIME ---

    @property
    def dt(self) -> float:
        return self._frames.dt

    def set_dt(self, dt: float) -> None:
        self._frames.set_dt(dt)

    @property
    def duration(self) -> float:
        return self._frames.duration

    @property
    def current_time(self) -> Optional[float]:
        return self._frames.current_time

    @property
    def source_type(self) -> SourceType:
        return self._get_type()

    @property
    def time_range(self) -> TimeInterval:
        return self._get_time_range()

    def get_frame_range(self) -> FrameRange:
        return self._frames.get_frame_range(self._get_time_range(), self._get_type())

    def is_in_frame_range(self, frame: int) -> bool:
        return self._frames.is_in_frame_range(frame, self._get_time_range(), self._get_type())

    def set_frame(self, frame: int) -> bool:
        return self._frames.set_frame(frame, self._get_time_range(), self._get_type())

    def set_time(self, time: float) -> None:
        self._frames.set_time(time)
