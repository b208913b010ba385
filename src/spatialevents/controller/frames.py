"""
Frame & Time Control
====================
Turns a flat, time-stamped data set into a sequence of addressable frames.

Frames are spaced dt apart; frame f starts at t0 + dt * f, where [t0, t1] is
the time interval covered by the data. The valid frames form a half-open range
[first, last) whose computation depends on the kind of source:

    EVENT  Discrete point-in-time events aggregated over a trailing window of
           length `duration`. A frame is only complete once the window fits
           inside the data, so the last usable start time is t1 - duration:
               [floor(t0 / dt), floor((t1 - duration) / dt) + 1)
           and [0, 0) when t1 - duration < t0.
    FRAME  Data already binned in time:
               [floor(t0 / dt), ceil(t1 / dt))

Selecting a frame or a time only records current_time; it never loads data.
Loaders read current_time to decide what to fetch next.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

TimeInterval = tuple[float, float]


class SourceType(StrEnum):
    EVENT = "event"
    FRAME = "frame"


@dataclass(frozen=True)
class FrameRange:
    """Half-open interval [first, last) of frame indices."""
    first: int
    last: int

    @property
    def is_empty(self) -> bool:
        return self.last <= self.first

    def contains(self, frame: int) -> bool:
        return self.first <= frame < self.last

    def __contains__(self, frame: int) -> bool:
        return self.contains(frame)

    def __len__(self) -> int:
        return max(0, self.last - self.first)

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.first, self.last))


EMPTY_FRAME_RANGE = FrameRange(0, 0)


class FrameController:
    """
    Holds dt, duration and the current time of a source.

    The data interval and source kind belong to the owning source and are
    passed in on every call, so the frame range is always recomputed from the
    current configuration.
    """

    def __init__(self, dt: float, duration: float = 0.0) -> None:
        """
        Args:
            dt: Time step between frames, > 0.
            duration: Aggregation window of event-kind sources, >= 0.
        """
        if not dt > 0.0:
            raise ValueError(f"dt must be > 0, got {dt}")
        if not duration >= 0.0:
            raise ValueError(f"duration must be >= 0, got {duration}")
        self._dt = float(dt)
        self._duration = float(duration)
        self._current_time: Optional[float] = None

    @property
    def dt(self) -> float:
        return self._dt

    def set_dt(self, dt: float) -> None:
        if not dt > 0.0:
            raise ValueError(f"dt must be > 0, got {dt}")
        self._dt = float(dt)

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def current_time(self) -> Optional[float]:
        """Last time set, None until set_time or set_frame succeeded."""
        return self._current_time

    def get_frame_range(self, interval: TimeInterval, source_type: SourceType) -> FrameRange:
        t0, t1 = interval
        if source_type == SourceType.EVENT:
            end_time = t1 - self._duration
            if end_time < t0:
                return EMPTY_FRAME_RANGE
            # frame floor(end/dt) is complete; +1 closes the half-open range
            return FrameRange(math.floor(t0 / self._dt), math.floor(end_time / self._dt) + 1)

        return FrameRange(math.floor(t0 / self._dt), math.ceil(t1 / self._dt))

    def is_in_frame_range(self, frame: int, interval: TimeInterval, source_type: SourceType) -> bool:
        return self.get_frame_range(interval, source_type).contains(frame)

    def set_frame(self, frame: int, interval: TimeInterval, source_type: SourceType) -> bool:
        """
        Move to the start time of frame.

        Returns:
            False, without changing the current time, if frame is out of range.
        """
        frame_range = self.get_frame_range(interval, source_type)
        if not frame_range.contains(frame):
            logger.warning(f"Frame {frame} is outside of the frame range "
                           f"[{frame_range.first}, {frame_range.last}).")
            return False

        self.set_time(interval[0] + self._dt * frame)
        return True

    def set_time(self, time: float) -> None:
        self._current_time = float(time)
