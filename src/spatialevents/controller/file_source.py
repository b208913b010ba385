from __future__ import annotations

import logging
import os
from typing import Optional

from spatialevents.config import EventSourceConfig
from spatialevents.controller.frames import SourceType, TimeInterval
from spatialevents.controller.source import EventSource
from spatialevents.model.io import PathLike

logger = logging.getLogger(__name__)


class FileEventSource(EventSource):
    """
    Source backed by a single event file (binary, text or HDF5).

    The whole file is one chunk and one frame of already binned data.
    """

    def __init__(
        self,
        filepath: PathLike,
        config: Optional[EventSourceConfig] = None,
        time_range: Optional[TimeInterval] = None
    ) -> None:
        """
        Args:
            filepath: Event file to load on load().
            config: Source configuration.
            time_range: Interval the file's events represent; one time step
                starting at 0 when omitted.
        """
        super().__init__(config)
        self.filepath = os.fspath(filepath)
        self._time_range: TimeInterval = time_range if time_range is not None else (0.0, self.config.dt)

    def _get_num_chunks(self) -> int:
        return 1

    def _load(self, chunk_index: int, num_chunks: int) -> int:
        if not self.read(self.filepath):
            logger.error(f"Could not load events from {self.filepath}")
            return -1
        return self.num_events

    def _get_time_range(self) -> TimeInterval:
        return self._time_range

    def _get_type(self) -> SourceType:
        return SourceType.FRAME
