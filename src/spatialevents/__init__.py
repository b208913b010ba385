"""
Spatial event store: columnar storage, persistence, box queries and frame
windowing for (position, radius, value) events consumed by sampling kernels.
"""
from spatialevents.config import EventSourceConfig
from spatialevents.controller.file_source import FileEventSource
from spatialevents.controller.frames import FrameController, FrameRange, SourceType
from spatialevents.controller.source import EventSource
from spatialevents.model.buffer import EventBuffer
from spatialevents.model.geometry_primitives import AABB, Vector
from spatialevents.model.io import EventFileFormat, EventIO
from spatialevents.model.spatial_index import NullSpatialIndex, RTreeIndex, SpatialIndex

__all__ = [
    "AABB",
    "EventBuffer",
    "EventFileFormat",
    "EventIO",
    "EventSource",
    "EventSourceConfig",
    "FileEventSource",
    "FrameController",
    "FrameRange",
    "NullSpatialIndex",
    "RTreeIndex",
    "SourceType",
    "SpatialIndex",
    "Vector",
]
