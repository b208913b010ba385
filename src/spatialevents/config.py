"""
Configuration & Global Constants
================================
This module serves as the central registry for the store's tunables and for
the configuration values an event source consumes from its owning context.

Why is this file needed?
------------------------
1. Abstraction: It prevents magic numbers (alignment, R-tree fan-out, file
   magic) from being scattered throughout the code.
2. Decoupling: Whatever parses the command line or a project file only has to
   produce an EventSourceConfig; the store never parses anything itself.

Exports:
    ALIGN_BOUNDARY (int): Byte alignment of the event buffer block.
    RTREE_MAX_NODE_ENTRIES (int): Maximum number of entries per R-tree node.
    RTREE_MIN_NODE_ENTRIES (int): Minimum number of entries per non-root node.
    PRODUCER_VERSION (str): Version string written into event file headers.
    EventSourceConfig: Time step, duration and cutoff distance of a source.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from importlib.metadata import version, PackageNotFoundError
from typing import Any, Dict

logger = logging.getLogger(__name__)

try:
    PRODUCER_VERSION = version("spatialevents")
except PackageNotFoundError:
    PRODUCER_VERSION = "0.0.0-dev"

# Global Constants
ALIGN_BOUNDARY: int = 32  # bytes, one AVX register

RTREE_MAX_NODE_ENTRIES: int = 64
RTREE_MIN_NODE_ENTRIES: int = 16

DEFAULT_DT: float = 10.0  # ms
DEFAULT_DURATION: float = 10.0  # ms
DEFAULT_CUTOFF_DISTANCE: float = 100.0  # um


@dataclass
class EventSourceConfig:
    """
    Configuration consumed by an EventSource.

    Attributes:
        dt: Time step between two frames. Must be > 0.
        duration: Post-event aggregation window, only used by event-kind
            sources. Must be >= 0.
        cutoff_distance: Support radius of the sampling kernels. Stored and
            handed to consumers, never interpreted by the store.
        spatial_index: Whether the source carries a real R-tree or the null
            index.
    """
    dt: float = DEFAULT_DT
    duration: float = DEFAULT_DURATION
    cutoff_distance: float = DEFAULT_CUTOFF_DISTANCE
    spatial_index: bool = True

    def __post_init__(self) -> None:
        if not self.dt > 0.0:
            raise ValueError(f"dt must be > 0, got {self.dt}")
        if not self.duration >= 0.0:
            raise ValueError(f"duration must be >= 0, got {self.duration}")
        if not self.cutoff_distance >= 0.0:
            raise ValueError(f"cutoff_distance must be >= 0, got {self.cutoff_distance}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> EventSourceConfig:
        """Build a config from a mapping, ignoring unknown keys."""
        known = {key: data[key] for key in ("dt", "duration", "cutoff_distance", "spatial_index") if key in data}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        return EventSourceConfig(**known)
