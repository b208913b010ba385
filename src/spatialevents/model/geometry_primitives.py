"""
Geometric Primitives for event positions and spatial queries.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator, Sequence, Union, TYPE_CHECKING
import math
import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt


@dataclass
class Vector:
    """
    A vector (or position) in 3D space.
    """
    x: float
    y: float
    z: float = 0.0

    def __add__(self, other: Vector) -> Vector:
        return Vector(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: Vector) -> Vector:
        return Vector(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, scalar: float) -> Vector:
        return Vector(self.x * scalar, self.y * scalar, self.z * scalar)

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y
        yield self.z

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    def to_array(self) -> npt.NDArray[np.float64]:
        return np.array([self.x, self.y, self.z])

    @staticmethod
    def from_any(value: PositionLike) -> Vector:
        """Accepts a Vector, a 3-sequence or a numpy array of length 3."""
        if isinstance(value, Vector):
            return value
        x, y, z = (float(c) for c in value)
        return Vector(x, y, z)


PositionLike = Union[Vector, Sequence[float], "npt.NDArray[np.floating]"]


def _inf_vector() -> Vector:
    return Vector(math.inf, math.inf, math.inf)


def _neg_inf_vector() -> Vector:
    return Vector(-math.inf, -math.inf, -math.inf)


@dataclass
class AABB:
    """
    Axis-aligned bounding box.

    A default-constructed box is empty (min = +inf, max = -inf) so that the
    first merge makes it the degenerate box around that point.
    """
    minimum: Vector = field(default_factory=_inf_vector)
    maximum: Vector = field(default_factory=_neg_inf_vector)

    @staticmethod
    def from_bounds(minimum: PositionLike, maximum: PositionLike) -> AABB:
        return AABB(Vector.from_any(minimum), Vector.from_any(maximum))

    @staticmethod
    def from_points(points: npt.ArrayLike) -> AABB:
        """Smallest box containing every row of an (n, 3) array."""
        box = AABB()
        box.merge_points(points)
        return box

    @property
    def is_empty(self) -> bool:
        return (self.minimum.x > self.maximum.x
                or self.minimum.y > self.maximum.y
                or self.minimum.z > self.maximum.z)

    @property
    def size(self) -> Vector:
        if self.is_empty:
            return Vector(0.0, 0.0, 0.0)
        return self.maximum - self.minimum

    @property
    def center(self) -> Vector:
        return (self.minimum + self.maximum) * 0.5

    def merge(self, point: PositionLike) -> None:
        """Grow the box to contain point."""
        p = Vector.from_any(point)
        self.minimum = Vector(min(self.minimum.x, p.x), min(self.minimum.y, p.y), min(self.minimum.z, p.z))
        self.maximum = Vector(max(self.maximum.x, p.x), max(self.maximum.y, p.y), max(self.maximum.z, p.z))

    def merge_points(self, points: npt.ArrayLike) -> None:
        """Grow the box to contain every row of an (n, 3) array."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if pts.shape[0] == 0:
            return
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        self.merge(lo)
        self.merge(hi)

    def contains(self, point: PositionLike) -> bool:
        """Inclusive containment test."""
        p = Vector.from_any(point)
        return (self.minimum.x <= p.x <= self.maximum.x
                and self.minimum.y <= p.y <= self.maximum.y
                and self.minimum.z <= p.z <= self.maximum.z)

    def intersects(self, other: AABB) -> bool:
        if self.is_empty or other.is_empty:
            return False
        return (self.minimum.x <= other.maximum.x and other.minimum.x <= self.maximum.x
                and self.minimum.y <= other.maximum.y and other.minimum.y <= self.maximum.y
                and self.minimum.z <= other.maximum.z and other.minimum.z <= self.maximum.z)

    def to_arrays(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """(min, max) as float64 arrays of shape (3,)."""
        return self.minimum.to_array(), self.maximum.to_array()

    def copy(self) -> AABB:
        return AABB(Vector(*self.minimum), Vector(*self.maximum))
