from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

FLOAT32_EPS = float(np.finfo(np.float32).eps)


def reciprocal_radius(radius: float) -> float:
    """Stored form of a radius: 1/radius, or the radius itself when |radius| <= eps."""
    radius = float(np.float32(radius))
    if abs(radius) > FLOAT32_EPS:
        return float(np.float32(1.0) / np.float32(radius))
    return radius


def reciprocal_radii(radii: npt.ArrayLike) -> npt.NDArray[np.float32]:
    """Vectorized reciprocal_radius, returns a new float32 array."""
    radii = np.asarray(radii, dtype=np.float32)
    stored = radii.copy()
    invert = np.abs(radii) > FLOAT32_EPS
    np.divide(np.float32(1.0), radii, out=stored, where=invert)
    return stored
