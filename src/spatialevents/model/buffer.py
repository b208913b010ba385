"""
Event Buffer (Columnar Storage)
===============================
This module defines the in-memory storage every other part of the store
reads from or writes to.

Why is this file needed?
------------------------
1. Layout: Events are kept as a structure of arrays. The five fields
   (position x/y/z, radius, value) each live in their own contiguous float32
   column inside ONE block aligned to ALIGN_BOUNDARY bytes, so sampling
   kernels can stream a single column with vector loads.
2. Capacity: The logical size (num_events) and the allocated size (capacity)
   are distinct. Shrinking only updates num_events; growing past capacity
   allocates a new block.
3. Notification: Derived data (the spatial index) registers a listener and is
   invalidated on every mutation.

Stored representation:
    The radius column holds 1/radius, or the radius itself when
    |radius| <= float32 epsilon. Sampling kernels multiply by it instead of
    dividing. The original radius cannot be recovered from the buffer.

Classes:
    EventBuffer: The aligned, resizable columnar container.
"""
from __future__ import annotations

import logging
from typing import Callable, TYPE_CHECKING

import numpy as np

from spatialevents.config import ALIGN_BOUNDARY
from spatialevents.model.geometry_primitives import AABB, Vector, PositionLike
from spatialevents.utils import reciprocal_radius, reciprocal_radii

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

POS_X, POS_Y, POS_Z, RADIUS, VALUE = range(5)
NUM_FIELDS = 5
ITEM_SIZE = np.dtype(np.float32).itemsize


def _allocate_aligned(count: int, alignment: int) -> npt.NDArray[np.float32]:
    """
    Allocate count float32 slots whose first element sits on an alignment boundary.

    Over-allocates a byte array by one alignment unit and returns the aligned
    float32 view into it; the view keeps the byte array alive.
    """
    nbytes = count * ITEM_SIZE
    raw = np.empty(nbytes + alignment, dtype=np.uint8)
    offset = (-raw.ctypes.data) % alignment
    block = raw[offset:offset + nbytes].view(np.float32)
    if block.ctypes.data % alignment:
        raise MemoryError(f"Could not align block to {alignment} bytes")
    return block


def _allocate_unaligned(count: int) -> npt.NDArray[np.float32]:
    """Plain zero-initialized allocation, used when the aligned one fails."""
    return np.zeros(count, dtype=np.float32)


class EventBuffer:
    """
    Aligned structure-of-arrays buffer of events.

    Each column spans `stride` float32 slots, where stride is the capacity
    rounded up to a whole number of alignment units; column k starts at
    k * stride, so every column is aligned when the block is.
    """

    def __init__(self, align_boundary: int = ALIGN_BOUNDARY) -> None:
        """
        Initialize an empty buffer.

        Args:
            align_boundary: Byte alignment of the block, a multiple of 4.
        """
        if align_boundary <= 0 or align_boundary % ITEM_SIZE:
            raise ValueError(f"align_boundary must be a positive multiple of {ITEM_SIZE}, got {align_boundary}")
        self._align_boundary = align_boundary
        self._num_events: int = 0
        self._capacity: int = 0
        self._stride: int = 0
        self._block: npt.NDArray[np.float32] = _allocate_aligned(0, align_boundary)
        self._aligned: bool = True
        self._bounding_box = AABB()
        self._listeners: list[Callable[[], None]] = []

    def __len__(self) -> int:
        return self._num_events

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(num_events={self._num_events}, "
                f"capacity={self._capacity}, aligned={self._aligned})")

    # --- SIZE & ALLOCATION ---

    @property
    def num_events(self) -> int:
        return self._num_events

    @property
    def capacity(self) -> int:
        """Number of events the current block can hold without reallocating."""
        return self._capacity

    @property
    def align_boundary(self) -> int:
        return self._align_boundary

    @property
    def is_aligned(self) -> bool:
        """False only when the aligned allocation failed and the fallback was used."""
        return self._aligned

    @property
    def nbytes(self) -> int:
        return self._block.nbytes

    def resize(self, num_events: int) -> None:
        """
        Set the logical number of events.

        Within capacity this never reallocates. Above capacity a new block is
        allocated and the first min(old, new) events are carried over; the
        remaining slots hold undefined values until written.

        Args:
            num_events: New logical size.

        Raises:
            ValueError: If num_events is negative.
            MemoryError: If neither the aligned nor the fallback allocation succeeds.
        """
        num_events = int(num_events)
        if num_events < 0:
            raise ValueError(f"Cannot resize to a negative number of events ({num_events})")

        if num_events <= self._capacity:
            self._num_events = num_events
            self._notify()
            return

        old_block, old_stride, keep = self._block, self._stride, min(self._num_events, num_events)
        stride = self._padded_stride(num_events)
        block, aligned = self._allocate(stride * NUM_FIELDS)

        for column in range(NUM_FIELDS):
            if keep:
                block[column * stride:column * stride + keep] = old_block[column * old_stride:column * old_stride + keep]

        self._block = block
        self._aligned = aligned
        self._stride = stride
        self._capacity = num_events
        self._num_events = num_events
        logger.debug(f"Allocated {num_events} events ({block.nbytes} bytes, aligned={aligned}).")
        self._notify()

    def _padded_stride(self, capacity: int) -> int:
        lanes = self._align_boundary // ITEM_SIZE
        return -(-capacity // lanes) * lanes

    def _allocate(self, count: int) -> tuple[npt.NDArray[np.float32], bool]:
        try:
            return _allocate_aligned(count, self._align_boundary), True
        except MemoryError:
            logger.warning("Memory alignment failed. Trying normal allocation")

        try:
            block = _allocate_unaligned(count)
        except MemoryError as e:
            logger.error(f"Failed to allocate {count * ITEM_SIZE} bytes for the event buffer.")
            raise MemoryError(f"Cannot allocate event buffer of {count * ITEM_SIZE} bytes") from e
        return block, block.ctypes.data % self._align_boundary == 0

    # --- MUTATION ---

    def update(self, index: int, position: PositionLike, radius: float, value: float) -> bool:
        """
        Write one event.

        Out-of-range indices are not an error: the write is dropped with a
        warning and False is returned. Callers needing strict semantics must
        check bounds themselves.

        Args:
            index: Event ordinal, 0 <= index < num_events.
            position: (x, y, z) of the event.
            radius: Input radius; stored as its reciprocal.
            value: Scalar value.

        Returns:
            True if the event was written.
        """
        if not 0 <= index < self._num_events:
            logger.warning(f"The specified index {index} is not valid (num_events={self._num_events}). "
                           f"Event not added")
            return False

        x, y, z = (float(np.float32(c)) for c in Vector.from_any(position))
        self._bounding_box.merge((x, y, z))

        stride = self._stride
        self._block[POS_X * stride + index] = x
        self._block[POS_Y * stride + index] = y
        self._block[POS_Z * stride + index] = z
        self._block[RADIUS * stride + index] = reciprocal_radius(radius)
        self._block[VALUE * stride + index] = value
        self._notify()
        return True

    def assign(
        self,
        start: int,
        positions: npt.ArrayLike,
        radii: npt.ArrayLike,
        values: npt.ArrayLike,
        stored_radii: bool = False
    ) -> bool:
        """
        Bulk form of update() for the rows [start, start + k).

        The whole block is dropped with a warning when it does not fit inside
        num_events, mirroring update().

        Args:
            start: First ordinal to write.
            positions: (k, 3) positions.
            radii: (k,) input radii, stored as reciprocals.
            stored_radii: radii are already in stored form and are copied as
                they are. Used when restoring a buffer from a file.
            values: (k,) scalar values.

        Returns:
            True if the rows were written.

        Raises:
            ValueError: If the three inputs disagree on k.
        """
        pos = np.asarray(positions, dtype=np.float32).reshape(-1, 3)
        rad = np.asarray(radii, dtype=np.float32).reshape(-1)
        val = np.asarray(values, dtype=np.float32).reshape(-1)
        count = pos.shape[0]
        if rad.shape[0] != count or val.shape[0] != count:
            raise ValueError(f"Mismatched input lengths: {count} positions, {rad.shape[0]} radii, "
                             f"{val.shape[0]} values")

        if start < 0 or start + count > self._num_events:
            logger.warning(f"Rows [{start}, {start + count}) are not valid (num_events={self._num_events}). "
                           f"Events not added")
            return False
        if count == 0:
            return True

        self._bounding_box.merge_points(pos)
        self._column_slice(POS_X, start, count)[:] = pos[:, 0]
        self._column_slice(POS_Y, start, count)[:] = pos[:, 1]
        self._column_slice(POS_Z, start, count)[:] = pos[:, 2]
        self._column_slice(RADIUS, start, count)[:] = rad if stored_radii else reciprocal_radii(rad)
        self._column_slice(VALUE, start, count)[:] = val
        self._notify()
        return True

    # --- COLUMN ACCESS ---

    def _column_slice(self, column: int, start: int, count: int) -> npt.NDArray[np.float32]:
        base = column * self._stride + start
        return self._block[base:base + count]

    def _readonly_column(self, column: int) -> npt.NDArray[np.float32]:
        view = self._column_slice(column, 0, self._num_events)
        view.flags.writeable = False
        return view

    @property
    def positions_x(self) -> npt.NDArray[np.float32]:
        return self._readonly_column(POS_X)

    @property
    def positions_y(self) -> npt.NDArray[np.float32]:
        return self._readonly_column(POS_Y)

    @property
    def positions_z(self) -> npt.NDArray[np.float32]:
        return self._readonly_column(POS_Z)

    @property
    def radii(self) -> npt.NDArray[np.float32]:
        """Stored radii, i.e. 1/radius (see module docstring)."""
        return self._readonly_column(RADIUS)

    @property
    def values(self) -> npt.NDArray[np.float32]:
        return self._readonly_column(VALUE)

    @property
    def mutable_values(self) -> npt.NDArray[np.float32]:
        """
        Writable view over the value column only.

        Meant for sampling passes that recompute values per frame. Writing
        through it leaves geometry (and therefore the spatial index) untouched.
        """
        return self._column_slice(VALUE, 0, self._num_events)

    @property
    def positions(self) -> npt.NDArray[np.float32]:
        """(num_events, 3) copy of the positions."""
        return np.column_stack((self.positions_x, self.positions_y, self.positions_z))

    # --- BOUNDING BOX ---

    @property
    def bounding_box(self) -> AABB:
        """Box around every position merged so far (a copy)."""
        return self._bounding_box.copy()

    def set_bounding_box(self, box: AABB) -> None:
        self._bounding_box = box.copy()

    def reset_bounding_box(self) -> None:
        self._bounding_box = AABB()

    # --- LISTENERS ---

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callable invoked after every resize/update/assign."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in self._listeners:
            callback()
