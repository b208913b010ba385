"""
Spatial Index
=============
Bounding-box queries over event positions.

The index is DERIVED data: it is cleared whenever the event buffer mutates and
rebuilt in full, by bulk loading, the next time it is needed. It is never
updated incrementally. Between a mutation and the next rebuild it is simply
absent, never stale.

Two implementations share the SpatialIndex interface:
    RTreeIndex: Sort-Tile-Recursive packed R-tree, queried by a JIT kernel.
    NullSpatialIndex: Used when spatial queries are disabled; always empty.

Concurrency:
    RTreeIndex serializes build, clear and query on one re-entrant lock. A
    rebuild constructs the complete tree first and swaps it in afterwards.
"""
from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, TYPE_CHECKING

import numba as nb
import numpy as np

from spatialevents.config import RTREE_MAX_NODE_ENTRIES, RTREE_MIN_NODE_ENTRIES

if TYPE_CHECKING:
    import numpy.typing as npt
    from spatialevents.model.geometry_primitives import AABB

logger = logging.getLogger(__name__)

PositionsProvider = Callable[[], "npt.NDArray[np.float32]"]


@nb.njit(cache=True)
def _query_kernel(node_lo, node_hi, node_first, node_count, node_leaf, root,
                  points, ordinals, qlo, qhi, out):
    """
    Depth-first traversal collecting ordinals of points inside [qlo, qhi].

    Writes at most len(out) ordinals but keeps counting past that, so the
    caller can detect a too small buffer and retry. Returns the hit count.
    """
    capacity = out.shape[0]
    hits = 0
    # every node is pushed at most once
    stack = np.empty(node_lo.shape[0], dtype=np.int64)
    stack[0] = root
    top = 1
    while top > 0:
        top -= 1
        node = stack[top]
        if (node_lo[node, 0] > qhi[0] or node_hi[node, 0] < qlo[0]
                or node_lo[node, 1] > qhi[1] or node_hi[node, 1] < qlo[1]
                or node_lo[node, 2] > qhi[2] or node_hi[node, 2] < qlo[2]):
            continue
        first = node_first[node]
        last = first + node_count[node]
        if node_leaf[node]:
            for k in range(first, last):
                if (qlo[0] <= points[k, 0] and points[k, 0] <= qhi[0]
                        and qlo[1] <= points[k, 1] and points[k, 1] <= qhi[1]
                        and qlo[2] <= points[k, 2] and points[k, 2] <= qhi[2]):
                    if hits < capacity:
                        out[hits] = ordinals[k]
                    hits += 1
        else:
            for k in range(first, last):
                stack[top] = k
                top += 1
    return hits


def _str_order(centers: npt.NDArray[np.floating], node_capacity: int) -> npt.NDArray[np.int64]:
    """
    Sort-Tile-Recursive ordering of n entries in 3D.

    Entries are sorted by x and cut into slabs, each slab sorted by y and cut
    into runs, each run sorted by z. Consecutive entries of the result are
    spatially close, so packing them in order gives tight node boxes.
    """
    n = centers.shape[0]
    groups = -(-n // node_capacity)
    slices = max(1, math.ceil(groups ** (1.0 / 3.0)))
    slab_size = slices * slices * node_capacity
    run_size = slices * node_capacity

    order = np.argsort(centers[:, 0], kind="stable")
    for a in range(0, n, slab_size):
        slab = order[a:a + slab_size]
        slab = slab[np.argsort(centers[slab, 1], kind="stable")]
        for b in range(0, slab.shape[0], run_size):
            run = slab[b:b + run_size]
            slab[b:b + run_size] = run[np.argsort(centers[run, 2], kind="stable")]
        order[a:a + slab_size] = slab
    return order


def _pack(n: int, node_capacity: int) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    """
    Split n ordered entries into ceil(n / capacity) runs of near-equal size.

    Sizes differ by at most one, so with capacity >= 2 * min_entries every
    run of a multi-node level holds at least min_entries entries.
    """
    groups = -(-n // node_capacity)
    base, extra = divmod(n, groups)
    counts = np.full(groups, base, dtype=np.int64)
    counts[:extra] += 1
    starts = np.zeros(groups, dtype=np.int64)
    np.cumsum(counts[:-1], out=starts[1:])
    return starts, counts


@dataclass
class _PackedTree:
    """Flat array form of the R-tree, laid out level by level with the root last."""
    node_lo: npt.NDArray[np.float32]
    node_hi: npt.NDArray[np.float32]
    node_first: npt.NDArray[np.int64]
    node_count: npt.NDArray[np.int64]
    node_leaf: npt.NDArray[np.bool_]
    root: int
    height: int
    points: npt.NDArray[np.float32]
    ordinals: npt.NDArray[np.int64]

    @property
    def number_of_nodes(self) -> int:
        return self.node_lo.shape[0]

    @property
    def number_of_entries(self) -> int:
        return self.points.shape[0]


def _bulk_load(points: npt.NDArray[np.float32], max_entries: int) -> _PackedTree:
    """
    Build a packed R-tree over (n, 3) points, n > 0.

    Leaves hold (position, ordinal) pairs; internal nodes hold contiguous
    ranges of the level below.
    """
    n = points.shape[0]
    order = _str_order(points, max_entries)
    sorted_points = np.ascontiguousarray(points[order])
    ordinals = order.astype(np.int64)

    starts, counts = _pack(n, max_entries)
    level_lo = np.minimum.reduceat(sorted_points, starts, axis=0)
    level_hi = np.maximum.reduceat(sorted_points, starts, axis=0)
    level_first, level_count = starts, counts
    level_leaf = np.ones(starts.shape[0], dtype=np.bool_)

    lo_parts, hi_parts, first_parts, count_parts, leaf_parts = [], [], [], [], []
    base = 0
    height = 1
    while True:
        m = level_lo.shape[0]
        if m > 1:
            # reorder this level before packing it into parents
            order = _str_order((level_lo + level_hi) * 0.5, max_entries)
            level_lo, level_hi = level_lo[order], level_hi[order]
            level_first, level_count, level_leaf = level_first[order], level_count[order], level_leaf[order]

        lo_parts.append(level_lo)
        hi_parts.append(level_hi)
        first_parts.append(level_first)
        count_parts.append(level_count)
        leaf_parts.append(level_leaf)
        if m == 1:
            root = base
            break

        starts, counts = _pack(m, max_entries)
        parent_lo = np.minimum.reduceat(level_lo, starts, axis=0)
        parent_hi = np.maximum.reduceat(level_hi, starts, axis=0)
        level_first, level_count = base + starts, counts
        level_lo, level_hi = parent_lo, parent_hi
        level_leaf = np.zeros(starts.shape[0], dtype=np.bool_)
        base += m
        height += 1

    return _PackedTree(
        node_lo=np.ascontiguousarray(np.concatenate(lo_parts), dtype=np.float32),
        node_hi=np.ascontiguousarray(np.concatenate(hi_parts), dtype=np.float32),
        node_first=np.concatenate(first_parts).astype(np.int64),
        node_count=np.concatenate(count_parts).astype(np.int64),
        node_leaf=np.concatenate(leaf_parts),
        root=root,
        height=height,
        points=sorted_points,
        ordinals=ordinals,
    )


class SpatialIndex(ABC):
    """
    Interface of a box-query index over the positions of an event buffer.
    """

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether this index can ever answer queries."""
        pass

    @property
    @abstractmethod
    def is_empty(self) -> bool:
        pass

    @abstractmethod
    def build(self) -> None:
        """Bulk-load the index from the current positions. No-op when already built."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def query(self, box: AABB, rebuild: bool = False) -> Optional[npt.NDArray[np.int64]]:
        """
        Ordinals of the events whose position lies inside box (inclusive).

        Args:
            box: Query box.
            rebuild: Build the index first if it is empty.

        Returns:
            The ordinals in no particular order, or None when the index is
            empty and could not answer.
        """
        pass


class NullSpatialIndex(SpatialIndex):
    """Index used when spatial queries are disabled."""

    @property
    def available(self) -> bool:
        return False

    @property
    def is_empty(self) -> bool:
        return True

    def build(self) -> None:
        pass

    def clear(self) -> None:
        pass

    def query(self, box: AABB, rebuild: bool = False) -> Optional[npt.NDArray[np.int64]]:
        return None


class RTreeIndex(SpatialIndex):
    """
    Packed R-tree over event positions.

    Bulk loading uses Sort-Tile-Recursive packing with at most max_entries
    and (below the root) at least min_entries children per node.
    """

    def __init__(
        self,
        positions: PositionsProvider,
        max_entries: int = RTREE_MAX_NODE_ENTRIES,
        min_entries: int = RTREE_MIN_NODE_ENTRIES
    ) -> None:
        """
        Args:
            positions: Callable returning the current (n, 3) float32 positions.
            max_entries: Node fan-out upper bound.
            min_entries: Node fan-out lower bound for non-root nodes.
        """
        if min_entries < 1 or max_entries < 2 * min_entries:
            raise ValueError(f"Need 1 <= min_entries <= max_entries / 2, got {min_entries}/{max_entries}")
        self._positions = positions
        self.max_entries = max_entries
        self.min_entries = min_entries
        self._lock = threading.RLock()
        self._tree: Optional[_PackedTree] = None
        # largest result seen so far, used to size the next hit buffer
        self._max_hits: int = 0

    @property
    def available(self) -> bool:
        return True

    @property
    def is_empty(self) -> bool:
        return self._tree is None

    @property
    def height(self) -> int:
        tree = self._tree
        return tree.height if tree is not None else 0

    @property
    def number_of_nodes(self) -> int:
        tree = self._tree
        return tree.number_of_nodes if tree is not None else 0

    @property
    def max_hits(self) -> int:
        return self._max_hits

    def build(self) -> None:
        with self._lock:
            if self._tree is not None:
                return

            points = np.asarray(self._positions(), dtype=np.float32).reshape(-1, 3)
            if points.shape[0] == 0:
                logger.debug("No events to index.")
                return

            logger.info(f"Building rtree for {points.shape[0]} events")
            tree = _bulk_load(points, self.max_entries)
            self._tree = tree
            logger.info(f"Rtree built: {tree.number_of_entries} entries in {tree.number_of_nodes} nodes, "
                        f"height {tree.height}")

    def clear(self) -> None:
        with self._lock:
            self._tree = None

    def query(self, box: AABB, rebuild: bool = False) -> Optional[npt.NDArray[np.int64]]:
        with self._lock:
            if self._tree is None and rebuild:
                self.build()
            tree = self._tree
            if tree is None:
                return None

            qlo, qhi = box.to_arrays()
            out = np.empty(max(self._max_hits, self.max_entries), dtype=np.int64)
            hits = self._run(tree, qlo, qhi, out)
            if hits > out.shape[0]:
                out = np.empty(hits, dtype=np.int64)
                self._run(tree, qlo, qhi, out)
            self._max_hits = max(self._max_hits, hits)
            return out[:hits]

    @staticmethod
    def _run(tree: _PackedTree, qlo, qhi, out) -> int:
        return int(_query_kernel(
            tree.node_lo, tree.node_hi, tree.node_first, tree.node_count, tree.node_leaf, tree.root,
            tree.points, tree.ordinals, qlo, qhi, out
        ))


def make_spatial_index(enabled: bool, positions: PositionsProvider) -> SpatialIndex:
    """Select the index implementation at construction time."""
    if enabled:
        return RTreeIndex(positions)
    return NullSpatialIndex()
