"""Bounding-volume hierarchy over sphere primitives.

The tree is built once per render by median-splitting primitive centers
along the longest box axis, then flattened into arrays. Intersection walks
the tree with a packet of rays: at each node only the rays whose slab test
passes descend, so subtrees no ray can reach are never visited.
"""

from __future__ import annotations

from typing import List, Tuple

import numpy as np

from .geometry import Spheres

LEAF_SIZE = 4
DIRECTION_EPS = 1e-12


class Bvh:
    def __init__(self, spheres: Spheres) -> None:
        self.spheres = spheres
        self._box_min: List[np.ndarray] = []
        self._box_max: List[np.ndarray] = []
        self._left: List[int] = []
        self._right: List[int] = []
        self._start: List[int] = []
        self._end: List[int] = []

        count = len(spheres)
        self.order = np.arange(count, dtype=np.int64)
        if count:
            prim_min, prim_max = spheres.bounds()
            self._build(prim_min, prim_max, 0, count)

        self.box_min = np.array(self._box_min, dtype=np.float64).reshape(-1, 3)
        self.box_max = np.array(self._box_max, dtype=np.float64).reshape(-1, 3)
        self.left = np.array(self._left, dtype=np.int64)
        self.right = np.array(self._right, dtype=np.int64)
        self.start = np.array(self._start, dtype=np.int64)
        self.end = np.array(self._end, dtype=np.int64)

    @property
    def node_count(self) -> int:
        return len(self.left)

    def _build(self, prim_min: np.ndarray, prim_max: np.ndarray, start: int, end: int) -> int:
        members = self.order[start:end]
        low = prim_min[members].min(axis=0)
        high = prim_max[members].max(axis=0)

        node = len(self._left)
        self._box_min.append(low)
        self._box_max.append(high)
        self._left.append(-1)
        self._right.append(-1)
        self._start.append(start)
        self._end.append(end)

        if end - start <= LEAF_SIZE:
            return node

        axis = int(np.argmax(high - low))
        centers = self.spheres.centers[members, axis]
        self.order[start:end] = members[np.argsort(centers, kind="stable")]

        mid = start + (end - start) // 2
        left = self._build(prim_min, prim_max, start, mid)
        right = self._build(prim_min, prim_max, mid, end)
        self._left[node] = left
        self._right[node] = right
        return node

    def _slab(
        self,
        node: int,
        origins: np.ndarray,
        inv_dir: np.ndarray,
        t_min: float,
        t_max: np.ndarray,
    ) -> np.ndarray:
        t0 = (self.box_min[node][None, :] - origins) * inv_dir
        t1 = (self.box_max[node][None, :] - origins) * inv_dir
        near = np.minimum(t0, t1).max(axis=1)
        far = np.maximum(t0, t1).min(axis=1)
        return np.maximum(near, t_min) <= np.minimum(far, t_max)

    def intersect(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        t_min: float = 1e-3,
        t_max: float = np.inf,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return (distance, primitive index) per ray; misses get (inf, -1)."""

        count = origins.shape[0]
        closest = np.full(count, t_max, dtype=np.float64)
        prim = np.full(count, -1, dtype=np.int64)
        if count == 0 or self.node_count == 0:
            return closest, prim

        safe = np.where(np.abs(directions) < DIRECTION_EPS, np.copysign(DIRECTION_EPS, directions), directions)
        inv_dir = 1.0 / safe

        stack = [(0, np.arange(count, dtype=np.int64))]
        while stack:
            node, rays = stack.pop()
            rays = rays[self._slab(node, origins[rays], inv_dir[rays], t_min, closest[rays])]
            if rays.size == 0:
                continue

            if self.left[node] < 0:
                for index in self.order[self.start[node]:self.end[node]]:
                    t = self.spheres.hit(index, origins[rays], directions[rays], t_min, closest[rays])
                    better = t < closest[rays]
                    closest[rays[better]] = t[better]
                    prim[rays[better]] = index
                continue

            stack.append((int(self.right[node]), rays))
            stack.append((int(self.left[node]), rays))

        closest[prim < 0] = np.inf
        return closest, prim

    def intersect_brute_force(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        t_min: float = 1e-3,
        t_max: float = np.inf,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Reference intersection testing every primitive."""

        count = origins.shape[0]
        closest = np.full(count, t_max, dtype=np.float64)
        prim = np.full(count, -1, dtype=np.int64)
        for index in range(len(self.spheres)):
            t = self.spheres.hit(index, origins, directions, t_min, closest)
            better = t < closest
            closest[better] = t[better]
            prim[better] = index
        closest[prim < 0] = np.inf
        return closest, prim
