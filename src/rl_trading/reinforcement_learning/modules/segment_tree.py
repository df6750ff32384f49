"""
Sum segment tree for proportional priority sampling
"""

import numpy as np

from .exceptions import ConfigurationError, InvalidIndexError


class SegmentTree:
    """
    Fixed-capacity binary sum tree over non-negative leaf weights.

    The tree is stored as a 1-indexed heap in a flat float64 array. The leaf
    level is rounded up to a power of two so all leaves share one depth;
    padding leaves stay at zero and are never addressable. Both `update` and
    `sample` walk the tree iteratively in O(log n).
    """

    def __init__(self, capacity: int):
        if not isinstance(capacity, (int, np.integer)) or capacity <= 0:
            raise ConfigurationError(f"Segment tree capacity must be a positive integer, got {capacity}")

        self._capacity = int(capacity)
        self._leaf_offset = 1
        while self._leaf_offset < self._capacity:
            self._leaf_offset *= 2

        self._tree = np.zeros(2 * self._leaf_offset, dtype=np.float64)

    @property
    def capacity(self) -> int:
        return self._capacity

    def _check_index(self, index: int):
        if not 0 <= index < self._capacity:
            raise InvalidIndexError(f"Index {index} outside [0, {self._capacity})")

    def update(self, index: int, priority: float):
        """Set one leaf and refresh every ancestor up to the root"""
        self._check_index(index)
        priority = float(priority)
        if not np.isfinite(priority) or priority < 0:
            raise ValueError(f"Priority must be finite and non-negative, got {priority}")

        node = index + self._leaf_offset
        self._tree[node] = priority

        # Recompute each parent from its two children so the root stays the
        # exact sum of the leaves instead of accumulating delta drift.
        node //= 2
        while node >= 1:
            self._tree[node] = self._tree[2 * node] + self._tree[2 * node + 1]
            node //= 2

    def get(self, index: int) -> float:
        self._check_index(index)
        return float(self._tree[index + self._leaf_offset])

    def total_sum(self) -> float:
        return float(self._tree[1])

    def sample(self, value: float) -> int:
        """
        Map a value in [0, total_sum()) to the leaf whose cumulative range holds it.

        Callers must check `total_sum() > 0` first and fall back to uniform
        sampling when every weight is zero.

        Raises:
            ValueError: If `value` lies outside [0, total_sum())
        """
        total = self._tree[1]
        if not 0.0 <= value < total:
            raise ValueError(f"Sample value {value} outside [0, {total})")

        node = 1
        while node < self._leaf_offset:
            left = 2 * node
            if value <= self._tree[left]:
                node = left
            else:
                value -= self._tree[left]
                node = left + 1
        return node - self._leaf_offset

    def leaves(self) -> np.ndarray:
        """Copy of the addressable leaf values"""
        return self._tree[self._leaf_offset:self._leaf_offset + self._capacity].copy()

    def clear(self):
        self._tree.fill(0.0)

    def __len__(self):
        return self._capacity
