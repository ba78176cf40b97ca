"""
Sample set: an ordered collection of fixed-width numeric rows.

Raw point data (calibration correspondences, pixel observations) is stored
in a SampleSet. It is a single concrete dynamic matrix backed by a numpy
buffer with spare capacity, so rows can be appended one at a time without
reallocating on every append.

Growth Rule:
============
When an append finds the buffer full, capacity grows to

    clamp(rows * 2, 1, rows + 64)

i.e. doubling for small sets and at most 64 rows at a time for large ones.
"""

from typing import Iterable, Iterator, Optional, Sequence

import numpy as np


class SampleSet:
    """
    Dynamic row-major matrix of samples.

    Attributes:
        sample_count: Number of rows in use.
        feature_count: Width of every row.
        capacity: Number of rows allocated.

    Example:
        >>> samples = SampleSet(feature_count=5)
        >>> samples.append([0.0, 0.0, 0.0, 320.0, 240.0])
        >>> len(samples)
        1
        >>> samples.as_array().shape
        (1, 5)
    """

    def __init__(
        self,
        feature_count: int,
        capacity: int = 0,
        dtype: np.dtype = np.float64,
    ):
        """
        Initialize an empty sample set.

        Args:
            feature_count: Number of values in each row.
            capacity: Initial number of rows to allocate.
            dtype: Element type.
        """
        if feature_count < 0:
            raise ValueError(f"feature_count must be >= 0, got {feature_count}")
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")

        self._data = np.zeros((capacity, feature_count), dtype=dtype)
        self._rows = 0

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Sequence[float]],
        feature_count: Optional[int] = None,
        dtype: np.dtype = np.float64,
    ) -> "SampleSet":
        """
        Create a sample set holding a copy of the given rows.

        Args:
            rows: 2D array-like (N, F).
            feature_count: Row width to use when rows is empty.
        """
        array = np.asarray(list(rows) if not isinstance(rows, np.ndarray) else rows, dtype=dtype)
        if array.size == 0:
            return cls(feature_count or 0, dtype=dtype)
        array = np.atleast_2d(array)
        if array.ndim != 2:
            raise ValueError(f"Expected 2D rows, got shape {array.shape}")

        samples = cls(array.shape[1], capacity=array.shape[0], dtype=dtype)
        samples._data[:] = array
        samples._rows = array.shape[0]
        return samples

    # -------------------------------------------------------------------------
    # Size and capacity
    # -------------------------------------------------------------------------

    @property
    def sample_count(self) -> int:
        """Number of rows in use."""
        return self._rows

    @property
    def feature_count(self) -> int:
        """Width of every row."""
        return self._data.shape[1]

    @property
    def capacity(self) -> int:
        """Number of rows allocated."""
        return self._data.shape[0]

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    def __len__(self) -> int:
        return self._rows

    def _reallocate(self, capacity: int, feature_count: int) -> None:
        data = np.zeros((capacity, feature_count), dtype=self._data.dtype)
        rows = min(self._rows, capacity)
        cols = min(self.feature_count, feature_count)
        data[:rows, :cols] = self._data[:rows, :cols]
        self._data = data
        self._rows = rows

    def reserve(self, sample_count: int, feature_count: int = -1) -> None:
        """
        Allocate room for at least sample_count rows.

        Changing the feature count empties the set, since existing rows no
        longer fit the new width.
        """
        if feature_count != -1 and feature_count != self.feature_count:
            self._data = np.zeros((0, feature_count), dtype=self._data.dtype)
            self._rows = 0
        if sample_count > self.capacity:
            self._reallocate(sample_count, self.feature_count)

    def resize(self, sample_count: int, feature_count: int = -1) -> None:
        """
        Change the number of rows (and optionally the width).

        New rows and columns are zero-filled; surplus rows are dropped.
        """
        if sample_count < 0:
            raise ValueError(f"sample_count must be >= 0, got {sample_count}")
        if feature_count == -1:
            feature_count = self.feature_count

        if feature_count != self.feature_count or sample_count > self.capacity:
            self._reallocate(max(sample_count, self.capacity), feature_count)

        if sample_count > self._rows:
            self._data[self._rows:sample_count] = 0
        self._rows = sample_count

    def clear(self) -> None:
        """Remove all rows and release the buffer."""
        self._data = np.zeros((0, self.feature_count), dtype=self._data.dtype)
        self._rows = 0

    # -------------------------------------------------------------------------
    # Row access
    # -------------------------------------------------------------------------

    def _check_index(self, index: int) -> int:
        if index < 0:
            index += self._rows
        if index < 0 or index >= self._rows:
            raise IndexError(f"Sample index {index} out of range [0, {self._rows - 1}]")
        return index

    def _check_row(self, row: Sequence[float]) -> np.ndarray:
        row = np.asarray(row, dtype=self._data.dtype).flatten()
        if row.shape != (self.feature_count,):
            raise ValueError(f"Expected row of {self.feature_count} values, got {row.shape[0]}")
        return row

    def sample_at(self, index: int) -> np.ndarray:
        """Get a view of one row."""
        return self._data[self._check_index(index)]

    def __getitem__(self, index: int) -> np.ndarray:
        return self.sample_at(index)

    def set_sample_at(self, index: int, row: Sequence[float]) -> None:
        """Overwrite one row."""
        self._data[self._check_index(index)] = self._check_row(row)

    def append(self, row: Sequence[float]) -> None:
        """Append a row, growing capacity by the growth rule when full."""
        row = self._check_row(row)
        if self._rows == self.capacity:
            grown = int(np.clip(self._rows * 2, 1, self._rows + 64))
            self._reallocate(grown, self.feature_count)
        self._data[self._rows] = row
        self._rows += 1

    def extend(self, rows: Iterable[Sequence[float]]) -> None:
        """Append several rows."""
        for row in rows:
            self.append(row)

    def remove(self, index: int) -> None:
        """Remove one row, keeping the order of the others."""
        index = self._check_index(index)
        self._data[index:self._rows - 1] = self._data[index + 1:self._rows]
        self._rows -= 1

    def __iter__(self) -> Iterator[np.ndarray]:
        for i in range(self._rows):
            yield self._data[i]

    def as_array(self) -> np.ndarray:
        """View of the rows in use, shape (sample_count, feature_count)."""
        return self._data[:self._rows]

    def copy(self) -> "SampleSet":
        """Deep copy, trimmed to the rows in use."""
        return SampleSet.from_rows(self.as_array().copy(), self.feature_count, self._data.dtype)

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------

    def equals(self, other: "SampleSet") -> bool:
        """True if both sets have the same shape and identical rows."""
        if not isinstance(other, SampleSet):
            return False
        return (
            self.feature_count == other.feature_count
            and self._rows == other._rows
            and bool(np.array_equal(self.as_array(), other.as_array()))
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, SampleSet):
            return NotImplemented
        return self.equals(other)

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"SampleSet(samples={self._rows}, features={self.feature_count}, "
            f"capacity={self.capacity})"
        )
